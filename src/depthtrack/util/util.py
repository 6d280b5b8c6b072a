# %%
import gzip
import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO

import psutil
import pysam

from .datatypes import GenomicRegion

log = logging.getLogger(__name__)

# %%


def setup_logging(log_level: str = "INFO") -> None:
    """Setup logging with the specified log level.

    Args:
        log_level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    logging.basicConfig(
        level=numeric_level,
        format="[%(levelname)s %(asctime)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
    log.debug(f"Logging level set to {log_level.upper()}")


def log_memory_usage(context: str = "") -> None:
    """Log current memory usage of the process."""
    process = psutil.Process(os.getpid())
    mem_mb = process.memory_info().rss / 1024 / 1024
    log.info(f"Memory usage {context}: {mem_mb:.2f} MB")


# =============================================================================
#  reference dictionaries
# =============================================================================


def create_ref_dict(reference: Path) -> dict[int, str]:
    """returns a dictionary that maps reference IDs to chromosome names"""
    fai = create_fai_if_not_exists(reference)
    with open(fai, "r") as f:
        return {i: str(line.rstrip().split("\t")[0]) for i, line in enumerate(f)}


def create_ref_dict_from_alignments(alignments: Path) -> dict[int, str]:
    """returns a dictionary that maps reference IDs to chromosome names, read from the alignment header"""
    if not Path(alignments).exists():
        raise FileNotFoundError(f"Alignment file {alignments} not found.")
    with pysam.AlignmentFile(str(alignments), "rb") as f:
        return {i: str(name) for i, name in enumerate(f.references)}


def create_fai_if_not_exists(reference: Path) -> Path:
    fai = Path(str(reference) + ".fai")
    if not fai.exists():
        log.warning(f"{fai} not found. Trying to create one..")
        try:
            pysam.faidx(str(reference))
        except pysam.SamtoolsError as e:
            log.error(f"Error creating .fai file for {reference}: {e}")
            raise FileNotFoundError(
                f"{fai} not found. And could not be created. Make sure to provide a path to a .fasta file for which a .fai file exists in the same directory."
            ) from e
    return fai


# =============================================================================
#  regions
# =============================================================================


def parse_region(region_str: str, ref_dict: dict[int, str]) -> GenomicRegion:
    """Parse a region string like chr1:100-200 into a GenomicRegion.

    Handles commas in coordinates (e.g., chr1:1,000-2,000). A bare chromosome
    name is not accepted here, use regions_from_alignments for whole contigs.
    """
    colon_idx = region_str.rfind(":")
    if colon_idx == -1:
        raise ValueError(f"Invalid region format (no colon): {region_str}")
    chrom = region_str[:colon_idx]
    coords = region_str[colon_idx + 1 :]
    if "-" not in coords:
        raise ValueError(
            f"Invalid region format (no dash in coordinates): {region_str}"
        )
    start_str, end_str = coords.split("-", 1)
    start = int(start_str.replace(",", ""))
    end = int(end_str.replace(",", ""))
    return make_region(chrom=chrom, start=start, end=end, ref_dict=ref_dict)


def parse_position(position_str: str) -> tuple[str, int]:
    """Parse a position string like chr1:100 (or chr1:1,000)."""
    colon_idx = position_str.rfind(":")
    if colon_idx == -1:
        raise ValueError(f"Invalid position format (no colon): {position_str}")
    return position_str[:colon_idx], int(position_str[colon_idx + 1 :].replace(",", ""))


def make_region(
    chrom: str, start: int, end: int, ref_dict: dict[int, str]
) -> GenomicRegion:
    if start < 0 or end < start:
        raise ValueError(f"Invalid region coordinates: {chrom}:{start}-{end}")
    name_to_id = {v: k for k, v in ref_dict.items()}
    if chrom not in name_to_id:
        raise KeyError(f"Chromosome name '{chrom}' not found in the reference header.")
    return GenomicRegion(chrID=name_to_id[chrom], start=start, end=end, name=chrom)


def load_regions(path_regions: Path, ref_dict: dict[int, str]) -> list[GenomicRegion]:
    """loads regions from a bed file (plain or gzipped). Comment, track and browser lines are ignored."""
    opener = gzip.open if str(path_regions).endswith((".gz", ".bgz")) else open
    regions = []
    with opener(path_regions, "rt") as f:
        for i, line in enumerate(f):
            if not line.strip() or line.startswith(("#", "track", "browser")):
                continue
            fields = line.rstrip().split("\t")
            if len(fields) < 3:
                raise ValueError(
                    f"Line {i} of {path_regions} does not have at least 3 columns: {fields}"
                )
            regions.append(
                make_region(
                    chrom=fields[0],
                    start=int(fields[1]),
                    end=int(fields[2]),
                    ref_dict=ref_dict,
                )
            )
    return regions


def regions_from_alignments(alignments: Path) -> list[GenomicRegion]:
    """one region per reference sequence listed in the alignment header"""
    with pysam.AlignmentFile(str(alignments), "rb") as f:
        return [
            GenomicRegion(chrID=i, start=0, end=int(length), name=str(name))
            for i, (name, length) in enumerate(zip(f.references, f.lengths))
        ]


def split_regions(
    regions: list[GenomicRegion], desired_region_size: int = 10_000_000
) -> list[GenomicRegion]:
    """splits regions larger than desired_region_size into consecutive chunks, keeping their order"""
    if desired_region_size < 1:
        raise ValueError(f"desired_region_size must be positive, got {desired_region_size}")
    split = []
    for region in regions:
        if region.width <= desired_region_size:
            split.append(region)
            continue
        for start in range(region.start, region.end, desired_region_size):
            split.append(
                GenomicRegion(
                    chrID=region.chrID,
                    start=start,
                    end=min(start + desired_region_size, region.end),
                    name=region.name,
                )
            )
    return split


# =============================================================================
#  output
# =============================================================================


def is_compressed_path(path: Path | str) -> bool:
    return str(path).endswith((".gz", ".bgz"))


@contextmanager
def open_output(output: Path | str) -> Iterator[IO[str]]:
    """opens a text sink. Empty path -> stdout, .gz/.bgz -> bgzip compressed, else plain text.

    Compressed output is written as plain text next to output first and bgzip
    compressed when the sink is closed.
    """
    if str(output) in ("", "-") or output == Path(""):
        yield sys.stdout
        return
    if is_compressed_path(output):
        uncompressed = Path(str(output) + ".tmp")
        try:
            with open(uncompressed, "w") as f:
                yield f
            pysam.tabix_compress(str(uncompressed), str(output), force=True)
        finally:
            uncompressed.unlink(missing_ok=True)
        return
    with open(output, "w") as f:
        yield f


def index_bedgraph(output: Path | str) -> Path:
    """creates a tabix index next to a bgzip compressed bedgraph"""
    if not is_compressed_path(output):
        raise ValueError(f"Only bgzip compressed files can be indexed: {output}")
    pysam.tabix_index(str(output), preset="bed", force=True, keep_original=True)
    index = Path(str(output) + ".tbi")
    if not index.exists():
        raise FileNotFoundError(f"Index file {index} not found.")
    return index


def create_index_if_not_exists(alignments: Path) -> None:
    if not Path(alignments).exists():
        raise FileNotFoundError(f"Alignment file {alignments} not found.")
    with pysam.AlignmentFile(str(alignments), "rb") as f:
        if f.has_index():
            return
    log.warning(f"No index found for {alignments}. Trying to create one..")
    try:
        pysam.index(str(alignments))
    except pysam.SamtoolsError as e:
        log.error(f"Error creating an index for {alignments}: {e}")
        raise FileNotFoundError(
            f"Index of {alignments} not found. And could not be created. Make sure the alignments are sorted by coordinate."
        ) from e
