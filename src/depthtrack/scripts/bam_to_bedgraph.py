# compute per-base read coverage from alignments and write it as a bedgraph
# %%
import argparse
import json
import logging
import multiprocessing as mp
from pathlib import Path

import attrs
import cattrs
import pysam
from tqdm import tqdm

from ..coverage import bedgraph
from ..coverage.accumulator import CoverageAccumulator
from ..util import util
from ..util.datatypes import (
    BedgraphConfig,
    BedgraphRecord,
    DiagnosticsEvent,
    GenomicRegion,
    ReadSpan,
)
from ..util.diagnostics import (
    DiagnosticsLogger,
    get_diagnostics_logger,
    init_diagnostics_logger,
)

log = logging.getLogger(__name__)

# %%


def process_region(
    path_alignments: Path | str,
    region: GenomicRegion,
    bounds: GenomicRegion | None = None,
    strict_bounds: bool = False,
    include_zero: bool = True,
    diagnostics: DiagnosticsLogger | None = None,
) -> list[BedgraphRecord]:
    """accumulates the coverage of all alignments overlapping region and returns it as bedgraph records.

    region can be a chunk of bounds, the region that was asked for. With strict_bounds,
    read bases outside of bounds are skipped and reported once, by the chunk that
    holds the first in-bounds base of the read.
    """
    diagnostics = diagnostics if diagnostics is not None else get_diagnostics_logger()
    bounds = bounds if bounds is not None else region
    with pysam.AlignmentFile(str(path_alignments), "rb") as f:
        chrom = region.name if region.name else f.get_reference_name(region.chrID)
        # the region may have been resolved with a .fai of a different order
        tid = f.get_tid(chrom)
        if tid < 0:
            diagnostics.log_unknown_chromosome(
                stage="process_region",
                chrID=region.chrID,
                reason=f"chromosome {chrom} is not in the header of {path_alignments}",
            )
            return []
        if tid != region.chrID:
            region = attrs.evolve(region, chrID=tid)
            bounds = attrs.evolve(bounds, chrID=tid)
        accumulator = CoverageAccumulator(
            region=bounds, bounded=strict_bounds, diagnostics=diagnostics
        )
        stop = min(region.end, f.get_reference_length(chrom))
        n_reads = 0
        if region.start < stop:
            for alignment in f.fetch(chrom, region.start, stop):
                span = ReadSpan.from_pysam(alignment)
                if span.position < 0 or span.end_position < span.position:
                    continue
                position, end_position = span.position, span.end_position
                if strict_bounds and not region.contains(max(position, bounds.start)):
                    # another chunk of bounds reports the skipped bases of this read
                    position = max(position, bounds.start)
                    end_position = min(end_position, bounds.end - 1)
                accumulator.add_span(position, end_position, span.chrID)
                n_reads += 1
    log.debug(f"counted {n_reads} reads in region {region}")
    values = accumulator.to_dense(region)
    return list(
        bedgraph.region_to_records(
            values=values,
            region=region,
            chrom_name=region.name if region.name else chrom,
            include_zero=include_zero,
        )
    )


def mp_process_region(kwargs) -> tuple[list[BedgraphRecord], list[DiagnosticsEvent]]:
    # workers do not share the diagnostics sink of the parent, their events are returned
    collector = DiagnosticsLogger(keep_events=True)
    records = process_region(**kwargs, diagnostics=collector)
    return records, collector.events


def collect_regions(config: BedgraphConfig) -> list[GenomicRegion]:
    """regions from a bed file and/or region strings. Without any, every reference sequence of the alignments."""
    if config.reference:
        ref_dict = util.create_ref_dict(Path(config.reference))
    else:
        ref_dict = util.create_ref_dict_from_alignments(Path(config.alignments))
    regions: list[GenomicRegion] = []
    if config.regions:
        regions.extend(util.load_regions(Path(config.regions), ref_dict=ref_dict))
    for region_str in config.region:
        regions.append(util.parse_region(region_str, ref_dict=ref_dict))
    if not config.regions and not config.region:
        regions = util.regions_from_alignments(Path(config.alignments))
    return regions


def process_bam(config: BedgraphConfig) -> int:
    """writes the coverage bedgraph of all configured regions and returns the number of written lines"""
    util.create_index_if_not_exists(Path(config.alignments))
    diagnostics = get_diagnostics_logger()
    regions = collect_regions(config)
    empty = [r for r in regions if r.width == 0]
    for region in empty:
        diagnostics.log_empty_region(
            stage="process_bam", chrID=region.chrID, reason=f"region {region} has zero width"
        )

    threads = config.threads
    if threads < 1:
        threads = mp.cpu_count()
    if threads > mp.cpu_count():
        log.warning(
            f"threads {threads} > cpu_count {mp.cpu_count()}. Setting threads to {mp.cpu_count()}"
        )
        threads = mp.cpu_count()

    # each chunk is bounded by the region it was split from
    jobs = [
        {
            "path_alignments": config.alignments,
            "region": chunk,
            "bounds": region,
            "strict_bounds": config.strict_bounds,
            "include_zero": not config.skip_zero,
        }
        for region in regions
        if region.width > 0
        for chunk in util.split_regions([region], desired_region_size=config.chunk_size)
    ]
    log.info(f"execute {len(jobs)} jobs on {threads} threads..")
    records: list[BedgraphRecord] = []
    if threads > 1 and len(jobs) > 1:
        with mp.Pool(threads) as pool:
            for chunk_records, events in tqdm(
                pool.imap(mp_process_region, jobs, chunksize=1),
                total=len(jobs),
                desc="Computing coverage",
            ):
                records.extend(chunk_records)
                diagnostics.record_all(events)
    else:
        for job in tqdm(jobs, desc="Computing coverage"):
            chunk_records, events = mp_process_region(job)
            records.extend(chunk_records)
            diagnostics.record_all(events)

    n_lines = 0
    with util.open_output(config.output) as out:
        for record in bedgraph.coalesce_records(records):
            out.write(record.to_line() + "\n")
            n_lines += 1
    log.info(f"wrote {n_lines} bedgraph lines to {config.output or 'stdout'}")
    if config.index:
        index = util.index_bedgraph(config.output)
        log.info(f"indexed {config.output} to {index}")
    util.log_memory_usage("after writing the bedgraph")
    return n_lines


# %%


def load_config(args) -> BedgraphConfig:
    """merges the optional json config file with the command line. Values given on the command line win."""
    values = {}
    if getattr(args, "config", None):
        with open(args.config, "r") as f:
            values = json.load(f)
        unknown = set(values) - set(cattrs.unstructure(BedgraphConfig(alignments="")))
        if unknown:
            raise ValueError(
                f"Unknown keys in config file {args.config}: {', '.join(sorted(unknown))}"
            )
    for key in cattrs.unstructure(BedgraphConfig(alignments="")):
        value = getattr(args, key, None)
        if value is None or value is False or value == []:
            continue
        values[key] = str(value) if isinstance(value, Path) else value
    if not values.get("alignments"):
        raise ValueError("No alignments given, neither on the command line nor in the config file.")
    if values.get("index") and not util.is_compressed_path(values.get("output", "")):
        raise ValueError(
            f"An index can only be created for a bgzip compressed output ending in .gz or .bgz, got output '{values.get('output', '')}'."
        )
    return cattrs.structure(values, BedgraphConfig)


def run(args, **kwargs):
    config = load_config(args)
    util.setup_logging(config.log_level)
    if getattr(args, "write_config", None):
        with open(args.write_config, "w") as f:
            json.dump(config.unstructure(), f, indent=4)
    diagnostics = init_diagnostics_logger(config.diagnostics)
    try:
        process_bam(config)
    finally:
        if diagnostics.get_entry_count() > 0:
            log.warning(f"{diagnostics.get_entry_count()} diagnostic events were recorded.")
        diagnostics.close()


def add_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-a",
        "--alignments",
        type=Path,
        default=None,
        help="Path to the coordinate sorted bam or cram file. An index is created if missing.",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=str,
        default=None,
        help="Path to the output bedgraph. Ending in .gz or .bgz writes bgzip compressed output. Prints to std out if no output is provided.",
    )
    parser.add_argument(
        "-r",
        "--regions",
        type=Path,
        default=None,
        help="Path to a bed file of regions. Default: every reference sequence in the alignment header.",
    )
    parser.add_argument(
        "--region",
        type=str,
        action="append",
        default=None,
        help="A region like chr1:1000-2000 (0-based, half-open). Can be given multiple times.",
    )
    parser.add_argument(
        "--reference",
        type=Path,
        default=None,
        help="Reference fasta. Only the index '.fai' is used to resolve chromosome names. Default: the alignment header.",
    )
    parser.add_argument(
        "-t",
        "--threads",
        type=int,
        default=None,
        help="Number of processes. Regions are distributed over the processes. Default is 1.",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=None,
        help="Regions larger than this are processed in chunks of this size. Default is 1,000,000.",
    )
    parser.add_argument(
        "--skip-zero",
        action="store_true",
        help="Do not write intervals with zero coverage.",
    )
    parser.add_argument(
        "--strict-bounds",
        action="store_true",
        help="Only count bases inside each region. Read bases outside are skipped and reported as diagnostics.",
    )
    parser.add_argument(
        "--index",
        action="store_true",
        help="Create a tabix index for a bgzip compressed output.",
    )
    parser.add_argument(
        "--diagnostics",
        type=Path,
        default=None,
        help="Path to a tsv file collecting skipped data. Default: log to stderr.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a json config file with any of the long options as keys (underscores instead of dashes).",
    )
    parser.add_argument(
        "--write-config",
        type=Path,
        default=None,
        help="Write the effective configuration to this json file.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level. Default is INFO.",
    )


def get_parser():
    parser = argparse.ArgumentParser(
        description="Write the per-base read coverage of alignments as a bedgraph."
    )
    add_arguments(parser)
    return parser


def main():
    parser = get_parser()
    args = parser.parse_args()
    run(args)
    return


if __name__ == "__main__":
    main()
