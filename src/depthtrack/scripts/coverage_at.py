import argparse
import logging
from pathlib import Path

import pysam

from ..coverage.accumulator import CoverageAccumulator
from ..util import util
from ..util.datatypes import ReadSpan

log = logging.getLogger(__name__)


def cluster_positions(positions: list[int], max_gap: int = 1_000) -> list[tuple[int, int]]:
    """groups positions into half-open windows [start, end).

    Sorted positions further apart than max_gap start a new window.
    """
    windows: list[tuple[int, int]] = []
    for pos in sorted(set(positions)):
        if windows and pos - (windows[-1][1] - 1) <= max_gap:
            windows[-1] = (windows[-1][0], pos + 1)
        else:
            windows.append((pos, pos + 1))
    return windows


def coverage_at_positions(
    alignments: Path, positions: list[tuple[str, int]], max_gap: int = 1_000
) -> list[tuple[str, int, int]]:
    """returns (chrom, position, coverage) for each 0-based position, in the given order.

    Nearby positions are answered together. Reads are fetched once per window of
    positions (see cluster_positions) and only their bases inside the window are counted.
    """
    util.create_index_if_not_exists(alignments)
    ref_dict = util.create_ref_dict_from_alignments(alignments)
    name_to_id = {v: k for k, v in ref_dict.items()}
    by_chrom: dict[str, list[int]] = {}
    for chrom, pos in positions:
        if chrom not in name_to_id:
            raise KeyError(f"Chromosome name '{chrom}' not found in the alignment header.")
        by_chrom.setdefault(chrom, []).append(pos)

    coverages: dict[tuple[str, int], int] = {}
    with pysam.AlignmentFile(str(alignments), "rb") as f:
        for chrom, chrom_positions in by_chrom.items():
            chrID = name_to_id[chrom]
            for window_start, window_end in cluster_positions(chrom_positions, max_gap=max_gap):
                start = max(window_start, 0)
                end = min(window_end, f.get_reference_length(chrom))
                if end <= start:
                    continue
                accumulator = CoverageAccumulator()
                n_reads = 0
                for alignment in f.fetch(chrom, start, end):
                    span = ReadSpan.from_pysam(alignment)
                    accumulator.add_span(
                        max(span.position, start), min(span.end_position, end - 1), chrID
                    )
                    n_reads += 1
                log.debug(f"counted {n_reads} reads on {chrom}:{start}-{end}")
                for pos in chrom_positions:
                    if window_start <= pos < window_end:
                        coverages[(chrom, pos)] = accumulator.coverage_at(chrID, pos)
    return [(chrom, pos, coverages.get((chrom, pos), 0)) for chrom, pos in positions]


def run(args, **kwargs):
    util.setup_logging(args.log_level)
    positions = [util.parse_position(p) for p in args.position]
    results = coverage_at_positions(
        alignments=Path(args.alignments), positions=positions, max_gap=args.max_gap
    )
    with util.open_output(args.output) as out:
        for chrom, pos, coverage in results:
            out.write(f"{chrom}\t{pos}\t{coverage}\n")


def add_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-a",
        "--alignments",
        type=Path,
        required=True,
        help="Path to the coordinate sorted bam or cram file.",
    )
    parser.add_argument(
        "-p",
        "--position",
        type=str,
        action="append",
        required=True,
        help="0-based position like chr1:1000. Can be given multiple times.",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=str,
        default="",
        help="Path to output. Prints to std out if no output is provided.",
    )
    parser.add_argument(
        "--max-gap",
        type=int,
        default=1_000,
        help="Positions on the same chromosome closer than this are answered from one fetch. Default is 1,000.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level. Default is WARNING.",
    )


def get_parser():
    parser = argparse.ArgumentParser(
        description="Print the read coverage at single reference positions."
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
