import logging
from collections.abc import Iterable, Iterator, Sequence
from typing import IO

from ..util.datatypes import BedgraphRecord, GenomicRegion

log = logging.getLogger(__name__)


def iter_runs(values: Sequence[int]) -> Iterator[tuple[int, int, int]]:
    """yields maximal runs of equal values as (start index, end index, value), end exclusive"""
    if len(values) == 0:
        return
    run_start = 0
    run_value = values[0]
    for i in range(len(values)):
        if values[i] != run_value:
            yield run_start, i, int(run_value)
            run_start = i
            run_value = values[i]
    # the last run always ends at the end of the array
    yield run_start, len(values), int(run_value)


def region_to_records(
    values: Sequence[int],
    region: GenomicRegion,
    chrom_name: str,
    include_zero: bool = True,
) -> Iterator[BedgraphRecord]:
    """converts the dense coverage of region into bedgraph records in absolute, half-open coordinates"""
    if region.is_unset() or len(values) == 0:
        return
    for start, end, value in iter_runs(values):
        if value == 0 and not include_zero:
            continue
        yield BedgraphRecord(
            chrom=chrom_name,
            start=start + region.start,
            end=end + region.start,
            value=value,
        )


def write_bedgraph(
    values: Sequence[int],
    region: GenomicRegion,
    ref_dict: dict[int, str] | None,
    out: IO[str],
    include_zero: bool = True,
) -> int:
    """writes the run-length encoded coverage of region to out and returns the number of written lines.

    No header is written. An unset region or an empty array writes nothing.
    """
    if region.is_unset() or len(values) == 0:
        log.debug(f"nothing to write for region {region}")
        return 0
    chrom_name = region.chr_name(ref_dict)
    n_lines = 0
    for record in region_to_records(
        values=values, region=region, chrom_name=chrom_name, include_zero=include_zero
    ):
        out.write(record.to_line() + "\n")
        n_lines += 1
    return n_lines


def coalesce_records(records: Iterable[BedgraphRecord]) -> Iterator[BedgraphRecord]:
    """joins directly adjacent records of equal value, e.g. of consecutive chunks of one split region"""
    pending: BedgraphRecord | None = None
    for record in records:
        if (
            pending is not None
            and pending.chrom == record.chrom
            and pending.end == record.start
            and pending.value == record.value
        ):
            pending = BedgraphRecord(
                chrom=pending.chrom,
                start=pending.start,
                end=record.end,
                value=pending.value,
            )
            continue
        if pending is not None:
            yield pending
        pending = record
    if pending is not None:
        yield pending
