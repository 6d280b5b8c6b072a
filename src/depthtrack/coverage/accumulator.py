"""
Per-base read coverage, accumulated in a sparse chromosome indexed table.

The table maps chromosome IDs to counters that map absolute reference
positions to the number of read footprints covering them. A dense numpy view
over a region is materialised on demand for export.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable

import numpy as np
import numpy.typing as npt
import pysam

from ..util.datatypes import GenomicRegion, OutOfBounds, ReadSpan
from ..util.diagnostics import DiagnosticsLogger, get_diagnostics_logger

log = logging.getLogger(__name__)

COVERAGE_DTYPE = np.uint32


class CoverageAccumulator:
    """Counts, for every base, how many read footprints contain it.

    Parameters
    ----------
    region : GenomicRegion, optional
        The region this accumulator is responsible for. Required for
        ``to_dense`` without an explicit region and for bounded mode.
    bounded : bool
        If True, the accumulator behaves like a fixed-capacity array over
        ``region``: positions outside of it are skipped and reported.
    diagnostics : DiagnosticsLogger, optional
        Sink for skipped positions. Defaults to the process wide logger.
    """

    def __init__(
        self,
        region: GenomicRegion | None = None,
        bounded: bool = False,
        diagnostics: DiagnosticsLogger | None = None,
    ) -> None:
        if bounded and region is None:
            raise ValueError("A bounded CoverageAccumulator needs a region.")
        if region is not None and region.width < 0:
            raise ValueError(f"Region {region} has a negative width.")
        self.region = region
        self.bounded = bounded
        self._diagnostics = diagnostics
        self._table: dict[int, defaultdict[int, int]] = {}

    @property
    def diagnostics(self) -> DiagnosticsLogger:
        if self._diagnostics is None:
            return get_diagnostics_logger()
        return self._diagnostics

    def __len__(self) -> int:
        return len(self._table)

    def __repr__(self) -> str:
        return f"CoverageAccumulator(region={self.region}, bounded={self.bounded}, chromosomes={len(self)})"

    # ----- ingestion -----

    def add_span(
        self, position: int, end_position: int, chrID: int
    ) -> OutOfBounds | None:
        """Increments the count of every position in [position, end_position] on chrID.

        Spans with a negative coordinate are ignored. In bounded mode,
        positions outside of the region are skipped and an OutOfBounds report
        is returned; all other positions of the span are still counted.
        """
        if position < 0 or end_position < 0:
            return None
        if end_position < position:
            return None
        if not self.bounded:
            counter = self._table.setdefault(chrID, defaultdict(int))
            for p in range(position, end_position + 1):
                counter[p] += 1
            return None
        return self._add_span_bounded(position, end_position, chrID)

    def _add_span_bounded(
        self, position: int, end_position: int, chrID: int
    ) -> OutOfBounds | None:
        region = self.region
        capacity = region.width
        skipped: list[int] = []
        counter = None
        for p in range(position, end_position + 1):
            if chrID != region.chrID or not 0 <= p - region.start < capacity:
                skipped.append(p)
                continue
            if counter is None:
                counter = self._table.setdefault(chrID, defaultdict(int))
            counter[p] += 1
        if not skipped:
            return None
        report = OutOfBounds(
            chrID=chrID,
            first_position=skipped[0],
            last_position=skipped[-1],
            n_skipped=len(skipped),
            capacity=capacity,
        )
        self.diagnostics.log_out_of_bounds(
            stage="add_span",
            chrID=chrID,
            position=report.first_position,
            capacity=capacity,
            count=report.n_skipped,
            details={"last_position": report.last_position, "region": str(region)},
        )
        return report

    def add_read(self, alignment: pysam.AlignedSegment) -> OutOfBounds | None:
        span = ReadSpan.from_pysam(alignment)
        return self.add_span(span.position, span.end_position, span.chrID)

    def add_reads(self, alignments: Iterable[pysam.AlignedSegment]) -> int:
        """ingests all alignments and returns the number of reads that were counted on at least one position"""
        n_counted = 0
        for alignment in alignments:
            span = ReadSpan.from_pysam(alignment)
            if span.position < 0 or span.end_position < span.position:
                continue
            report = self.add_span(span.position, span.end_position, span.chrID)
            if report is None or report.n_skipped < span.end_position - span.position + 1:
                n_counted += 1
        return n_counted

    # ----- queries -----

    def coverage_at(self, chrID: int, position: int) -> int:
        """returns the coverage at position on chrID, 0 if it was never touched"""
        counter = self._table.get(chrID)
        if counter is None:
            return 0
        # .get does not insert into the defaultdict
        return counter.get(position, 0)

    def chromosomes(self) -> list[int]:
        return sorted(self._table.keys())

    def total_depth(self, chrID: int) -> int:
        """sum of the coverage over all positions of chrID"""
        return sum(self._table.get(chrID, {}).values())

    def to_dense(self, region: GenomicRegion | None = None) -> npt.NDArray[np.uint32]:
        """materialises the coverage over region as an array, index 0 is region.start"""
        region = region if region is not None else self.region
        if region is None:
            raise ValueError("to_dense needs a region if the accumulator has none.")
        values = np.zeros(max(region.width, 0), dtype=COVERAGE_DTYPE)
        counter = self._table.get(region.chrID)
        if counter is None or values.size == 0:
            return values
        if len(counter) < values.size:
            for p, count in counter.items():
                if region.contains(p):
                    values[p - region.start] = count
        else:
            for i in range(values.size):
                values[i] = counter.get(region.start + i, 0)
        return values
