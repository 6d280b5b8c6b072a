import json

import attrs
import cattrs
import pysam

# chrID of a region that was never bound to a reference sequence
UNSET_CHR_ID = -1


@attrs.define
class GenomicRegion:
    chrID: int
    start: int
    end: int
    name: str = ""  # chromosome name, if already known

    def unstructure(self):
        return cattrs.unstructure(self)

    @property
    def width(self) -> int:
        return self.end - self.start

    def is_unset(self) -> bool:
        return self.chrID == UNSET_CHR_ID

    def contains(self, position: int) -> bool:
        return self.start <= position < self.end

    def chr_name(self, ref_dict: dict[int, str] | None = None) -> str:
        """returns the chromosome name. An explicit name wins over the lookup in ref_dict."""
        if self.name:
            return self.name
        if ref_dict is None or self.chrID not in ref_dict:
            raise KeyError(
                f"chromosome ID {self.chrID} can not be resolved to a chromosome name."
            )
        return ref_dict[self.chrID]

    def __str__(self) -> str:
        chrom = self.name if self.name else str(self.chrID)
        return f"{chrom}:{self.start}-{self.end}"


@attrs.define
class ReadSpan:
    """inclusive footprint [position, end_position] of an aligned read on reference chrID"""

    position: int
    end_position: int
    chrID: int

    def unstructure(self):
        return cattrs.unstructure(self)

    @classmethod
    def from_pysam(cls, alignment: pysam.AlignedSegment) -> "ReadSpan":
        # pysam reference_end points one past the last aligned base
        if alignment.is_unmapped or alignment.reference_end is None:
            return cls(position=-1, end_position=-1, chrID=alignment.reference_id)
        return cls(
            position=int(alignment.reference_start),
            end_position=int(alignment.reference_end) - 1,
            chrID=int(alignment.reference_id),
        )


@attrs.define
class BedgraphRecord:
    chrom: str
    start: int
    end: int
    value: int

    def unstructure(self):
        return cattrs.unstructure(self)

    def to_line(self) -> str:
        return f"{self.chrom}\t{self.start}\t{self.end}\t{self.value}"


@attrs.define
class OutOfBounds:
    """positions of a single span that fell outside a fixed-capacity accumulator"""

    chrID: int
    first_position: int
    last_position: int
    n_skipped: int
    capacity: int

    def unstructure(self):
        return cattrs.unstructure(self)


@attrs.define
class DiagnosticsEvent:
    """one record of skipped data, as written to the diagnostics tsv"""

    category: str
    stage: str
    chrID: int
    reason: str
    count: int
    details: dict | str | None = None
    level: int = 30  # logging.WARNING

    def unstructure(self):
        return cattrs.unstructure(self)

    def to_line(self) -> str:
        if isinstance(self.details, dict):
            details = json.dumps(self.details, default=str)
        else:
            details = "" if self.details is None else str(self.details)
        return f"{self.category}\t{self.stage}\t{self.chrID}\t{self.reason}\t{self.count}\t{details}"


@attrs.define
class BedgraphConfig:
    alignments: str
    output: str = ""
    regions: str | None = None
    region: list[str] = attrs.Factory(list)
    reference: str | None = None
    threads: int = 1
    chunk_size: int = 1_000_000
    skip_zero: bool = False
    strict_bounds: bool = False
    index: bool = False
    diagnostics: str | None = None
    log_level: str = "INFO"

    def unstructure(self):
        return cattrs.unstructure(self)
