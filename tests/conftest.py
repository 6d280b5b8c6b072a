import logging
from pathlib import Path

import pysam
import pytest

REFERENCES = [("chr1", 1000), ("chr2", 500)]

# name, reference index, start, cigar
# chr1 coverage: 10-19:1, 20-24:2, 25-29:3, 30-39:1, 200-219:1
# chr2 coverage: 100-109:1
READS = [
    ("r0", 0, 10, "20M"),
    ("r1", 0, 20, "20M"),
    ("r2", 0, 25, "5M"),
    ("r3", 0, 200, "5M10D5M"),
    ("r4", 1, 100, "10M"),
]


def write_bam(path: Path, reads=READS, references=REFERENCES) -> Path:
    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": name, "LN": length} for name, length in references],
    }
    with pysam.AlignmentFile(str(path), "wb", header=header) as f:
        for name, tid, start, cigar in reads:
            aln = pysam.AlignedSegment(f.header)
            aln.query_name = name
            aln.flag = 0
            aln.reference_id = tid
            aln.reference_start = start
            aln.mapping_quality = 60
            aln.cigarstring = cigar
            length = aln.infer_query_length()
            aln.query_sequence = "A" * length
            aln.query_qualities = pysam.qualitystring_to_array("I" * length)
            f.write(aln)
        # unmapped reads are sorted to the end
        unmapped = pysam.AlignedSegment(f.header)
        unmapped.query_name = "unmapped"
        unmapped.flag = 4
        unmapped.reference_id = -1
        unmapped.reference_start = -1
        unmapped.query_sequence = "ACGT"
        unmapped.query_qualities = pysam.qualitystring_to_array("IIII")
        f.write(unmapped)
    pysam.index(str(path))
    return path


@pytest.fixture
def small_bam(tmp_path) -> Path:
    return write_bam(tmp_path / "small.bam")


@pytest.fixture(autouse=True)
def drop_cli_log_handlers():
    """the command line configures the root logger, which would outlive the captured streams of a test"""
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        if type(handler) is logging.StreamHandler:
            root.removeHandler(handler)
