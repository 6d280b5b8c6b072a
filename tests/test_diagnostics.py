import json
import logging

from depthtrack.util import diagnostics
from depthtrack.util.diagnostics import DiagnosticsLogger


def test_events_go_to_logger_without_file(caplog):
    logger = DiagnosticsLogger(logger=logging.getLogger("test.sink"))
    with caplog.at_level(logging.DEBUG, logger="test.sink"):
        logger.log_out_of_bounds(stage="add_span", chrID=3, position=42, capacity=10, count=2)
        logger.log_empty_region(stage="process_bam", chrID=1, reason="zero width")
    assert logger.get_entry_count() == 2
    assert [r.levelno for r in caplog.records] == [logging.WARNING, logging.DEBUG]
    category, stage, chrID, reason, count, details = caplog.records[0].getMessage().split("\t")
    assert (category, stage, chrID, count) == ("OUT_OF_BOUNDS", "add_span", "3", "2")
    assert reason == "Position 42 on tid 3 is outside the expected max of 10 -- skipping"
    assert json.loads(details) == {"position": 42, "capacity": 10}


def test_events_go_to_file(tmp_path):
    path = tmp_path / "sub" / "diagnostics.tsv"
    logger = DiagnosticsLogger(output_path=path)
    logger.log_unknown_chromosome(
        stage="query", chrID=9, reason="not in header", details={"chrom": "chrUn"}
    )
    logger.close()
    lines = path.read_text().splitlines()
    assert lines[0] == "category\tstage\tchrID\treason\tcount\tdetails"
    assert lines[1] == 'UNKNOWN_CHROMOSOME\tquery\t9\tnot in header\t1\t{"chrom": "chrUn"}'


def test_close_is_idempotent(tmp_path):
    logger = DiagnosticsLogger(output_path=tmp_path / "d.tsv")
    logger.close()
    logger.close()


def test_init_replaces_process_default(tmp_path):
    first = diagnostics.init_diagnostics_logger(tmp_path / "first.tsv")
    assert diagnostics.get_diagnostics_logger() is first
    second = diagnostics.init_diagnostics_logger()
    assert diagnostics.get_diagnostics_logger() is second
    assert second is not first
    # the replaced logger was closed, further events end up in the logger fallback
    first.log_empty_region(stage="test", chrID=0, reason="after close")
    assert (tmp_path / "first.tsv").read_text().count("\n") == 1


def test_kept_events_are_replayed_by_the_parent(tmp_path):
    worker = DiagnosticsLogger(output_path=tmp_path / "unused.tsv", keep_events=True)
    worker.log_out_of_bounds(stage="add_span", chrID=0, position=15, capacity=15, count=4)
    worker.log_unknown_chromosome(stage="process_region", chrID=2, reason="not in header")
    assert worker.get_entry_count() == 2
    assert [e.category for e in worker.events] == ["OUT_OF_BOUNDS", "UNKNOWN_CHROMOSOME"]
    assert not (tmp_path / "unused.tsv").exists()

    path = tmp_path / "diagnostics.tsv"
    parent = DiagnosticsLogger(output_path=path)
    parent.record_all(worker.events)
    parent.close()
    assert parent.get_entry_count() == 2
    lines = path.read_text().splitlines()
    assert len(lines) == 3
    assert lines[1].startswith("OUT_OF_BOUNDS\tadd_span\t0\tPosition 15 on tid 0")
    assert lines[2] == "UNKNOWN_CHROMOSOME\tprocess_region\t2\tnot in header\t1\t"
