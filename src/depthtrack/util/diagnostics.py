"""
Diagnostics Logger

Keeps a record of every piece of input that was skipped while coverage was
accumulated or exported, separate from the bedgraph output. Each event is
written as one tab separated line to a dedicated file, or, if no file is
configured, to the ``depthtrack.diagnostics`` logger.

Usage in other modules::

    from ..util.diagnostics import get_diagnostics_logger

    diagnostics = get_diagnostics_logger()
    diagnostics.log_out_of_bounds(
        stage="add_span",
        chrID=0,
        position=1200,
        capacity=1000,
        count=3,
    )

Components that need a private sink (e.g. tests) accept an explicit
``DiagnosticsLogger`` instead of the process default.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from pathlib import Path

from .datatypes import DiagnosticsEvent

_diagnostics_logger: DiagnosticsLogger | None = None
_lock = threading.Lock()

HEADER = "category\tstage\tchrID\treason\tcount\tdetails"


class DiagnosticsLogger:
    """Collects and persists records of skipped coverage data.

    With ``keep_events=True`` nothing is written. The events are kept in
    ``events`` instead, so that a worker process can hand them back to the
    parent, which replays them with ``record``.
    """

    OUT_OF_BOUNDS = "OUT_OF_BOUNDS"
    EMPTY_REGION = "EMPTY_REGION"
    UNKNOWN_CHROMOSOME = "UNKNOWN_CHROMOSOME"

    def __init__(
        self,
        output_path: Path | str | None = None,
        logger: logging.Logger | None = None,
        keep_events: bool = False,
    ) -> None:
        """
        Parameters
        ----------
        output_path : Path or str, optional
            Path to the diagnostics file. If ``None``, events go to ``logger``.
        logger : logging.Logger, optional
            Logger used when no file is given. Defaults to the
            ``"depthtrack.diagnostics"`` logger.
        keep_events : bool
            Keep events in memory instead of writing them.
        """
        self._output_path = Path(output_path) if output_path is not None else None
        self._file_handle = None
        self._logger = logger or logging.getLogger("depthtrack.diagnostics")
        self._lock = threading.Lock()
        self._entry_count = 0
        self.keep_events = keep_events
        self.events: list[DiagnosticsEvent] = []

        if self._output_path is not None and not keep_events:
            self._output_path.parent.mkdir(parents=True, exist_ok=True)
            self._file_handle = open(self._output_path, "w")
            self._file_handle.write(HEADER + "\n")
            self._file_handle.flush()

    # ----- public API -----

    def log_out_of_bounds(
        self,
        stage: str,
        chrID: int,
        position: int,
        capacity: int,
        count: int = 1,
        details: dict | None = None,
    ) -> None:
        """Record positions that did not fit into a fixed-capacity accumulator."""
        details = dict(details or {})
        details.update({"position": position, "capacity": capacity})
        reason = (
            f"Position {position} on tid {chrID} is outside the expected max of "
            f"{capacity} -- skipping"
        )
        self.record(
            DiagnosticsEvent(
                self.OUT_OF_BOUNDS, stage, chrID, reason, count, details, logging.WARNING
            )
        )

    def log_empty_region(
        self,
        stage: str,
        chrID: int,
        reason: str,
        details: dict | str | None = None,
    ) -> None:
        """Record that a region had nothing to export."""
        self.record(
            DiagnosticsEvent(self.EMPTY_REGION, stage, chrID, reason, 0, details, logging.DEBUG)
        )

    def log_unknown_chromosome(
        self,
        stage: str,
        chrID: int,
        reason: str,
        count: int = 1,
        details: dict | str | None = None,
    ) -> None:
        """Record that data referenced a chromosome missing from the header."""
        self.record(
            DiagnosticsEvent(
                self.UNKNOWN_CHROMOSOME, stage, chrID, reason, count, details, logging.WARNING
            )
        )

    def record(self, event: DiagnosticsEvent) -> None:
        with self._lock:
            self._entry_count += 1
            if self.keep_events:
                self.events.append(event)
            elif self._file_handle is not None:
                self._file_handle.write(event.to_line() + "\n")
                self._file_handle.flush()
            else:
                self._logger.log(event.level, event.to_line())

    def record_all(self, events: Iterable[DiagnosticsEvent]) -> None:
        for event in events:
            self.record(event)

    # ----- summary -----

    def get_entry_count(self) -> int:
        return self._entry_count

    def close(self) -> None:
        with self._lock:
            if self._file_handle is not None:
                self._file_handle.close()
                self._file_handle = None


def init_diagnostics_logger(
    output_path: Path | str | None = None,
) -> DiagnosticsLogger:
    """Initialise (or re-initialise) the process wide diagnostics logger.

    Only the parent process writes. Pool workers collect their events with
    ``keep_events=True`` and return them.
    """
    global _diagnostics_logger
    with _lock:
        if _diagnostics_logger is not None:
            _diagnostics_logger.close()
        _diagnostics_logger = DiagnosticsLogger(output_path=output_path)
    return _diagnostics_logger


def get_diagnostics_logger() -> DiagnosticsLogger:
    """Return the process wide diagnostics logger, creating one if needed."""
    global _diagnostics_logger
    if _diagnostics_logger is None:
        with _lock:
            if _diagnostics_logger is None:
                _diagnostics_logger = DiagnosticsLogger()
    return _diagnostics_logger
