"""Progress tracker: the persisted phase/count state machine of a sourcing run.

Phases move forward only (searching → fetching → processing → completed);
"failed" is reachable from any non-terminal phase. Counts are cumulative and
never decrease. Every write replaces the whole snapshot.

Persistence is advisory: a failed write is logged and the in-memory snapshot
is written again on the next update.
"""

import logging
import sqlite3
from typing import Any

from sourcing.core.db import append_run_error, get_sourcing_run, is_cancel_requested, write_progress
from sourcing.core.schemas import PHASE_ORDER, PHASE_TO_STATUS, TERMINAL_PHASES, ProgressSnapshot

logger = logging.getLogger(__name__)

_COUNT_FIELDS = (
    "profiles_found",
    "profiles_fetched",
    "profiles_processed",
    "candidates_created",
    "candidates_duplicate",
    "current_batch",
    "total_batches",
)


class ProgressError(ValueError):
    """An update would break phase ordering or count monotonicity."""


def check_transition(old: ProgressSnapshot, new: ProgressSnapshot) -> None:
    """Raise ProgressError if moving from old to new is not allowed."""
    if old.phase in TERMINAL_PHASES and new.phase != old.phase:
        msg = f"Run already {old.phase}; cannot move to {new.phase}"
        raise ProgressError(msg)
    if new.phase != "failed" and PHASE_ORDER.index(new.phase) < PHASE_ORDER.index(old.phase):
        msg = f"Phase cannot move backwards: {old.phase} → {new.phase}"
        raise ProgressError(msg)

    for name in _COUNT_FIELDS:
        if getattr(new, name) < getattr(old, name):
            msg = f"{name} decreased: {getattr(old, name)} → {getattr(new, name)}"
            raise ProgressError(msg)

    if new.profiles_fetched > new.profiles_found:
        msg = f"profiles_fetched ({new.profiles_fetched}) exceeds profiles_found ({new.profiles_found})"
        raise ProgressError(msg)


class ProgressTracker:
    """Owns the progress snapshot of one sourcing run."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        run_id: int,
        snapshot: ProgressSnapshot | None = None,
    ) -> None:
        self._conn = conn
        self._run_id = run_id
        self._snapshot = snapshot or ProgressSnapshot()
        self._status_override: str | None = None

    @classmethod
    def load(cls, conn: sqlite3.Connection, run_id: int) -> "ProgressTracker":
        """Resume tracking from the run's stored snapshot."""
        run = get_sourcing_run(conn, run_id)
        if run is None:
            msg = f"Sourcing run #{run_id} not found"
            raise LookupError(msg)
        return cls(conn, run_id, run.progress)

    @property
    def run_id(self) -> int:
        return self._run_id

    @property
    def snapshot(self) -> ProgressSnapshot:
        return self._snapshot

    @property
    def is_terminal(self) -> bool:
        return self._snapshot.phase in TERMINAL_PHASES

    def update(self, **changes: Any) -> ProgressSnapshot:
        """Apply changes to a copy of the snapshot, validate, and persist it whole."""
        new = ProgressSnapshot.model_validate({**self._snapshot.model_dump(), **changes})
        check_transition(self._snapshot, new)
        self._snapshot = new
        self._persist()
        return new

    def record_error(self, message: str) -> None:
        """Append an error to the snapshot and to the run's error log."""
        self.update(errors=[*self._snapshot.errors, message])
        try:
            append_run_error(self._conn, self._run_id, message)
        except sqlite3.Error:
            logger.warning("Failed to append error to run #%d", self._run_id, exc_info=True)

    def complete(self, message: str) -> ProgressSnapshot:
        logger.info("Run #%d completed: %s", self._run_id, message)
        return self.update(phase="completed", message=message)

    def fail(self, message: str, *, status: str = "failed") -> ProgressSnapshot:
        """Move the run into 'failed'. status may record a more specific outcome (e.g. 'cancelled')."""
        logger.warning("Run #%d %s: %s", self._run_id, status, message)
        self._status_override = status
        return self.update(phase="failed", message=message)

    def is_cancel_requested(self) -> bool:
        try:
            return is_cancel_requested(self._conn, self._run_id)
        except sqlite3.Error:
            logger.warning("Could not read cancel flag for run #%d", self._run_id, exc_info=True)
            return False

    def _persist(self) -> None:
        snapshot = self._snapshot
        status = self._status_override or PHASE_TO_STATUS[snapshot.phase]
        try:
            write_progress(
                self._conn,
                self._run_id,
                snapshot,
                status,
                completed=snapshot.phase in TERMINAL_PHASES,
            )
        except sqlite3.Error:
            logger.warning(
                "Failed to persist progress for run #%d (phase=%s)",
                self._run_id, snapshot.phase,
                exc_info=True,
            )
