"""Tests for the progress tracker state machine."""

import sqlite3

import pytest

from sourcing.core.db import get_sourcing_run, init_db, insert_sourcing_run, request_cancel
from sourcing.core.schemas import ProgressSnapshot
from sourcing.pipeline.progress import ProgressError, ProgressTracker, check_transition


@pytest.fixture()
def db(tmp_path):  # type: ignore[no-untyped-def]
    return init_db(tmp_path / "test.db")


@pytest.fixture()
def run_id(db: sqlite3.Connection) -> int:
    return insert_sourcing_run(
        db,
        job_id=None,
        search_intent="",
        profile_urls=["a", "b", "c"],
        progress=ProgressSnapshot(profiles_found=3, total_batches=1),
    )


class TestCheckTransition:
    def test_forward_allowed(self) -> None:
        check_transition(ProgressSnapshot(), ProgressSnapshot(phase="fetching"))

    def test_same_phase_allowed(self) -> None:
        check_transition(ProgressSnapshot(phase="fetching"), ProgressSnapshot(phase="fetching"))

    def test_backward_rejected(self) -> None:
        with pytest.raises(ProgressError, match="backwards"):
            check_transition(ProgressSnapshot(phase="processing"), ProgressSnapshot(phase="fetching"))

    @pytest.mark.parametrize("phase", ["searching", "fetching", "processing"])
    def test_fail_from_any_active_phase(self, phase: str) -> None:
        check_transition(ProgressSnapshot(phase=phase), ProgressSnapshot(phase="failed"))  # type: ignore[arg-type]

    @pytest.mark.parametrize("terminal", ["completed", "failed"])
    def test_terminal_is_final(self, terminal: str) -> None:
        with pytest.raises(ProgressError, match="already"):
            check_transition(
                ProgressSnapshot(phase=terminal),  # type: ignore[arg-type]
                ProgressSnapshot(phase="fetching"),
            )

    def test_completed_cannot_fail(self) -> None:
        with pytest.raises(ProgressError):
            check_transition(ProgressSnapshot(phase="completed"), ProgressSnapshot(phase="failed"))

    def test_counts_cannot_decrease(self) -> None:
        old = ProgressSnapshot(profiles_found=5, profiles_fetched=3)
        with pytest.raises(ProgressError, match="profiles_fetched decreased"):
            check_transition(old, ProgressSnapshot(profiles_found=5, profiles_fetched=2))

    def test_fetched_bounded_by_found(self) -> None:
        with pytest.raises(ProgressError, match="exceeds"):
            check_transition(
                ProgressSnapshot(profiles_found=2),
                ProgressSnapshot(profiles_found=2, profiles_fetched=3),
            )


class TestProgressTracker:
    def test_load_resumes_snapshot(self, db, run_id) -> None:  # type: ignore[no-untyped-def]
        tracker = ProgressTracker.load(db, run_id)
        assert tracker.snapshot.profiles_found == 3
        assert tracker.run_id == run_id

    def test_load_unknown_run(self, db) -> None:  # type: ignore[no-untyped-def]
        with pytest.raises(LookupError):
            ProgressTracker.load(db, 404)

    def test_update_persists_whole_snapshot(self, db, run_id) -> None:  # type: ignore[no-untyped-def]
        tracker = ProgressTracker.load(db, run_id)
        tracker.update(phase="fetching", current_batch=1, message="Fetching batch 1/1")

        run = get_sourcing_run(db, run_id)
        assert run is not None
        assert run.status == "fetching_profiles"
        assert run.progress.phase == "fetching"
        assert run.progress.current_batch == 1
        assert run.progress.profiles_found == 3
        assert run.progress.message == "Fetching batch 1/1"

    def test_rejected_update_leaves_snapshot(self, db, run_id) -> None:  # type: ignore[no-untyped-def]
        tracker = ProgressTracker.load(db, run_id)
        tracker.update(phase="processing")
        with pytest.raises(ProgressError):
            tracker.update(phase="fetching")
        assert tracker.snapshot.phase == "processing"

    def test_complete(self, db, run_id) -> None:  # type: ignore[no-untyped-def]
        tracker = ProgressTracker.load(db, run_id)
        tracker.complete("Completed: created 3 candidates")
        assert tracker.is_terminal

        run = get_sourcing_run(db, run_id)
        assert run is not None
        assert run.status == "completed"
        assert run.completed_at is not None
        assert run.progress.message == "Completed: created 3 candidates"

    def test_fail(self, db, run_id) -> None:  # type: ignore[no-untyped-def]
        tracker = ProgressTracker.load(db, run_id)
        tracker.update(phase="fetching")
        tracker.fail("Job #9 not found")

        run = get_sourcing_run(db, run_id)
        assert run is not None
        assert run.status == "failed"
        assert run.progress.phase == "failed"

    def test_fail_with_specific_status(self, db, run_id) -> None:  # type: ignore[no-untyped-def]
        tracker = ProgressTracker.load(db, run_id)
        tracker.fail("Cancelled after 1 of 3 batches", status="cancelled")

        run = get_sourcing_run(db, run_id)
        assert run is not None
        assert run.status == "cancelled"
        assert run.progress.phase == "failed"

    def test_record_error(self, db, run_id) -> None:  # type: ignore[no-untyped-def]
        tracker = ProgressTracker.load(db, run_id)
        tracker.record_error("ref-a: account suspended")
        tracker.record_error("ref-b: timeout")

        assert tracker.snapshot.errors == ["ref-a: account suspended", "ref-b: timeout"]
        run = get_sourcing_run(db, run_id)
        assert run is not None
        assert run.error_log == ["ref-a: account suspended", "ref-b: timeout"]
        assert run.progress.errors == run.error_log

    def test_record_error_after_terminal(self, db, run_id) -> None:  # type: ignore[no-untyped-def]
        tracker = ProgressTracker.load(db, run_id)
        tracker.fail("Failed: boom")
        tracker.record_error("boom")
        assert tracker.snapshot.errors == ["boom"]

    def test_cancel_flag(self, db, run_id) -> None:  # type: ignore[no-untyped-def]
        tracker = ProgressTracker.load(db, run_id)
        assert not tracker.is_cancel_requested()
        request_cancel(db, run_id)
        assert tracker.is_cancel_requested()

    def test_persistence_failure_is_swallowed(self, db, run_id) -> None:  # type: ignore[no-untyped-def]
        tracker = ProgressTracker.load(db, run_id)
        db.close()
        snapshot = tracker.update(phase="fetching", current_batch=1)
        assert snapshot.phase == "fetching"
        assert tracker.snapshot.current_batch == 1
        assert not tracker.is_cancel_requested()
