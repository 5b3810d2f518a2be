"""Orchestrator: wires fetch, ingestion, scoring and linking for one sourcing run.

Data flow:
  1. Setup      — load run and (optional) job; a missing job fails the run
  2. Fetch      — BatchScheduler over RetryingFetcher
  3. Ingest     — successful payloads → candidates (dedup)
  4. Link/score — only when the run belongs to a job
  5. Complete   — plain-language summary on the run record

SourcingWorker owns runs submitted in the background: submit() returns the
run id immediately and callers poll the run record from then on.
"""

import asyncio
import logging
import sqlite3

from sourcing.core.config import Settings
from sourcing.core.db import (
    get_candidates,
    get_job,
    get_sourcing_run,
    insert_sourcing_run,
    record_fetch_calls,
    request_cancel,
    set_run_candidates,
)
from sourcing.core.schemas import (
    IngestionResult,
    LinkSummary,
    ProfileFetchResult,
    ProgressSnapshot,
    SourcingRun,
)
from sourcing.fetch.retry import ProfileFetcher, RetryingFetcher
from sourcing.pipeline.fit_scorer import FitScoringEngine
from sourcing.pipeline.ingestion import ingest_results
from sourcing.pipeline.linker import link_and_score
from sourcing.pipeline.progress import ProgressTracker
from sourcing.pipeline.scheduler import BatchScheduler, total_batches

logger = logging.getLogger(__name__)

STOP_CANCELLED = "cancelled"
STOP_BUDGET = "budget ceiling reached"
STOP_TARGET = "target count reached"


class SourcingReport:
    """Summary of a single sourcing run execution."""

    def __init__(self, run_id: int) -> None:
        self.run_id = run_id
        self.status = "queued"
        self.fetch_results: list[ProfileFetchResult] = []
        self.ingestion_results: list[IngestionResult] = []
        self.link_summary: LinkSummary | None = None
        self.stop_reason: str | None = None

    @property
    def fetched(self) -> int:
        return sum(1 for r in self.fetch_results if r.success)

    @property
    def created_ids(self) -> list[int]:
        return [r.candidate_id for r in self.ingestion_results if r.created and r.candidate_id]


def create_run(
    conn: sqlite3.Connection,
    references: list[str],
    settings: Settings,
    *,
    job_id: int | None = None,
    search_intent: str = "",
) -> int:
    """Insert a queued sourcing run and return its id."""
    progress = ProgressSnapshot(
        phase="searching",
        profiles_found=len(references),
        total_batches=total_batches(len(references), settings.sourcing.batch_size),
        message=f"Queued {len(references)} profile references",
    )
    run_id = insert_sourcing_run(
        conn,
        job_id=job_id,
        search_intent=search_intent,
        profile_urls=references,
        progress=progress,
        budget_ceiling=settings.sourcing.budget_ceiling,
        target_count=settings.sourcing.target_count,
    )
    logger.info("Created sourcing run #%d (%d references, job=%s)", run_id, len(references), job_id)
    return run_id


def _unique(ids: list[int]) -> list[int]:
    return list(dict.fromkeys(ids))


def _completion_message(report: SourcingReport) -> str:
    created = len(report.created_ids)
    duplicates = sum(1 for r in report.ingestion_results if r.is_duplicate)
    message = f"Completed: created {created} candidates ({duplicates} duplicates skipped)"
    summary = report.link_summary
    if summary is not None:
        message += f"; {summary.recommended} recommended, {summary.low_fit} below the quality bar"
        if summary.failures:
            message += f", {summary.failures} could not be scored"
    if report.stop_reason:
        message += f"; stopped early ({report.stop_reason})"
    return message


async def run_sourcing(
    conn: sqlite3.Connection,
    run_id: int,
    fetch_client: ProfileFetcher,
    engine: FitScoringEngine | None,
    settings: Settings,
) -> SourcingReport:
    """Execute the full pipeline for a previously created run."""
    report = SourcingReport(run_id)
    tracker = ProgressTracker.load(conn, run_id)

    try:
        await _execute(conn, run_id, tracker, fetch_client, engine, settings, report)
    except Exception as e:
        logger.exception("Sourcing run #%d crashed", run_id)
        if not tracker.is_terminal:
            tracker.record_error(str(e))
            tracker.fail(f"Failed: {e}")
        raise
    finally:
        run = get_sourcing_run(conn, run_id)
        report.status = run.status if run else tracker.snapshot.phase

    return report


async def _execute(
    conn: sqlite3.Connection,
    run_id: int,
    tracker: ProgressTracker,
    fetch_client: ProfileFetcher,
    engine: FitScoringEngine | None,
    settings: Settings,
    report: SourcingReport,
) -> None:
    run = get_sourcing_run(conn, run_id)
    if run is None:
        msg = f"Sourcing run #{run_id} not found"
        raise LookupError(msg)
    references = run.profile_urls

    # Step 1: setup
    job = None
    if run.job_id is not None:
        job = get_job(conn, run.job_id)
        if job is None:
            message = f"Job #{run.job_id} not found"
            tracker.record_error(message)
            tracker.fail(f"Failed: {message}")
            return
        if engine is None:
            message = "No fit scoring engine configured for a job-linked run"
            tracker.record_error(message)
            tracker.fail(f"Failed: {message}")
            return

    # Step 2: fetch
    cost_per_call = settings.provider.cost_per_call
    sourcing = settings.sourcing

    def count_call() -> None:
        try:
            record_fetch_calls(conn, run_id, 1, cost_per_call)
        except sqlite3.Error:
            logger.warning("Failed to record fetch call for run #%d", run_id, exc_info=True)

    fetcher = RetryingFetcher(fetch_client, sourcing, on_attempt=count_call)

    def should_stop(results: list[ProfileFetchResult]) -> str | None:
        if tracker.is_cancel_requested():
            return STOP_CANCELLED
        if sourcing.budget_ceiling is not None and fetcher.calls * cost_per_call >= sourcing.budget_ceiling:
            return STOP_BUDGET
        if sourcing.target_count is not None:
            if sum(1 for r in results if r.success) >= sourcing.target_count:
                return STOP_TARGET
        return None

    scheduler = BatchScheduler(
        fetcher,
        tracker,
        batch_size=sourcing.batch_size,
        batch_delay_s=sourcing.batch_delay_ms / 1000,
        should_stop=should_stop,
    )
    report.fetch_results = await scheduler.run(references)
    report.stop_reason = scheduler.stop_reason

    for result in report.fetch_results:
        if not result.success:
            tracker.record_error(f"{result.reference}: {result.error}")

    if report.stop_reason == STOP_CANCELLED:
        tracker.fail(
            f"Cancelled after {scheduler.batches_run} of {tracker.snapshot.total_batches} batches",
            status="cancelled",
        )
        return

    successes = [r for r in report.fetch_results if r.success]
    if not successes:
        if references:
            tracker.fail(f"All {len(report.fetch_results)} profile fetches failed")
        else:
            tracker.complete("Completed: no profile references provided")
        return

    # Step 3: ingest
    report.ingestion_results = ingest_results(conn, successes, run_id)
    created_ids = report.created_ids
    duplicates = [r for r in report.ingestion_results if r.is_duplicate]
    tracker.update(
        profiles_processed=len(report.ingestion_results),
        candidates_created=len(created_ids),
        candidates_duplicate=len(duplicates),
        message=f"Processed {len(successes)} profiles: {len(created_ids)} new candidates, "
                f"{len(duplicates)} duplicates",
    )
    try:
        set_run_candidates(conn, run_id, created_ids)
    except sqlite3.Error:
        logger.warning("Failed to store candidate ids for run #%d", run_id, exc_info=True)

    # Step 4: link and score (duplicates are linked too; the person was found for this job)
    if job is not None and engine is not None:
        link_ids = _unique(created_ids + [r.duplicate_of for r in duplicates if r.duplicate_of])
        candidates = get_candidates(conn, link_ids)
        tracker.update(message=f"Scoring {len(candidates)} candidates against job #{job.id}...")
        report.link_summary = await link_and_score(
            conn, job, candidates, engine, settings.scoring, sourcing_run_id=run_id,
        )
    else:
        logger.info("Run #%d has no job; candidates saved without job links", run_id)

    # Step 5: complete
    tracker.complete(_completion_message(report))


class SourcingWorker:
    """Owns background sourcing runs for one database connection.

    Usage::

        worker = SourcingWorker(conn, fetch_client, engine, settings)
        run_id = worker.submit(urls, job_id=7)   # returns immediately
        ...                                      # poll worker.status(run_id)
        await worker.wait_all()
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        fetch_client: ProfileFetcher,
        engine: FitScoringEngine | None,
        settings: Settings,
    ) -> None:
        self._conn = conn
        self._fetch_client = fetch_client
        self._engine = engine
        self._settings = settings
        self._tasks: dict[int, asyncio.Task[SourcingReport]] = {}

    def submit(
        self,
        references: list[str],
        *,
        job_id: int | None = None,
        search_intent: str = "",
    ) -> int:
        """Create a run and start it in the background. Must be called inside a running loop."""
        run_id = create_run(
            self._conn, references, self._settings, job_id=job_id, search_intent=search_intent,
        )
        task = asyncio.create_task(
            run_sourcing(self._conn, run_id, self._fetch_client, self._engine, self._settings),
            name=f"sourcing-run-{run_id}",
        )
        task.add_done_callback(self._on_done)
        self._tasks[run_id] = task
        return run_id

    def status(self, run_id: int) -> SourcingRun | None:
        return get_sourcing_run(self._conn, run_id)

    def cancel(self, run_id: int) -> bool:
        """Request cooperative cancellation; takes effect between batches."""
        return request_cancel(self._conn, run_id)

    @property
    def pending(self) -> list[int]:
        """Ids of submitted runs not yet waited on."""
        return list(self._tasks)

    async def wait(self, run_id: int) -> SourcingReport:
        """Wait for one run and release its task; the run record stays queryable via status()."""
        task = self._tasks[run_id]
        try:
            return await task
        finally:
            self._tasks.pop(run_id, None)

    async def wait_all(self) -> list[SourcingReport]:
        """Wait for every submitted run; crashed runs are logged, not re-raised."""
        waiting = dict(self._tasks)
        outcomes = await asyncio.gather(*waiting.values(), return_exceptions=True)
        for run_id in waiting:
            self._tasks.pop(run_id, None)
        return [o for o in outcomes if isinstance(o, SourcingReport)]

    @staticmethod
    def _on_done(task: asyncio.Task[SourcingReport]) -> None:
        if task.cancelled():
            logger.warning("Task %s was cancelled", task.get_name())
            return
        error = task.exception()
        if error is not None:
            logger.error("Task %s failed: %s", task.get_name(), error)
