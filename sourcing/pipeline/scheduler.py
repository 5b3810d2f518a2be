"""Batch scheduler: fixed-size batches, all-settled join, inter-batch delay.

Batch N fully settles before batch N+1 starts, so at most batch_size fetches
are in flight regardless of how many references there are. One failed
reference never aborts the run; every outcome is recorded.
"""

import asyncio
import logging
import math
from collections.abc import Callable
from typing import Protocol

from sourcing.core.schemas import ProfileFetchResult
from sourcing.pipeline.progress import ProgressTracker

logger = logging.getLogger(__name__)

# Returns a reason to stop scheduling further batches, or None to continue.
StopCheck = Callable[[list[ProfileFetchResult]], str | None]


class ResultFetcher(Protocol):
    async def fetch(self, reference: str) -> ProfileFetchResult: ...


def partition(references: list[str], batch_size: int) -> list[list[str]]:
    """Split references into consecutive batches of at most batch_size."""
    if batch_size < 1:
        msg = f"batch_size must be >= 1, got {batch_size}"
        raise ValueError(msg)
    return [references[i:i + batch_size] for i in range(0, len(references), batch_size)]


def total_batches(count: int, batch_size: int) -> int:
    return math.ceil(count / batch_size) if count else 0


class BatchScheduler:
    """Drives a fetcher over references batch by batch, reporting progress."""

    def __init__(
        self,
        fetcher: ResultFetcher,
        tracker: ProgressTracker,
        *,
        batch_size: int = 5,
        batch_delay_s: float = 2.0,
        should_stop: StopCheck | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._tracker = tracker
        self._batch_size = batch_size
        self._batch_delay_s = batch_delay_s
        self._should_stop = should_stop
        self.batches_run = 0
        self.stop_reason: str | None = None

    async def run(self, references: list[str]) -> list[ProfileFetchResult]:
        """Fetch every reference and return one result per attempted reference."""
        batches = partition(references, self._batch_size)
        found = len(references)
        batch_count = len(batches)
        results: list[ProfileFetchResult] = []

        logger.info(
            "Fetching %d profiles in %d batches of up to %d",
            found, batch_count, self._batch_size,
        )
        self._tracker.update(
            phase="fetching",
            profiles_found=found,
            total_batches=batch_count,
            message=f"Starting to fetch {found} profiles...",
        )

        for index, batch in enumerate(batches, start=1):
            self._tracker.update(
                current_batch=index,
                message=f"Fetching batch {index}/{batch_count} ({len(batch)} profiles)...",
            )

            results.extend(await self._run_batch(batch))
            self.batches_run = index

            fetched = sum(1 for r in results if r.success)
            self._tracker.update(
                profiles_fetched=fetched,
                message=f"Fetched {fetched}/{found} profiles after batch {index}/{batch_count}",
            )
            logger.info("Batch %d/%d done: %d/%d fetched so far", index, batch_count, fetched, found)

            if index == batch_count:
                break

            if self._should_stop is not None:
                self.stop_reason = self._should_stop(results)
                if self.stop_reason:
                    logger.info(
                        "Stopping after batch %d/%d: %s", index, batch_count, self.stop_reason,
                    )
                    break

            await asyncio.sleep(self._batch_delay_s)

        fetched = sum(1 for r in results if r.success)
        self._tracker.update(
            phase="processing",
            profiles_fetched=fetched,
            message=f"Fetched {fetched} profiles successfully. Processing candidates...",
        )
        return results

    async def _run_batch(self, batch: list[str]) -> list[ProfileFetchResult]:
        outcomes = await asyncio.gather(
            *(self._fetcher.fetch(reference) for reference in batch),
            return_exceptions=True,
        )

        batch_results: list[ProfileFetchResult] = []
        for reference, outcome in zip(batch, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error("Fetch task for %s raised: %r", reference, outcome)
                batch_results.append(ProfileFetchResult(
                    reference=reference,
                    success=False,
                    error=str(outcome) or type(outcome).__name__,
                ))
                continue
            if outcome.success:
                logger.debug("Fetched %s", reference)
            else:
                logger.info("Failed %s: %s", reference, outcome.error)
            batch_results.append(outcome)
        return batch_results
