"""Retrying fetch coordinator: bounded retries with exponential backoff.

Terminal errors (auth, invalid reference, suspended account) short-circuit;
everything else is retried up to max_retries with the delay doubling per
attempt and capped.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from sourcing.core.config import SourcingConfig
from sourcing.core.schemas import ProfileFetchResult, ProfilePayload
from sourcing.fetch.errors import TerminalFetchError

logger = logging.getLogger(__name__)


class ProfileFetcher(Protocol):
    async def fetch(self, reference: str) -> ProfilePayload: ...


def backoff_delay(retry: int, base_s: float, cap_s: float) -> float:
    """Delay before the given retry (1-based): base, 2*base, 4*base, ... capped at cap_s."""
    return min(base_s * (2 ** (retry - 1)), cap_s)


async def fetch_with_retry(
    client: ProfileFetcher,
    reference: str,
    max_retries: int = 2,
    *,
    backoff_base_s: float = 2.0,
    backoff_cap_s: float = 10.0,
    on_attempt: Callable[[], None] | None = None,
) -> ProfileFetchResult:
    """Fetch one reference, retrying transient failures.

    Never raises for fetch failures; the outcome is folded into the result.
    """
    last_error: Exception | None = None

    for attempt in range(max_retries + 1):
        if attempt > 0:
            delay = backoff_delay(attempt, backoff_base_s, backoff_cap_s)
            logger.info("Retry %d/%d for %s in %.1fs", attempt, max_retries, reference, delay)
            await asyncio.sleep(delay)

        if on_attempt is not None:
            on_attempt()

        try:
            payload = await client.fetch(reference)
        except TerminalFetchError as e:
            logger.warning("Not retrying %s: %s", reference, e)
            return ProfileFetchResult(
                reference=reference,
                success=False,
                error=str(e),
                retries=attempt,
                attempts=attempt + 1,
                terminal=True,
            )
        except Exception as e:
            last_error = e
            logger.debug("Attempt %d for %s failed: %s", attempt + 1, reference, e)
            continue

        return ProfileFetchResult(
            reference=reference,
            success=True,
            payload=payload,
            retries=attempt,
            attempts=attempt + 1,
        )

    error = str(last_error) or type(last_error).__name__
    logger.warning(
        "Giving up on %s after %d attempts: %s", reference, max_retries + 1, error,
    )
    return ProfileFetchResult(
        reference=reference,
        success=False,
        error=error,
        retries=max_retries,
        attempts=max_retries + 1,
    )


class RetryingFetcher:
    """Wraps a fetch client with the retry policy from SourcingConfig.

    Counts every provider attempt so callers can track cost and budgets.
    """

    def __init__(
        self,
        client: ProfileFetcher,
        config: SourcingConfig,
        on_attempt: Callable[[], None] | None = None,
    ) -> None:
        self._client = client
        self._config = config
        self._on_attempt = on_attempt
        self.calls = 0

    @property
    def max_retries(self) -> int:
        return self._config.max_retries

    def _count_attempt(self) -> None:
        self.calls += 1
        if self._on_attempt is not None:
            self._on_attempt()

    async def fetch(self, reference: str) -> ProfileFetchResult:
        return await fetch_with_retry(
            self._client,
            reference,
            self._config.max_retries,
            backoff_base_s=self._config.backoff_base_ms / 1000,
            backoff_cap_s=self._config.backoff_cap_ms / 1000,
            on_attempt=self._count_attempt,
        )
