"""Profile fetch client for the third-party scraping API.

Fetching is a two-step async job on the provider side:
  1. POST /trigger            → {"snapshot_id": ...}
  2. GET  /snapshot/{id}      → repeated until ready / failed / poll budget spent

The snapshot endpoint answers either with a bare array of records or with a
{"status": ..., "data": [...]} envelope. decode_snapshot() folds both into one
tagged variant so nothing downstream inspects raw shapes.
"""

import asyncio
import logging
from typing import Any, Literal
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, ConfigDict

from sourcing.core.config import ProviderConfig
from sourcing.core.schemas import ProfilePayload
from sourcing.fetch.errors import (
    AccountSuspendedError,
    AuthenticationError,
    FetchTimeoutError,
    InvalidReferenceError,
    TransientFetchError,
)

logger = logging.getLogger(__name__)

_PENDING_STATUSES = frozenset({"", "running", "pending", "building", "collecting", "starting"})
_FAILED_STATUSES = frozenset({"failed", "error"})
_INVALID_REFERENCE_CODES = frozenset({400, 404, 422})


class SnapshotReady(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["ready"] = "ready"
    payload: ProfilePayload


class SnapshotPending(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["pending"] = "pending"
    status: str = ""


class SnapshotFailed(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["failed"] = "failed"
    status: str
    reason: str = ""


SnapshotState = SnapshotReady | SnapshotPending | SnapshotFailed


def decode_snapshot(data: Any) -> SnapshotState:
    """Normalize a snapshot response body into a SnapshotState."""
    if isinstance(data, list):
        first = data[0] if data else None
        if isinstance(first, dict):
            payload = ProfilePayload.from_raw(first)
            if payload.has_profile_content():
                return SnapshotReady(payload=payload)
        # Array without profile content yet: the provider is still collecting.
        return SnapshotPending(status="empty")

    if not isinstance(data, dict):
        return SnapshotPending(status="unrecognized")

    status = str(data.get("status") or "").strip().lower()

    if status == "ready":
        records = data.get("data")
        if isinstance(records, list) and records and isinstance(records[0], dict):
            return SnapshotReady(payload=ProfilePayload.from_raw(records[0]))
        return SnapshotFailed(status=status, reason="ready status but no profile data")

    if status in _FAILED_STATUSES:
        reason = data.get("error") or data.get("message") or ""
        return SnapshotFailed(status=status, reason=str(reason))

    if not status:
        payload = ProfilePayload.from_raw(data)
        if payload.has_profile_content():
            return SnapshotReady(payload=payload)

    if status not in _PENDING_STATUSES:
        logger.warning("Unexpected snapshot status '%s', continuing to poll", status)
    return SnapshotPending(status=status)


def _mentions_suspension(text: str) -> bool:
    return "suspend" in text.lower()


def raise_for_response(response: httpx.Response, *, stage: str) -> None:
    """Raise the classified FetchError for a non-success response."""
    if response.is_success:
        return

    body = response.text[:500]
    code = response.status_code

    if _mentions_suspension(body):
        msg = f"Provider account suspended ({stage} {code}): {body}"
        raise AccountSuspendedError(msg)
    if code in (401, 403):
        msg = f"Provider authentication failed ({stage} {code}): {body}"
        raise AuthenticationError(msg)
    if stage == "trigger" and code in _INVALID_REFERENCE_CODES:
        msg = f"Invalid profile reference rejected by provider ({code}): {body}"
        raise InvalidReferenceError(msg)

    msg = f"Provider {stage} request failed: {code} {body}"
    raise TransientFetchError(msg)


class ProfileFetchClient:
    """Fetches one profile per call from the scraping provider.

    Usage::

        async with ProfileFetchClient(settings.provider) as client:
            payload = await client.fetch("https://www.linkedin.com/in/someone")
    """

    def __init__(
        self,
        config: ProviderConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._api_key = config.resolve_api_key()
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout_s, connect=10.0),
        )

    async def __aenter__(self) -> "ProfileFetchClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def validate_reference(self, reference: str) -> None:
        """Reject references that are not http(s) URLs on the supported host."""
        parsed = urlparse(reference.strip())
        host = (parsed.hostname or "").lower()
        allowed = self._config.allowed_host.lower()
        if parsed.scheme not in ("http", "https") or not (
            host == allowed or host.endswith("." + allowed)
        ):
            msg = f"Invalid profile reference: {reference!r}"
            raise InvalidReferenceError(msg)

    async def fetch(self, reference: str) -> ProfilePayload:
        """Trigger a scrape for reference and poll until its payload is ready."""
        self.validate_reference(reference)
        snapshot_id = await self._trigger(reference)
        logger.debug("Snapshot %s started for %s", snapshot_id, reference)
        return await self._poll(snapshot_id)

    async def _trigger(self, reference: str) -> str:
        response = await self._request(
            "POST",
            "/trigger",
            params={"dataset_id": self._config.dataset_id, "format": "json"},
            json=[{"url": reference.strip()}],
        )
        raise_for_response(response, stage="trigger")

        try:
            body = response.json()
        except ValueError as e:
            msg = f"Trigger response is not JSON: {e}"
            raise TransientFetchError(msg) from e

        snapshot_id = body.get("snapshot_id") if isinstance(body, dict) else None
        if not snapshot_id:
            msg = "Trigger response missing snapshot_id"
            raise TransientFetchError(msg)
        return str(snapshot_id)

    async def _poll(self, snapshot_id: str) -> ProfilePayload:
        max_attempts = self._config.poll_max_attempts

        for attempt in range(1, max_attempts + 1):
            logger.debug("Polling snapshot %s (attempt %d/%d)", snapshot_id, attempt, max_attempts)
            try:
                state = await self._poll_once(snapshot_id)
            except TransientFetchError as e:
                logger.warning("Poll attempt %d for snapshot %s failed: %s", attempt, snapshot_id, e)
            else:
                if isinstance(state, SnapshotReady):
                    return state.payload
                if isinstance(state, SnapshotFailed):
                    reason = f"Scrape job {snapshot_id} {state.status}: {state.reason}".rstrip(": ")
                    if _mentions_suspension(state.reason):
                        raise AccountSuspendedError(reason)
                    raise TransientFetchError(reason)

            if attempt < max_attempts:
                await asyncio.sleep(self._config.poll_delay_s)

        waited = round(max_attempts * self._config.poll_delay_s)
        msg = f"Scrape job {snapshot_id} timed out after {max_attempts} polling attempts ({waited}s)"
        raise FetchTimeoutError(msg)

    async def _poll_once(self, snapshot_id: str) -> SnapshotState:
        response = await self._request(
            "GET", f"/snapshot/{snapshot_id}", params={"format": "json"},
        )
        raise_for_response(response, stage="poll")
        try:
            data = response.json()
        except ValueError as e:
            msg = f"Snapshot response is not JSON: {e}"
            raise TransientFetchError(msg) from e
        return decode_snapshot(data)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            return await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            msg = f"Provider {method} {path} timed out: {e}"
            raise TransientFetchError(msg) from e
        except httpx.HTTPError as e:
            msg = f"Provider {method} {path} failed: {e}"
            raise TransientFetchError(msg) from e
