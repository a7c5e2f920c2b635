"""Delivery of single MHTML documents to the RAG index endpoint.

Retry policy per document:

* timeout (local ``wait_for`` budget or an httpx timeout) -> retry after
  ``2 s * attempt``, and bump the shared :class:`TimeoutCounter`
* any other ``httpx.HTTPError`` (connection, protocol, decoding,
  redirect loop) -> retry after ``1 s * attempt``
* non-2xx responses -> returned at once, never retried
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Optional

import httpx

from .models import DocumentRef, SubmissionResult
from .sources import BlobStore
from .utils import excerpt, format_file_size

log = logging.getLogger(__name__)

TIMEOUT_BACKOFF_S = 2.0
TRANSPORT_BACKOFF_S = 1.0

SleepFn = Callable[[float], Awaitable[Any]]


class CircuitBreakerOpen(RuntimeError):
    """Too many consecutive submission timeouts; the whole run must stop."""

    def __init__(self, consecutive: int, ceiling: int) -> None:
        super().__init__(
            f"{consecutive} consecutive timeouts reached the ceiling of {ceiling}"
        )
        self.consecutive = consecutive
        self.ceiling = ceiling


class TimeoutCounter:
    """Consecutive-timeout counter shared by all submissions of one run.

    Only touched from the event loop thread, so the increment and the
    ceiling comparison cannot interleave with another submission.
    """

    def __init__(self, ceiling: int) -> None:
        if ceiling < 1:
            raise ValueError("ceiling must be >= 1")
        self.ceiling = ceiling
        self.consecutive = 0
        self.total_timeouts = 0
        self.tripped = False

    def record_success(self) -> None:
        self.consecutive = 0

    def record_timeout(self) -> None:
        self.consecutive += 1
        self.total_timeouts += 1
        if self.consecutive >= self.ceiling:
            self.tripped = True
            raise CircuitBreakerOpen(self.consecutive, self.ceiling)

    def ensure_closed(self) -> None:
        if self.tripped:
            raise CircuitBreakerOpen(self.consecutive, self.ceiling)


class IndexSubmitter:
    """Posts MHTML files to the ``/reindex-from-blob`` style endpoint."""

    def __init__(
        self,
        endpoint: str,
        store: BlobStore,
        counter: TimeoutCounter,
        *,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        api_key: Optional[str] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.endpoint = endpoint
        self.store = store
        self.counter = counter
        self._sleep = sleep
        self._owns_client = client is None
        # Per-attempt deadlines are enforced with wait_for, not by httpx.
        self._client = client or httpx.AsyncClient(timeout=None, transport=transport)
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}

    async def __aenter__(self) -> IndexSubmitter:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(
        self,
        ref: DocumentRef,
        payload: bytes,
        fields: dict[str, str],
    ) -> httpx.Response:
        files = {"file": (ref.name, payload, "application/octet-stream")}
        return await self._client.post(
            self.endpoint,
            data=fields,
            files=files,
            headers=self._headers,
        )

    async def submit(
        self,
        partition: str,
        ref: DocumentRef,
        payload: bytes,
        source_url: Optional[str] = None,
        timeout_s: float = 30.0,
        max_retries: int = 3,
    ) -> SubmissionResult:
        """Send one document, retrying per the module policy.

        Raises:
            CircuitBreakerOpen: the shared timeout counter hit its ceiling.
        """
        if timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")

        blob_url = self.store.public_url(ref.container, ref.name)
        fields = {"index_type": partition, "blob_url": blob_url}
        if source_url:
            fields["source_url"] = source_url

        log.debug(
            "Submit %s: endpoint=%s index_type=%s blob_url=%s source_url=%s "
            "size=%s timeout=%.1fs",
            ref.name,
            self.endpoint,
            partition,
            blob_url,
            source_url or "-",
            format_file_size(len(payload)),
            timeout_s,
        )

        last_error = "no attempt made"
        for attempt in range(1, max_retries + 1):
            self.counter.ensure_closed()
            log.info(
                "Submitting %s [%s] (attempt %s/%s)",
                ref.name,
                partition,
                attempt,
                max_retries,
            )
            t0 = time.perf_counter()
            try:
                response = await asyncio.wait_for(
                    self._post(ref, payload, fields), timeout=timeout_s
                )
            except (asyncio.TimeoutError, httpx.TimeoutException):
                last_error = f"timed out after {timeout_s:.1f}s"
                self.counter.record_timeout()
                log.warning(
                    "Timeout submitting %s (consecutive=%s/%s, attempt %s/%s)",
                    ref.name,
                    self.counter.consecutive,
                    self.counter.ceiling,
                    attempt,
                    max_retries,
                )
                if attempt < max_retries:
                    delay = TIMEOUT_BACKOFF_S * attempt
                    log.info("Retrying %s in %.1fs", ref.name, delay)
                    await self._sleep(delay)
                continue
            except httpx.HTTPError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                log.warning(
                    "Network error submitting %s (attempt %s/%s): %s",
                    ref.name,
                    attempt,
                    max_retries,
                    last_error,
                )
                if attempt < max_retries:
                    delay = TRANSPORT_BACKOFF_S * attempt
                    log.info("Retrying %s in %.1fs", ref.name, delay)
                    await self._sleep(delay)
                continue

            elapsed = time.perf_counter() - t0
            if response.is_success:
                self.counter.record_success()
                _log_response_body(ref.name, response)
                log.info(
                    "Indexed %s [%s] (%s) in %.2fs",
                    ref.name,
                    partition,
                    response.status_code,
                    elapsed,
                )
                return SubmissionResult(
                    success=True,
                    ref=ref,
                    partition=partition,
                    status_code=response.status_code,
                    attempts=attempt,
                )

            body = excerpt(response.text)
            log.error(
                "Index endpoint rejected %s [%s] (%s) in %.2fs: %s",
                ref.name,
                partition,
                response.status_code,
                elapsed,
                body,
            )
            return SubmissionResult(
                success=False,
                ref=ref,
                partition=partition,
                status_code=response.status_code,
                error=f"HTTP {response.status_code}: {body}",
                attempts=attempt,
            )

        log.error("Giving up on %s after %s attempts: %s", ref.name, max_retries, last_error)
        return SubmissionResult(
            success=False,
            ref=ref,
            partition=partition,
            error=f"failed after {max_retries} attempts: {last_error}",
            attempts=max_retries,
        )


def _log_response_body(name: str, response: httpx.Response) -> None:
    if not log.isEnabledFor(logging.DEBUG):
        return
    try:
        parsed = response.json()
    except (json.JSONDecodeError, ValueError):
        log.debug("Response body for %s: %s", name, excerpt(response.text))
        return
    log.debug(
        "Response body for %s: %s",
        name,
        json.dumps(parsed, indent=2, ensure_ascii=False),
    )
