"""Async HTTP client with bounded concurrency and opt-in retry.

Blocking requests calls run on a thread pool behind a semaphore so the
factor fan-out can await them. Every request is recorded as a SourceStatus
for status.json. Retries are off by default (max_retries=0): a failed
upstream surfaces immediately as an excluded factor.
"""

import asyncio
import logging
import random
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from time import perf_counter
from typing import Any, TypeVar

import requests

from btc_risk.config import Settings
from btc_risk.utils.provenance import SourceStatus, redact_url
from btc_risk.utils.sanitize import sanitize_text

logger = logging.getLogger(__name__)

T = TypeVar("T")

_BASE_DELAY = 1.0  # seconds
_MAX_DELAY = 30.0  # seconds


class UpstreamError(Exception):
    """Raised when an upstream responds with an error or an unusable payload."""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class HttpRetryError(UpstreamError):
    """Raised when a request fails after all retries."""

    def __init__(self, url: str, message: str, last_error: Exception | None = None):
        status = last_error.status_code if isinstance(last_error, UpstreamError) else None
        super().__init__(url, message, status)
        self.last_error = last_error


def _is_retryable_error(error: Exception) -> bool:
    """Rate limits, server errors and connection trouble are transient."""
    if isinstance(error, UpstreamError) and error.status_code is not None:
        return error.status_code == 429 or 500 <= error.status_code < 600
    return isinstance(error, (requests.ConnectionError, requests.Timeout))


def _calculate_backoff(attempt: int) -> float:
    """Calculate delay with exponential backoff and jitter."""
    delay = _BASE_DELAY * (2**attempt)
    jitter = delay * 0.25 * (2 * random.random() - 1)
    return min(delay + jitter, _MAX_DELAY)


@dataclass
class RetryAttempt:
    """Record of a single attempt for provenance tracking."""

    attempt: int
    ok: bool
    error: str | None = None
    backoff_s: float | None = None


@dataclass
class RetryResult:
    """Result of a retried operation with provenance tracking."""

    result: Any
    attempts: int
    total_backoff_seconds: float
    retry_trace: list[RetryAttempt] | None = None

    def to_provenance(self) -> dict[str, Any]:
        prov: dict[str, Any] = {
            "attempts": self.attempts,
            "total_backoff_seconds": self.total_backoff_seconds,
        }
        if self.retry_trace:
            prov["retry_trace"] = [
                {
                    "attempt": t.attempt,
                    "ok": t.ok,
                    **({"error": t.error} if t.error else {}),
                    **({"backoff_s": t.backoff_s} if t.backoff_s else {}),
                }
                for t in self.retry_trace[-3:]
            ]
        return prov


class HttpClient:
    """
    Shared HTTP client for one ETL run.

    Use as a context manager so the thread pool and session are released.
    """

    def __init__(
        self,
        settings: Settings,
        session: requests.Session | None = None,
    ):
        self.settings = settings
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", settings.user_agent)
        self._executor = ThreadPoolExecutor(max_workers=settings.max_workers)
        self._semaphore = asyncio.Semaphore(settings.max_workers)
        self.statuses: list[SourceStatus] = []

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._session.close()

    async def _retry_with_backoff(
        self,
        operation_name: str,
        url: str,
        sync_func: Callable[[], T],
    ) -> RetryResult:
        """
        Execute a synchronous function on the pool, retrying transient failures.

        Raises:
            HttpRetryError: If a retryable error persists past max_retries
            UpstreamError: For non-retryable upstream failures
        """
        max_retries = self.settings.http_max_retries
        total_backoff = 0.0
        retry_trace: list[RetryAttempt] = []
        loop = asyncio.get_running_loop()

        for attempt in range(max_retries + 1):
            try:
                result = await loop.run_in_executor(self._executor, sync_func)
                retry_trace.append(RetryAttempt(attempt=attempt + 1, ok=True))
                return RetryResult(
                    result=result,
                    attempts=attempt + 1,
                    total_backoff_seconds=round(total_backoff, 2),
                    retry_trace=retry_trace if len(retry_trace) > 1 else None,
                )
            except Exception as e:
                retry_trace.append(RetryAttempt(attempt=attempt + 1, ok=False, error=type(e).__name__))

                if not _is_retryable_error(e) or attempt >= max_retries:
                    if max_retries and _is_retryable_error(e):
                        logger.warning(
                            f"{operation_name}: Failed after {attempt + 1} attempts. Last error: {e}"
                        )
                        raise HttpRetryError(
                            url, f"Failed after {attempt + 1} attempts: {e}", last_error=e
                        ) from e
                    if isinstance(e, UpstreamError):
                        raise
                    raise UpstreamError(url, f"{type(e).__name__}: {e}") from e

                delay = _calculate_backoff(attempt)
                total_backoff += delay
                retry_trace[-1].backoff_s = round(delay, 2)
                logger.info(
                    f"{operation_name}: Attempt {attempt + 1} failed ({e}). "
                    f"Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)

        raise HttpRetryError(url, f"Failed after {max_retries + 1} attempts")

    async def _get(
        self,
        name: str,
        url: str,
        params: Mapping[str, Any] | None,
        headers: Mapping[str, str] | None,
    ) -> tuple[requests.Response, SourceStatus]:
        display_url = requests.Request("GET", url, params=params).prepare().url or url

        def _fetch() -> requests.Response:
            resp = self._session.get(
                url,
                params=params,
                headers=dict(headers) if headers else None,
                timeout=self.settings.http_timeout,
            )
            if resp.status_code >= 400:
                body = sanitize_text(resp.text, max_length=200) or ""
                raise UpstreamError(url, f"HTTP {resp.status_code}: {body}", resp.status_code)
            return resp

        start = perf_counter()
        status = SourceStatus(name=name, ok=False, ms=0, url=display_url)
        self.statuses.append(status)
        try:
            async with self._semaphore:
                retry_result = await self._retry_with_backoff(f"GET {name}", url, _fetch)
        except UpstreamError as e:
            status.status_code = e.status_code
            status.error = sanitize_text(str(e), max_length=200)
            logger.warning(f"{name}: request to {redact_url(display_url)} failed: {e}")
            raise
        finally:
            status.ms = int((perf_counter() - start) * 1000)

        resp: requests.Response = retry_result.result
        status.ok = True
        status.status_code = resp.status_code
        logger.debug(f"{name}: {resp.status_code} in {status.ms}ms")
        return resp, status

    async def get_json(
        self,
        name: str,
        url: str,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """
        GET a JSON document.

        Args:
            name: Source label for status.json (e.g. "fred:WALCL")
            url: Endpoint URL
            params: Query parameters
            headers: Extra request headers

        Returns:
            Decoded JSON payload

        Raises:
            UpstreamError: On HTTP errors, transport errors or malformed JSON
        """
        resp, status = await self._get(name, url, params, headers)
        try:
            return resp.json()
        except ValueError as e:
            status.ok = False
            status.error = "malformed JSON"
            raise UpstreamError(url, f"Malformed JSON from {name}") from e

    async def get_text(
        self,
        name: str,
        url: str,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> str:
        """GET a text body (HTML, CSV). Raises UpstreamError like get_json."""
        resp, _ = await self._get(name, url, params, headers)
        return resp.text

    def status_report(self) -> list[dict[str, Any]]:
        return [s.to_dict() for s in self.statuses]
