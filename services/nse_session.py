"""Session cookie acquisition for the NSE website.

The exchange only answers its JSON API for clients holding the cookies it
hands out on the home page.  :class:`NSESession` keeps one cookie set in the
shared :class:`~services.credential_store.CredentialStore`, re-acquires it
once it is older than the configured TTL, and coalesces concurrent
re-acquisitions into a single request.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, List, Optional

import httpx
from prometheus_client import Counter, Histogram

from config import settings
from services import http_client
from services.credential_store import Credential, CredentialStore, get_store

logger = logging.getLogger(__name__)

acquire_total = Counter(
    "nse_session_acquire_total", "NSE session cookie acquisition attempts"
)
acquire_failure_total = Counter(
    "nse_session_acquire_failure_total", "Failed NSE session cookie acquisitions"
)
acquire_coalesced_total = Counter(
    "nse_session_refresh_coalesced_total",
    "Callers that waited on an acquisition already in flight",
)
acquire_duration = Histogram(
    "nse_session_acquire_duration_seconds",
    "Duration of NSE session cookie acquisition requests",
)


class NSEError(RuntimeError):
    """Base class for failures talking to the NSE website."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class AcquisitionError(NSEError):
    """Raised when no usable session cookies could be obtained."""

    status_code = 503


def browser_headers() -> Dict[str, str]:
    return {
        "User-Agent": settings.nse_user_agent,
        "Accept-Language": settings.nse_accept_language,
    }


def extract_cookies(resp: httpx.Response) -> str:
    """Join the ``name=value`` part of every ``Set-Cookie`` header."""

    pairs: List[str] = []
    for raw in resp.headers.get_list("set-cookie"):
        pair = raw.split(";", 1)[0].strip()
        if pair and "=" in pair:
            pairs.append(pair)
    return "; ".join(pairs)


class NSESession:
    def __init__(
        self,
        store: Optional[CredentialStore] = None,
        *,
        ttl: Optional[float] = None,
    ) -> None:
        self._store = store if store is not None else get_store()
        self._ttl = ttl
        self._lock = asyncio.Lock()
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None
        self._acquire_task: Optional[asyncio.Task[Credential]] = None
        self._acquire_task_loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def store(self) -> CredentialStore:
        return self._store

    @property
    def ttl(self) -> float:
        if self._ttl is not None:
            return float(self._ttl)
        return float(settings.nse_cookie_ttl_seconds)

    def is_fresh(self, credential: Optional[Credential], now: Optional[float] = None) -> bool:
        if credential is None:
            return False
        current = time.monotonic() if now is None else now
        return credential.age(current) <= self.ttl

    def invalidate(self) -> None:
        self._store.clear()
        logger.info("nse_session_invalidated")

    async def _acquire(self) -> Credential:
        url = f"{settings.nse_base_url}/"
        acquire_total.inc()
        t0 = time.monotonic()
        try:
            resp = await http_client.request(
                "GET", url, headers=browser_headers(), timeout=settings.nse_timeout
            )
        except httpx.TimeoutException as exc:
            acquire_failure_total.inc()
            logger.warning("nse_session_acquire_timeout url=%s", url)
            raise AcquisitionError(
                "Timed out fetching NSE cookies", status_code=504
            ) from exc
        except httpx.RequestError as exc:
            acquire_failure_total.inc()
            logger.warning("nse_session_acquire_unreachable url=%s error=%s", url, exc)
            raise AcquisitionError(
                "NSE home page unreachable", status_code=504
            ) from exc
        duration = time.monotonic() - t0
        acquire_duration.observe(duration)

        if resp.status_code >= 400:
            acquire_failure_total.inc()
            logger.warning(
                "nse_session_acquire_failed status=%s duration=%.2f",
                resp.status_code,
                duration,
            )
            raise AcquisitionError(
                f"NSE home page returned {resp.status_code}", status_code=503
            )

        cookies = extract_cookies(resp)
        if not cookies:
            acquire_failure_total.inc()
            logger.warning("nse_session_acquire_no_cookies status=%s", resp.status_code)
            raise AcquisitionError("NSE home page set no cookies", status_code=503)

        credential = Credential(token=cookies, acquired_at=time.monotonic())
        self._store.set(credential)
        logger.info(
            "nse_session_refreshed cookies=%d duration=%.2f",
            cookies.count("; ") + 1,
            duration,
        )
        return credential

    async def ensure_valid(self) -> Credential:
        current = self._store.get()
        if current is not None and self.is_fresh(current):
            return current

        loop = asyncio.get_running_loop()
        if self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        task: Optional[asyncio.Task[Credential]] = None
        async with self._lock:
            current = self._store.get()
            if current is not None and self.is_fresh(current):
                return current

            pending = self._acquire_task
            if pending is not None:
                if pending.done() or self._acquire_task_loop is not loop:
                    self._acquire_task = None
                    self._acquire_task_loop = None
                else:
                    task = pending
                    acquire_coalesced_total.inc()

            if task is None:
                task = asyncio.create_task(self._acquire())
                self._acquire_task = task
                self._acquire_task_loop = loop

        try:
            return await task
        finally:
            async with self._lock:
                if self._acquire_task is task:
                    self._acquire_task = None
                    self._acquire_task_loop = None


_session = NSESession()


def get_session() -> NSESession:
    return _session


async def ensure_valid() -> Credential:
    return await _session.ensure_valid()


def invalidate() -> None:
    _session.invalidate()
