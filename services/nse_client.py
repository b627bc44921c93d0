"""Async client for the NSE option-chain API."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from prometheus_client import Counter

from config import settings
from services import http_client, nse_session
from services.nse_session import AcquisitionError, NSEError, browser_headers

logger = logging.getLogger(__name__)

OPTION_CHAIN_PATH = "/api/option-chain-indices"
_BODY_LIMIT = 512

upstream_errors = Counter(
    "nse_upstream_errors_total", "NSE data requests that failed"
)


class Unauthorized(NSEError):
    """NSE rejected the session cookies; they have been discarded."""

    status_code = 503


class UpstreamError(NSEError):
    """NSE answered with a non-auth error status."""

    def __init__(self, message: str, *, status_code: int, body: Any = None) -> None:
        super().__init__(message, status_code=status_code)
        self.body = body


class UpstreamTimeout(NSEError):
    status_code = 504


class UpstreamUnreachable(NSEError):
    status_code = 504


class MalformedResponse(NSEError):
    """NSE answered 2xx but without ``records.data``."""

    status_code = 500


def _error_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        pass
    try:
        return resp.text[:_BODY_LIMIT]
    except Exception:  # pragma: no cover - undecodable body
        return None


async def fetch_option_chain(
    symbol: str,
    *,
    session: Optional[nse_session.NSESession] = None,
    require_data: bool = True,
) -> Dict[str, Any]:
    """Return the ``records`` object of the option chain for ``symbol``.

    Raises :class:`AcquisitionError` when no session could be established and
    one of :class:`Unauthorized`, :class:`UpstreamError`,
    :class:`UpstreamTimeout`, :class:`UpstreamUnreachable` or
    :class:`MalformedResponse` when the data request fails.  A ``403`` clears
    the stored session so the next call re-acquires it.
    """

    active = session if session is not None else nse_session.get_session()
    credential = await active.ensure_valid()

    url = f"{settings.nse_base_url}{OPTION_CHAIN_PATH}"
    headers = browser_headers()
    headers["Referer"] = f"{settings.nse_base_url}/"
    headers["Cookie"] = credential.token

    try:
        resp = await http_client.request(
            "GET",
            url,
            params={"symbol": symbol},
            headers=headers,
            timeout=settings.nse_timeout,
        )
    except httpx.TimeoutException as exc:
        upstream_errors.inc()
        logger.warning("nse_option_chain_timeout symbol=%s", symbol)
        raise UpstreamTimeout("No response from NSE API") from exc
    except httpx.RequestError as exc:
        upstream_errors.inc()
        logger.warning("nse_option_chain_unreachable symbol=%s error=%s", symbol, exc)
        raise UpstreamUnreachable("No response from NSE API") from exc

    if resp.status_code == 403:
        upstream_errors.inc()
        active.invalidate()
        logger.warning("nse_option_chain_forbidden symbol=%s; cookies cleared", symbol)
        raise Unauthorized("NSE authentication expired")

    if resp.status_code >= 400:
        upstream_errors.inc()
        body = _error_body(resp)
        logger.warning(
            "nse_option_chain_failed symbol=%s status=%s", symbol, resp.status_code
        )
        raise UpstreamError(
            f"NSE request failed ({resp.status_code})",
            status_code=resp.status_code,
            body=body,
        )

    try:
        payload = resp.json()
    except ValueError as exc:
        upstream_errors.inc()
        raise MalformedResponse("NSE response was not valid JSON") from exc

    records = payload.get("records") if isinstance(payload, dict) else None
    if not isinstance(records, dict) or (
        require_data and not isinstance(records.get("data"), list)
    ):
        upstream_errors.inc()
        logger.warning("nse_option_chain_malformed symbol=%s", symbol)
        raise MalformedResponse("NSE response missing records.data")

    logger.info(
        "nse_option_chain symbol=%s rows=%d underlying=%s",
        symbol,
        len(records.get("data") or []),
        records.get("underlyingValue"),
    )
    return records


__all__ = [
    "AcquisitionError",
    "MalformedResponse",
    "NSEError",
    "Unauthorized",
    "UpstreamError",
    "UpstreamTimeout",
    "UpstreamUnreachable",
    "fetch_option_chain",
]
