import logging
import os
import time
from typing import Dict, Optional

import httpx
from prometheus_client import Counter, Histogram

from config import settings

RUN_ID = os.getenv("RUN_ID", "")
logger = logging.getLogger(__name__)


def _add_run_id(record: logging.LogRecord) -> bool:
    setattr(record, "run_id", RUN_ID)
    return True


logger.addFilter(_add_run_id)

# httpx logs full request URLs at INFO, relay api_key included.
for _name in ("httpx", "httpcore"):
    logging.getLogger(_name).setLevel(logging.WARNING)

MAX_CONNECTIONS = int(os.getenv("HTTP_MAX_CONNECTIONS", "20"))

_client: Optional[httpx.AsyncClient] = None

request_duration = Histogram(
    "upstream_request_duration_seconds", "Duration of upstream HTTP requests"
)
request_failures = Counter(
    "upstream_request_failures_total",
    "Upstream HTTP requests that produced no response",
)


def get_client() -> httpx.AsyncClient:
    global _client
    if _client is None:
        _client = httpx.AsyncClient(
            http2=True,
            timeout=settings.nse_timeout,
            limits=httpx.Limits(
                max_connections=MAX_CONNECTIONS,
                max_keepalive_connections=max(1, MAX_CONNECTIONS // 2),
            ),
        )
    return _client


def relay_target(url: str, params: Optional[Dict[str, str]] = None) -> tuple[str, Optional[dict]]:
    """Return the URL and params to hit for ``url``.

    When a forwarding service is configured the upstream URL (with its query
    string) is handed to it as ``url`` together with ``api_key``; otherwise the
    call goes direct.
    """

    proxy_url = settings.upstream_proxy_url
    if not proxy_url:
        return url, params
    target = str(httpx.URL(url, params=params)) if params else url
    return proxy_url, {"url": target, "api_key": settings.upstream_proxy_api_key}


async def request(method: str, url: str, **kwargs) -> httpx.Response:
    """Issue a single upstream request, relaying through the proxy if configured.

    Transport failures propagate as ``httpx`` exceptions; HTTP error statuses
    are returned to the caller for classification.
    """

    params = kwargs.pop("params", None)
    target, target_params = relay_target(url, params)
    client = get_client()
    t0 = time.monotonic()
    try:
        resp = await client.request(method, target, params=target_params, **kwargs)
    except httpx.RequestError as exc:
        request_failures.inc()
        logger.warning(
            "http_request_failed method=%s url=%s error=%s",
            method,
            url,
            type(exc).__name__,
        )
        raise
    duration = time.monotonic() - t0
    request_duration.observe(duration)
    logger.info(
        "http_request method=%s url=%s status=%s duration=%.2f relayed=%s",
        method,
        url,
        resp.status_code,
        duration,
        target != url,
    )
    return resp


async def get(url: str, **kwargs) -> httpx.Response:
    return await request("GET", url, **kwargs)


async def aclose() -> None:
    """Close the underlying AsyncClient and reset global state."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
