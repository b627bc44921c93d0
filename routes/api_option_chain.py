"""API endpoints for option-chain and India VIX data."""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from services import nse_client, vix
from services.nse_client import (
    AcquisitionError,
    MalformedResponse,
    Unauthorized,
    UpstreamError,
    UpstreamTimeout,
    UpstreamUnreachable,
)
from services.option_chain import ValidationError, format_expiry, transform_chain

router = APIRouter()

logger = logging.getLogger(__name__)

MISSING_PARAMS = "Symbol and expiry date are required."


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    body: Dict[str, Any] = {"error": message}
    body.update(extra)
    return JSONResponse(body, status_code=status_code)


def _error_response(exc: Exception) -> JSONResponse:
    """Translate a fetch failure into the JSON error served to the client."""

    if isinstance(exc, ValidationError):
        return _error(400, str(exc))
    if isinstance(exc, Unauthorized):
        return _error(503, "NSE authentication expired. Please try again.")
    if isinstance(exc, AcquisitionError):
        return _error(exc.status_code, "Failed to get NSE cookies")
    if isinstance(exc, UpstreamError):
        return _error(exc.status_code, "NSE API error", details=exc.body)
    if isinstance(exc, (UpstreamTimeout, UpstreamUnreachable)):
        return _error(504, "No response from NSE API")
    if isinstance(exc, MalformedResponse):
        return _error(500, "Invalid API response.")
    return _error(500, "Failed to fetch data from NSE API")


@router.get("/api/option-chain")
async def get_option_chain(
    symbol: str | None = Query(None),
    expiry: str | None = Query(None),
) -> JSONResponse:
    """Return the option rows of ``symbol`` expiring on ``expiry``."""

    symbol_clean = (symbol or "").strip()
    expiry_clean = (expiry or "").strip()
    if not symbol_clean or not expiry_clean:
        return _error(400, MISSING_PARAMS)

    try:
        target = format_expiry(expiry_clean)
    except ValidationError as exc:
        return _error_response(exc)

    logger.info("[option-chain] API hit: %s expiry=%s", symbol_clean, target)
    try:
        records = await nse_client.fetch_option_chain(symbol_clean)
    except Exception as exc:
        if isinstance(exc, nse_client.NSEError):
            logger.warning(
                "option_chain_failed symbol=%s kind=%s status=%s",
                symbol_clean,
                type(exc).__name__,
                exc.status_code,
            )
        else:
            logger.exception("option_chain_failed symbol=%s", symbol_clean)
        return _error_response(exc)

    try:
        rows = transform_chain(
            records["data"], records.get("underlyingValue"), expiry_clean
        )
    except (TypeError, AttributeError) as exc:
        logger.warning(
            "option_chain_malformed_rows symbol=%s error=%s", symbol_clean, exc
        )
        return _error_response(MalformedResponse(f"Unexpected row shape: {exc}"))
    logger.info("[option-chain] %s expiry=%s rows=%d", symbol_clean, target, len(rows))
    return JSONResponse(rows)


@router.get("/api/india-vix")
async def get_india_vix() -> JSONResponse:
    try:
        payload = await vix.get_india_vix()
    except vix.VixUnavailableError:
        logger.error("india_vix_unavailable")
        return _error(500, "Failed to fetch India VIX")
    return JSONResponse(payload)


__all__ = ["router"]
