"""India VIX lookup with a Yahoo Finance fallback."""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

import yfinance as yf
from prometheus_client import Counter

from config import settings
from services import nse_client

logger = logging.getLogger(__name__)

VIX_SYMBOL = "INDIAVIX"

vix_fallback_total = Counter(
    "india_vix_fallback_total", "India VIX lookups served from Yahoo Finance"
)


class VixUnavailableError(Exception):
    """Raised when neither NSE nor Yahoo Finance produced a VIX value."""


async def _fetch_nse_vix() -> float:
    records = await nse_client.fetch_option_chain(VIX_SYMBOL, require_data=False)
    value = records.get("underlyingValue")
    if value is None:
        raise nse_client.MalformedResponse("NSE response missing underlyingValue")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise nse_client.MalformedResponse(
            f"NSE underlyingValue not numeric: {value!r}"
        ) from exc


async def _fetch_yfinance_vix(symbol: Optional[str] = None) -> Optional[float]:
    ticker_symbol = symbol or settings.vix_fallback_symbol

    def _quote() -> Optional[float]:
        try:
            ticker = yf.Ticker(ticker_symbol)
            info = ticker.info
        except Exception as exc:  # pragma: no cover - network failure
            logger.warning("yfinance_vix_error symbol=%s err=%s", ticker_symbol, exc)
            return None

        price = info.get("regularMarketPrice")
        if price is None:
            price = info.get("previousClose")
        if price is None:
            return None
        try:
            return float(price)
        except (TypeError, ValueError):
            return None

    return await asyncio.to_thread(_quote)


async def get_india_vix() -> Dict[str, float]:
    try:
        value = await _fetch_nse_vix()
    except Exception as exc:
        logger.warning("india_vix_nse_failed err=%s; trying yahoo", exc)
    else:
        logger.info("india_vix source=nse value=%.2f", value)
        return {"vix": value}

    vix_fallback_total.inc()
    fallback = await _fetch_yfinance_vix()
    if fallback is None:
        raise VixUnavailableError("Failed to fetch India VIX")
    logger.info("india_vix source=yfinance value=%.2f", fallback)
    return {"vix": fallback}


__all__ = ["VixUnavailableError", "get_india_vix"]
