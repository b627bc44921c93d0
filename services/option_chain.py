"""Reshape NSE option-chain records into the rows served to the frontend."""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

__all__ = [
    "ValidationError",
    "format_expiry",
    "select_option_type",
    "to_option_row",
    "transform_chain",
]

# NSE spells months in English regardless of server locale.
_MONTHS = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)

_LEG_FIELDS = (
    ("LTP", "lastPrice"),
    ("OI", "openInterest"),
    ("volume", "totalTradedVolume"),
)


class ValidationError(ValueError):
    """Raised for missing or malformed request parameters."""

    status_code = 400


def _parse_expiry(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value or "").strip()
    if not raw:
        raise ValidationError("Invalid expiry date.")
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return date.fromisoformat(raw)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(raw).date()
    except ValueError as exc:
        raise ValidationError("Invalid expiry date.") from exc


def format_expiry(value: Any) -> str:
    """Return ``value`` as NSE writes expiries, e.g. ``25-Dec-2025``."""

    day = _parse_expiry(value)
    return f"{day.day:02d}-{_MONTHS[day.month - 1]}-{day.year:04d}"


def select_option_type(strike_price: float, market_price: float) -> str:
    if strike_price is None or market_price is None:
        return "Put"
    return "Call" if strike_price < market_price else "Put"


def _leg(raw: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    if not raw:
        return {name: 0 for name, _ in _LEG_FIELDS}
    out: Dict[str, Any] = {}
    for name, source in _LEG_FIELDS:
        value = raw.get(source)
        out[name] = 0 if value is None else value
    return out


def to_option_row(item: Mapping[str, Any], market_price: Any) -> Dict[str, Any]:
    strike = item.get("strikePrice")
    return {
        "strikePrice": strike,
        "marketPrice": market_price,
        "optionType": select_option_type(strike, market_price),
        "call": _leg(item.get("CE")),
        "put": _leg(item.get("PE")),
    }


def transform_chain(
    rows: Iterable[Mapping[str, Any]],
    market_price: Any,
    expiry: Any,
) -> List[Dict[str, Any]]:
    """Filter ``rows`` to ``expiry`` and map each one to an option row.

    Input order is preserved and the inputs are not modified.
    """

    target = format_expiry(expiry)
    return [
        to_option_row(item, market_price)
        for item in rows
        if isinstance(item, Mapping) and item.get("expiryDate") == target
    ]
