import os
import sys
from pathlib import Path

import httpx
import pytest

os.environ.setdefault("NSE_BASE_URL", "https://www.nseindia.com")
os.environ.setdefault("NSE_COOKIE_TTL_SECONDS", "1800")
os.environ.setdefault("METRICS_ENABLED", "1")

# Ensure the project root is on the import path when running ``pytest`` directly.
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services import credential_store, http_client, nse_session, vix
from services.nse_client import OPTION_CHAIN_PATH

_ORIGINAL_REQUEST = http_client.request

HOME_COOKIES = [
    ("set-cookie", "nsit=abc123; Path=/; HttpOnly"),
    ("set-cookie", "nseappid=xyz789; Path=/; Secure"),
]


@pytest.fixture(autouse=True)
def _isolate_upstream(monkeypatch):
    """Block live NSE/Yahoo calls and start every test with no session."""

    async def _blocked_request(method, url, **kwargs):
        raise httpx.ConnectError(f"network disabled in tests: {url}")

    def _blocked_ticker(symbol):
        raise RuntimeError("yfinance disabled in tests")

    monkeypatch.setattr(http_client, "request", _blocked_request)
    monkeypatch.setattr(vix.yf, "Ticker", _blocked_ticker)
    credential_store.reset_store()
    monkeypatch.setattr(nse_session, "_session", nse_session.NSESession())
    yield
    credential_store.reset_store()


class FakeNSE:
    """Scripted stand-in for the NSE home page and option-chain API."""

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.home = lambda: httpx.Response(200, headers=HOME_COOKIES, text="<html></html>")
        self.chain = lambda symbol: httpx.Response(
            200, json={"records": {"data": [], "underlyingValue": 100.0}}
        )

    async def request(self, method, url, **kwargs):
        self.calls.append(
            {
                "method": method,
                "url": url,
                "params": kwargs.get("params"),
                "headers": dict(kwargs.get("headers") or {}),
            }
        )
        if url.endswith(OPTION_CHAIN_PATH):
            result = self.chain((kwargs.get("params") or {}).get("symbol"))
        else:
            result = self.home()
        if isinstance(result, Exception):
            raise result
        return result

    def home_calls(self) -> list[dict]:
        return [c for c in self.calls if not c["url"].endswith(OPTION_CHAIN_PATH)]

    def chain_calls(self) -> list[dict]:
        return [c for c in self.calls if c["url"].endswith(OPTION_CHAIN_PATH)]


@pytest.fixture
def real_request():
    """The unguarded transport; pair it with a dummy ``get_client``."""
    return _ORIGINAL_REQUEST


@pytest.fixture
def fake_nse(monkeypatch):
    fake = FakeNSE()
    monkeypatch.setattr(http_client, "request", fake.request)
    return fake
