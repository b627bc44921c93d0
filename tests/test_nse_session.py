import asyncio
import time

import httpx
import pytest

from services import http_client, nse_session
from services.credential_store import Credential, CredentialStore
from services.nse_session import AcquisitionError, NSESession, extract_cookies


def _session(ttl: float = 1800.0) -> NSESession:
    return NSESession(CredentialStore(), ttl=ttl)


def test_fresh_credential_skips_network(fake_nse):
    session = _session()
    cred = Credential("nsit=cached", acquired_at=time.monotonic() - 60)
    session.store.set(cred)

    result = asyncio.run(session.ensure_valid())

    assert result is cred
    assert fake_nse.calls == []


def test_credential_at_ttl_is_still_fresh():
    session = _session(ttl=100.0)
    cred = Credential("nsit=cached", acquired_at=1000.0)
    assert session.is_fresh(cred, now=1100.0)
    assert not session.is_fresh(cred, now=1100.5)
    assert not session.is_fresh(None, now=1000.0)


def test_absent_credential_acquires_once(fake_nse):
    session = _session()

    result = asyncio.run(session.ensure_valid())

    assert result.token == "nsit=abc123; nseappid=xyz789"
    assert session.store.get() is result
    assert len(fake_nse.home_calls()) == 1
    call = fake_nse.home_calls()[0]
    assert call["method"] == "GET"
    assert call["url"] == "https://www.nseindia.com/"
    assert "Mozilla" in call["headers"]["User-Agent"]
    assert call["headers"]["Accept-Language"] == "en-US,en;q=0.9"


def test_stale_credential_acquires_once(fake_nse):
    session = _session(ttl=1800.0)
    stale = Credential("nsit=old", acquired_at=time.monotonic() - 31 * 60)
    session.store.set(stale)

    result = asyncio.run(session.ensure_valid())
    again = asyncio.run(session.ensure_valid())

    assert result is not stale
    assert result.token == "nsit=abc123; nseappid=xyz789"
    assert again is result
    assert len(fake_nse.home_calls()) == 1


def test_invalidate_forces_acquisition(fake_nse):
    session = _session()
    session.store.set(Credential("nsit=cached"))

    session.invalidate()
    assert session.store.get() is None

    asyncio.run(session.ensure_valid())
    assert len(fake_nse.home_calls()) == 1


def test_missing_set_cookie_raises_and_keeps_store(fake_nse):
    session = _session(ttl=10.0)
    stale = Credential("nsit=old", acquired_at=time.monotonic() - 60)
    session.store.set(stale)
    fake_nse.home = lambda: httpx.Response(200, text="<html></html>")

    with pytest.raises(AcquisitionError) as excinfo:
        asyncio.run(session.ensure_valid())

    assert excinfo.value.status_code == 503
    assert session.store.get() is stale


def test_error_status_raises_acquisition_error(fake_nse):
    session = _session()
    fake_nse.home = lambda: httpx.Response(403, headers=[("set-cookie", "a=b")])

    with pytest.raises(AcquisitionError) as excinfo:
        asyncio.run(session.ensure_valid())

    assert excinfo.value.status_code == 503
    assert session.store.get() is None


def test_timeout_raises_gateway_timeout(fake_nse):
    session = _session()
    fake_nse.home = lambda: httpx.ReadTimeout("slow")

    with pytest.raises(AcquisitionError) as excinfo:
        asyncio.run(session.ensure_valid())

    assert excinfo.value.status_code == 504
    assert session.store.get() is None


def test_unreachable_raises_gateway_timeout():
    # The autouse guard makes every request fail with ConnectError.
    session = _session()

    with pytest.raises(AcquisitionError) as excinfo:
        asyncio.run(session.ensure_valid())

    assert excinfo.value.status_code == 504


def test_concurrent_callers_share_one_acquisition(monkeypatch):
    calls = []

    async def _run():
        release = asyncio.Event()

        async def slow_request(method, url, **kwargs):
            calls.append(url)
            await release.wait()
            return httpx.Response(200, headers=[("set-cookie", "nsit=shared; Path=/")])

        monkeypatch.setattr(http_client, "request", slow_request)
        session = _session()
        tasks = [asyncio.create_task(session.ensure_valid()) for _ in range(5)]
        for _ in range(3):
            await asyncio.sleep(0)
        release.set()
        return await asyncio.gather(*tasks)

    results = asyncio.run(_run())

    assert len(calls) == 1
    assert {r.token for r in results} == {"nsit=shared"}
    assert all(r is results[0] for r in results)


def test_concurrent_callers_share_failure(monkeypatch):
    calls = []

    async def _run():
        release = asyncio.Event()

        async def failing_request(method, url, **kwargs):
            calls.append(url)
            await release.wait()
            return httpx.Response(200)

        monkeypatch.setattr(http_client, "request", failing_request)
        session = _session()
        tasks = [asyncio.create_task(session.ensure_valid()) for _ in range(3)]
        for _ in range(3):
            await asyncio.sleep(0)
        release.set()
        return await asyncio.gather(*tasks, return_exceptions=True)

    results = asyncio.run(_run())

    assert len(calls) == 1
    assert all(isinstance(r, AcquisitionError) for r in results)


def test_extract_cookies_keeps_name_value_pairs():
    resp = httpx.Response(
        200,
        headers=[
            ("set-cookie", "nsit=abc; Path=/; HttpOnly"),
            ("set-cookie", "bm_sv=q=1==; Max-Age=7200"),
            ("set-cookie", "  "),
        ],
    )
    assert extract_cookies(resp) == "nsit=abc; bm_sv=q=1=="


def test_module_level_helpers_use_shared_session(fake_nse):
    cred = asyncio.run(nse_session.ensure_valid())
    assert nse_session.get_session().store.get() is cred

    nse_session.invalidate()
    assert nse_session.get_session().store.get() is None


def test_credential_refreshed_while_waiting_is_reused(fake_nse):
    session = _session()
    session.store.set(Credential("nsit=old", acquired_at=time.monotonic() - 31 * 60))
    fresh = Credential("nsit=other-caller")

    async def _run():
        session._lock = asyncio.Lock()
        session._lock_loop = asyncio.get_running_loop()
        await session._lock.acquire()
        waiter = asyncio.create_task(session.ensure_valid())
        await asyncio.sleep(0)
        session.store.set(fresh)
        session._lock.release()
        return await waiter

    assert asyncio.run(_run()) is fresh
    assert fake_nse.calls == []
