# ABOUTME: Tests for the token cache and LNbits session
# ABOUTME: Covers coalescing, caching, failure modes and error mapping

import asyncio
import gc

import httpx
import pytest

from zapfeed.auth import LNbitsSession, TokenCache
from zapfeed.config import Settings
from zapfeed.exceptions import AuthError, CredentialsNotFoundError, FetchError

NODE_URL = "http://lnbits.test"


def counting_transport(responses):
    """Answer with ``(status, kwargs)`` pairs in order, repeating the last, and count calls."""
    calls = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        await asyncio.sleep(0.01)
        status, kwargs = responses[min(len(calls), len(responses)) - 1]
        return httpx.Response(status, **kwargs)

    return httpx.MockTransport(handler), calls


class TestTokenCache:
    """Test bearer token acquisition."""

    async def test_concurrent_callers_share_one_request(self):
        transport, calls = counting_transport([(200, dict(json={"access_token": "tok"}))])
        cache = TokenCache(NODE_URL, transport=transport)

        tokens = await asyncio.gather(
            *(cache.get_or_fetch("admin", "secret") for _ in range(5))
        )

        assert tokens == ["tok"] * 5
        assert len(calls) == 1

    async def test_cached_token_skips_network(self):
        transport, calls = counting_transport([(200, dict(json={"access_token": "tok"}))])
        cache = TokenCache(NODE_URL, transport=transport)

        await cache.get_or_fetch("admin", "secret")
        await cache.get_or_fetch("admin", "secret")

        assert len(calls) == 1
        assert cache.cached("admin") == "tok"

    async def test_failure_clears_in_flight_marker(self):
        transport, calls = counting_transport(
            [
                (401, dict(json={"detail": "bad credentials"})),
                (200, dict(json={"access_token": "tok"})),
            ]
        )
        cache = TokenCache(NODE_URL, transport=transport)

        with pytest.raises(AuthError):
            await cache.get_or_fetch("admin", "wrong")

        assert await cache.get_or_fetch("admin", "secret") == "tok"
        assert len(calls) == 2

    async def test_concurrent_callers_share_failure(self):
        transport, calls = counting_transport([(500, dict(text="oops"))])
        cache = TokenCache(NODE_URL, transport=transport)

        results = await asyncio.gather(
            cache.get_or_fetch("admin", "secret"),
            cache.get_or_fetch("admin", "secret"),
            return_exceptions=True,
        )

        assert all(isinstance(r, AuthError) for r in results)
        assert len(calls) == 1

    async def test_non_json_body(self):
        transport, _ = counting_transport(
            [(200, dict(text="<html></html>", headers={"content-type": "text/html"}))]
        )
        cache = TokenCache(NODE_URL, transport=transport)

        with pytest.raises(AuthError, match="not JSON"):
            await cache.get_or_fetch("admin", "secret")

    async def test_missing_token_field(self):
        transport, _ = counting_transport([(200, dict(json={"token_type": "bearer"}))])
        cache = TokenCache(NODE_URL, transport=transport)

        with pytest.raises(AuthError, match="access token"):
            await cache.get_or_fetch("admin", "secret")

    async def test_invalidate_forces_refetch(self):
        transport, calls = counting_transport([(200, dict(json={"access_token": "tok"}))])
        cache = TokenCache(NODE_URL, transport=transport)

        await cache.get_or_fetch("admin", "secret")
        cache.invalidate("admin")
        await cache.get_or_fetch("admin", "secret")

        assert len(calls) == 2

    async def test_abandoned_failed_fetch_is_not_reported(self):
        reported = []
        asyncio.get_running_loop().set_exception_handler(
            lambda loop, context: reported.append(context)
        )
        release = asyncio.Event()

        async def handler(request):
            await release.wait()
            return httpx.Response(500, json={"detail": "failure"})

        cache = TokenCache(NODE_URL, transport=httpx.MockTransport(handler))
        waiter = asyncio.create_task(cache.get_or_fetch("admin", "secret"))
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        release.set()
        for _ in range(100):
            if not cache._pending:
                break
            await asyncio.sleep(0.01)
        gc.collect()

        assert cache._pending == {}
        assert cache.cached("admin") is None
        assert not [c for c in reported if "never retrieved" in c.get("message", "")]

    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        cache = TokenCache(NODE_URL, transport=httpx.MockTransport(handler))

        with pytest.raises(AuthError, match="Auth request failed"):
            await cache.get_or_fetch("admin", "secret")


class TestLNbitsSession:
    """Test request plumbing and error mapping."""

    async def test_admin_get_sends_bearer(self, session, seeded_lnbits):
        data = await session.admin_get("/users/api/v1/user")

        assert len(data["data"]) == 2
        assert seeded_lnbits.count("POST", "/api/v1/auth") == 1

    async def test_status_error_becomes_fetch_error(self, session, fake_lnbits):
        fake_lnbits.failing_paths["/api/v1/payments"] = 503

        with pytest.raises(FetchError) as exc_info:
            await session.wallet_get("/api/v1/payments", "key", resource_id="A")

        assert exc_info.value.status_code == 503
        assert exc_info.value.resource_id == "A"

    async def test_timeout_becomes_fetch_error(self, settings):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        session = LNbitsSession(settings, transport=httpx.MockTransport(handler))
        try:
            with pytest.raises(FetchError, match="timed out"):
                await session.wallet_get("/api/v1/payments", "key", resource_id="A")
        finally:
            await session.close()

    async def test_invalid_json_becomes_fetch_error(self, settings):
        session = LNbitsSession(
            settings, transport=httpx.MockTransport(lambda r: httpx.Response(200, text="nope"))
        )
        try:
            with pytest.raises(FetchError, match="invalid JSON"):
                await session.wallet_get("/api/v1/payments", "key")
        finally:
            await session.close()

    async def test_missing_credentials(self, fake_lnbits):
        session = LNbitsSession(
            Settings(node_url=NODE_URL), transport=httpx.MockTransport(fake_lnbits.handler)
        )
        with pytest.raises(CredentialsNotFoundError):
            await session.admin_get("/users/api/v1/user")
