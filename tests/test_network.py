"""
Tests for the async JSON client and its circuit breaker
"""

import httpx
import pytest

from shared.network import CircuitBreaker, CircuitState, HaraldHTTP, HaraldHTTPError

URL = "https://nvd.example/rest/json/cves/2.0"


def scripted_client(responses, **kwargs):
    """Client answering with *responses* in order; returns (client, seen)."""
    seen = []
    pending = list(responses)

    def handler(request):
        seen.append(request)
        return pending.pop(0) if len(pending) > 1 else pending[0]

    kwargs.setdefault("backoff_base", 0.0)
    return HaraldHTTP(transport=httpx.MockTransport(handler), **kwargs), seen


class TestFetchJSON:
    @pytest.mark.asyncio
    async def test_decodes_body_and_sends_params(self):
        http, seen = scripted_client([httpx.Response(200, json={"totalResults": 0})])
        async with http:
            data = await http.fetch_json(URL, params={"keywordSearch": "bluetooth"})
        assert data == {"totalResults": 0}
        assert seen[0].url.params["keywordSearch"] == "bluetooth"
        assert seen[0].headers["User-Agent"] == "Harald/1.0"

    @pytest.mark.asyncio
    async def test_extra_headers(self):
        http, seen = scripted_client(
            [httpx.Response(200, json={})], headers={"apiKey": "secret"}
        )
        async with http:
            await http.fetch_json(URL)
        assert seen[0].headers["apiKey"] == "secret"

    @pytest.mark.asyncio
    async def test_retries_transient_status(self):
        http, seen = scripted_client(
            [httpx.Response(503), httpx.Response(429), httpx.Response(200, json={"ok": True})],
            max_retries=3,
        )
        async with http:
            assert await http.fetch_json(URL) == {"ok": True}
        assert len(seen) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self):
        http, seen = scripted_client([httpx.Response(502)], max_retries=2)
        async with http:
            with pytest.raises(HaraldHTTPError, match="after 3 attempts"):
                await http.fetch_json(URL)
        assert len(seen) == 3

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        http, seen = scripted_client([httpx.Response(404)], max_retries=3)
        async with http:
            with pytest.raises(HaraldHTTPError, match="HTTP 404"):
                await http.fetch_json(URL)
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_transport_error_is_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json=[1, 2])

        http = HaraldHTTP(transport=httpx.MockTransport(handler), backoff_base=0.0)
        async with http:
            assert await http.fetch_json(URL) == [1, 2]
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        http, _ = scripted_client([httpx.Response(200, text="<html>maintenance</html>")])
        async with http:
            with pytest.raises(HaraldHTTPError, match="Invalid JSON"):
                await http.fetch_json(URL)

    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_failures(self):
        http, seen = scripted_client([httpx.Response(500)], max_retries=0)
        async with http:
            for _ in range(5):
                with pytest.raises(HaraldHTTPError):
                    await http.fetch_json(URL)
            with pytest.raises(HaraldHTTPError, match="Circuit open"):
                await http.fetch_json(URL)
        # the rejected call never reached the transport
        assert len(seen) == 5


class TestCircuitBreaker:
    def test_threshold(self):
        breaker = CircuitBreaker(threshold=2, cooldown=60.0)
        breaker.failed()
        assert breaker.state is CircuitState.CLOSED
        breaker.failed()
        assert breaker.state is CircuitState.OPEN
        assert not breaker.allow()

    def test_half_open_trial(self):
        breaker = CircuitBreaker(threshold=1, cooldown=0.0)
        breaker.failed()
        assert breaker.allow()
        assert breaker.state is CircuitState.HALF_OPEN

        breaker.failed()
        assert breaker.state is CircuitState.OPEN

        assert breaker.allow()
        breaker.succeeded()
        assert breaker.state is CircuitState.CLOSED
        assert breaker.failures == 0
