"""
Unit tests for the request dispatcher.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest
from starlette.responses import StreamingResponse

from service_proxy.app.adapters.upstream_client import UpstreamFetcher
from service_proxy.app.caching.backends import MemoryCacheBackend
from service_proxy.app.caching.edge_cache import EdgeCache
from service_proxy.app.domain.dispatcher import InboundRequest, RequestDispatcher
from shared.config import ProxySettings
from shared.errors import CacheBackendError
from shared.metrics import MetricsCollector
from shared.test_helpers import MockUpstream


async def _read(response):
    """Drain a response the way the ASGI server would."""
    if isinstance(response, StreamingResponse):
        body = b"".join([chunk async for chunk in response.body_iterator])
        if response.background is not None:
            await response.background()
        return body
    return response.body


def _headers(response):
    return httpx.Headers(response.raw_headers)


def _request(path, method="GET", headers=None, body=b""):
    return InboundRequest(method=method, path=path, headers=httpx.Headers(headers or {}), body=body)


class TestDispatcher:
    """Test cases for RequestDispatcher."""

    @pytest.fixture
    def settings(self):
        return ProxySettings(fallback_url="http://fallback.test/", default_ttl=3600, max_ttl=86400)

    @pytest.fixture
    def upstream(self):
        upstream = MockUpstream()
        upstream.add("fallback.test", 404, b"placeholder")
        return upstream

    @pytest.fixture
    def backend(self):
        return MemoryCacheBackend()

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("proxy")

    @pytest.fixture
    def dispatcher(self, settings, upstream, backend, metrics):
        fetcher = UpstreamFetcher(transport=upstream.transport(), metrics=metrics)
        cache = EdgeCache(backend, metrics=metrics)
        return RequestDispatcher(settings, fetcher, cache, metrics=metrics)

    # Local answers

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/http://a.test/x", "/anything", "/cache/60/http://a.test/x"])
    async def test_options_is_answered_locally(self, dispatcher, upstream, path):
        response = await dispatcher.dispatch(_request(path, method="OPTIONS"))

        assert response.status_code == 204
        assert _headers(response)["access-control-allow-origin"] == "*"
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_generate_204(self, dispatcher, upstream):
        response = await dispatcher.dispatch(_request("/generate_204"))

        assert response.status_code == 204
        assert await _read(response) == b""
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_generate_200_prefix(self, dispatcher, upstream):
        response = await dispatcher.dispatch(_request("/generate_200/anything"))

        assert response.status_code == 200
        assert _headers(response)["timing-allow-origin"] == "*"
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_unrouted_path_serves_fallback(self, dispatcher, upstream):
        response = await dispatcher.dispatch(_request("/favicon.ico"))

        assert response.status_code == 404
        assert await _read(response) == b"placeholder"
        assert upstream.requests[0].url == "http://fallback.test/"

    # Plain proxying

    @pytest.mark.asyncio
    async def test_plain_proxy_relays_and_sanitizes(self, dispatcher, upstream):
        upstream.add("a.test", 200, b"hi", [("Content-Type", "text/plain"), ("Set-Cookie", "s=1")])

        response = await dispatcher.dispatch(
            _request("/http://a.test/x?q=1", headers={"Cookie": "mine=1", "Origin": "https://app.test"})
        )

        assert response.status_code == 200
        assert await _read(response) == b"hi"
        headers = _headers(response)
        assert "set-cookie" not in headers
        assert headers["x-proxy-set-cookie"] == "s=1"
        assert headers["access-control-allow-origin"] == "*"

        sent = upstream.requests[0]
        assert sent.url == "http://a.test/x?q=1"
        assert "cookie" not in sent.headers
        assert "origin" not in sent.headers

    @pytest.mark.asyncio
    async def test_collapsed_scheme_is_repaired(self, dispatcher, upstream):
        upstream.add("a.test", 200, b"ok")

        response = await dispatcher.dispatch(_request("/https:/a.test/x"))

        assert await _read(response) == b"ok"
        assert upstream.requests[0].url == "https://a.test/x"

    @pytest.mark.asyncio
    async def test_upstream_error_status_is_relayed(self, dispatcher, upstream):
        upstream.add("a.test", 503, b"busy")

        response = await dispatcher.dispatch(_request("/http://a.test/x"))

        assert response.status_code == 503
        assert await _read(response) == b"busy"

    @pytest.mark.asyncio
    async def test_redirect_is_relayed_without_all(self, dispatcher, upstream):
        upstream.add("http://a.test/x", 301, headers={"Location": "http://a.test/y"})

        response = await dispatcher.dispatch(_request("/http://a.test/x"))

        assert response.status_code == 301
        assert _headers(response)["location"] == "http://a.test/y"
        await _read(response)

    @pytest.mark.asyncio
    async def test_all_follows_redirects(self, dispatcher, upstream):
        upstream.add("http://a.test/x", 301, headers={"Location": "http://a.test/y"})
        upstream.add("http://a.test/y", 200, b"moved")

        response = await dispatcher.dispatch(_request("/all/http://a.test/x"))

        assert response.status_code == 200
        assert await _read(response) == b"moved"

    @pytest.mark.asyncio
    async def test_escape_hatch_and_referer(self, dispatcher, upstream):
        upstream.add("a.test", 200)

        response = await dispatcher.dispatch(
            _request(
                "/set_referer/http://ref.test/http://a.test/x",
                headers={"X-Proxy-Cookie": "token=abc", "Referer": "http://page.test/"},
            )
        )
        await _read(response)

        sent = upstream.requests[0].headers
        assert sent["cookie"] == "token=abc"
        assert sent["referer"] == "http://ref.test"
        assert "x-proxy-cookie" not in sent

    @pytest.mark.asyncio
    async def test_post_body_is_forwarded(self, dispatcher, upstream):
        upstream.add("a.test", 201, b"created")

        response = await dispatcher.dispatch(_request("/http://a.test/items", method="POST", body=b'{"a":1}'))

        assert response.status_code == 201
        assert upstream.requests[0].body == b'{"a":1}'
        await _read(response)

    # Failures

    @pytest.mark.asyncio
    async def test_malformed_target_is_400(self, dispatcher, upstream, metrics):
        response = await dispatcher.dispatch(_request("/all/not-a-url"))

        assert response.status_code == 400
        assert response.body.startswith(b"BAD_REQUEST")
        assert _headers(response)["content-type"].startswith("text/plain")
        assert upstream.requests == []
        assert metrics.registry.get_sample_value(
            "errors_total", {"error_type": "BAD_REQUEST", "service": "proxy"}
        ) == 1

    @pytest.mark.asyncio
    async def test_unreachable_upstream_is_502(self, dispatcher, upstream):
        upstream.fail("down.test", httpx.ConnectError("refused"))

        response = await dispatcher.dispatch(_request("/http://down.test/x"))

        assert response.status_code == 502
        assert response.body.startswith(b"UPSTREAM_UNREACHABLE")
        assert b"http://down.test/x" in response.body

    @pytest.mark.asyncio
    async def test_unexpected_error_is_502(self, dispatcher):
        with patch.object(dispatcher.fetcher, "fetch", AsyncMock(side_effect=RuntimeError("boom"))):
            response = await dispatcher.dispatch(_request("/http://a.test/x"))

        assert response.status_code == 502
        assert b"RuntimeError" in response.body

    # Caching

    @pytest.mark.asyncio
    async def test_cache_round_trip_fetches_once(self, dispatcher, upstream):
        upstream.add("a.test", 200, b"cached body", {"Content-Type": "text/plain"})

        first = await dispatcher.dispatch(_request("/cache/600/http://a.test/x"))
        second = await dispatcher.dispatch(_request("/cache/600/http://a.test/x"))

        assert len(upstream.calls_to("http://a.test/x")) == 1
        assert await _read(first) == await _read(second) == b"cached body"
        assert _headers(first)["etag"] == _headers(second)["etag"]
        assert _headers(second)["cache-control"] == "public, max-age=600"

    @pytest.mark.asyncio
    async def test_cache_key_ignores_wrapper_form(self, dispatcher, upstream):
        """Test plain and nested cache forms for one target share an entry."""
        upstream.add("a.test", 200, b"shared")

        await dispatcher.dispatch(_request("/cache/http://a.test/x"))
        response = await dispatcher.dispatch(_request("/cache/60/keep_referer/http://a.test/x"))

        assert await _read(response) == b"shared"
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_if_none_match_yields_304(self, dispatcher, upstream):
        upstream.add("a.test", 200, b"body")
        first = await dispatcher.dispatch(_request("/cache/http://a.test/x"))
        etag = _headers(first)["etag"]

        response = await dispatcher.dispatch(_request("/cache/http://a.test/x", headers={"If-None-Match": etag}))

        assert response.status_code == 304
        assert response.body == b""
        assert _headers(response)["etag"] == etag

    @pytest.mark.asyncio
    async def test_cache_fill_drops_conditional_headers(self, dispatcher, upstream):
        upstream.add("a.test", 200, b"full body")

        response = await dispatcher.dispatch(
            _request("/cache/http://a.test/x", headers={"If-None-Match": '"stale"', "Range": "bytes=0-1"})
        )

        assert response.status_code == 200
        assert response.body == b"full body"
        sent = upstream.requests[0].headers
        assert "if-none-match" not in sent
        assert "range" not in sent

    @pytest.mark.asyncio
    async def test_non_2xx_is_not_stored(self, dispatcher, upstream):
        upstream.add("a.test", 404, b"missing")

        for _ in range(2):
            response = await dispatcher.dispatch(_request("/cache/http://a.test/x"))
            assert response.status_code == 404
            await _read(response)

        assert len(upstream.requests) == 2

    @pytest.mark.asyncio
    async def test_post_to_cache_path_is_not_stored(self, dispatcher, upstream, backend):
        upstream.add("a.test", 200, b"posted")

        response = await dispatcher.dispatch(_request("/cache/http://a.test/x", method="POST", body=b"x"))

        assert await _read(response) == b"posted"
        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_head_miss_is_not_stored(self, dispatcher, upstream, backend):
        upstream.add("a.test", 200, b"")

        response = await dispatcher.dispatch(_request("/cache/http://a.test/x", method="HEAD"))
        await _read(response)

        assert response.status_code == 200
        assert upstream.requests[0].method == "HEAD"
        assert len(backend) == 0

    @pytest.mark.asyncio
    async def test_head_hit_is_served_from_cache(self, dispatcher, upstream):
        upstream.add("a.test", 200, b"twelve bytes")
        await dispatcher.dispatch(_request("/cache/http://a.test/x"))

        response = await dispatcher.dispatch(_request("/cache/http://a.test/x", method="HEAD"))

        assert response.status_code == 200
        assert response.body == b""
        assert _headers(response)["content-length"] == "12"
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_broken_cache_degrades_to_proxying(self, dispatcher, upstream, backend):
        backend.get = AsyncMock(side_effect=CacheBackendError("get", "down"))
        backend.set = AsyncMock(side_effect=CacheBackendError("set", "down"))
        upstream.add("a.test", 200, b"live")

        response = await dispatcher.dispatch(_request("/cache/http://a.test/x"))

        assert response.status_code == 200
        assert response.body == b"live"

    @pytest.mark.asyncio
    async def test_expired_entry_is_refetched(self, settings, upstream, metrics):
        now = [0.0]
        backend = MemoryCacheBackend(clock=lambda: now[0])
        dispatcher = RequestDispatcher(
            settings,
            UpstreamFetcher(transport=upstream.transport()),
            EdgeCache(backend),
            metrics=metrics,
        )
        upstream.add("a.test", 200, b"v")

        await dispatcher.dispatch(_request("/cache/5/http://a.test/x"))
        now[0] = 4.0
        await dispatcher.dispatch(_request("/cache/5/http://a.test/x"))
        now[0] = 5.0
        await dispatcher.dispatch(_request("/cache/5/http://a.test/x"))

        assert len(upstream.requests) == 2
