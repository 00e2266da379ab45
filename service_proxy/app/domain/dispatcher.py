"""
Request dispatcher: the proxy's top-level orchestration.
"""

from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

import httpx
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import Response

from shared.config import ProxySettings
from shared.errors import BadRequestError, ProxyException
from shared.logging import get_logger

from ..adapters.upstream_client import UpstreamFetcher, UpstreamResponse
from ..caching.conditional import apply_conditional
from ..caching.edge_cache import EdgeCache
from ..routing.directives import CacheDirective, ProxyDirective
from ..routing.router import cache_key, normalize_path, route
from .headers import build_inbound_headers, build_outbound_headers
from .responses import build_streaming_response, empty_response, error_response

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


CACHEABLE_METHODS = frozenset({"GET", "HEAD"})

# A cache fill must fetch the complete current entity
CACHE_FILL_DROPPED_HEADERS = (
    "range",
    "if-range",
    "if-match",
    "if-none-match",
    "if-modified-since",
    "if-unmodified-since",
)


@dataclass(frozen=True)
class InboundRequest:
    """Transport-neutral view of a client request.

    ``path`` is the raw (still percent-encoded) path plus query string, so the
    target URL survives exactly as the client wrote it.
    """

    method: str
    path: str
    headers: httpx.Headers
    body: bytes = b""

    @classmethod
    async def from_starlette(cls, request: Request) -> "InboundRequest":
        raw_path = request.scope.get("raw_path")
        # Some servers leave the query string on raw_path
        path = raw_path.decode("latin-1").split("?", 1)[0] if raw_path else request.url.path
        query = request.scope.get("query_string", b"").decode("latin-1")
        if query:
            path = f"{path}?{query}"
        return cls(
            method=request.method.upper(),
            path=path,
            headers=httpx.Headers(request.headers.raw),
            body=await request.body(),
        )


class RequestDispatcher:
    """Routes a request and answers it from the cache, the upstream or locally.

    Every call produces a response: malformed paths become 400, upstream
    transport failures and unexpected errors become 502, both with a
    plain-text diagnostic. Upstream non-2xx statuses are relayed untouched.
    """

    def __init__(
        self,
        settings: ProxySettings,
        fetcher: UpstreamFetcher,
        cache: EdgeCache,
        *,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.settings = settings
        self.fetcher = fetcher
        self.cache = cache
        self.metrics = metrics
        self.logger = get_logger("proxy.dispatcher")

    async def dispatch(self, request: InboundRequest) -> Response:
        try:
            return await self._dispatch(request)
        except BadRequestError as exc:
            self.logger.info("Rejected request path", path=request.path, error=exc.message)
            self._record_error(exc.code)
            return error_response(exc.status_code, exc.to_text())
        except ProxyException as exc:
            self.logger.warning("Proxy request failed", path=request.path, code=exc.code, details=exc.details)
            self._record_error(exc.code)
            return error_response(exc.status_code, exc.to_text())
        except Exception as exc:
            self.logger.error("Unhandled proxy error", path=request.path, error=str(exc), exc_info=True)
            self._record_error("INTERNAL_ERROR")
            return error_response(502, f"PROXY_ERROR: {type(exc).__name__}: {exc}\n")

    async def _dispatch(self, request: InboundRequest) -> Response:
        path = normalize_path(request.path)

        if request.method == "OPTIONS" or path == "generate_204":
            return empty_response(204)
        if path.startswith("generate_200"):
            return empty_response(200)

        directive = route(path, default_ttl=self.settings.default_ttl, max_ttl=self.settings.max_ttl)
        if directive is None:
            return await self._serve_fallback()

        if isinstance(directive, CacheDirective) and request.method in CACHEABLE_METHODS:
            return await self._serve_cached(request, directive)

        upstream = await self._open(request, directive.proxy)
        return self._relay(upstream)

    async def _serve_cached(self, request: InboundRequest, directive: CacheDirective) -> Response:
        key = cache_key(directive.target_url)
        head = request.method == "HEAD"

        entity = await self.cache.get(key)
        if entity is not None:
            self.logger.debug("Cache hit", key=key)
            return apply_conditional(request.headers.get("if-none-match"), entity, head=head)

        upstream = await self._open(request, directive.inner, cache_fill=True)
        # A HEAD reply has no body and must not become the stored GET entity
        if head or not upstream.is_success:
            self.logger.debug("Cache bypass", key=key, method=request.method, status_code=upstream.status_code)
            return self._relay(upstream)

        entity = await self.cache.fill(key, upstream, directive.ttl_seconds)
        self.logger.info("Cache fill", key=key, status_code=entity.status, ttl=entity.ttl_seconds)
        return apply_conditional(request.headers.get("if-none-match"), entity)

    async def _open(self, request: InboundRequest, directive: ProxyDirective, cache_fill: bool = False) -> UpstreamResponse:
        headers = build_outbound_headers(
            request.headers,
            directive,
            request.headers.get("referer"),
            cookie_escape_header=self.settings.cookie_escape_header,
        )
        if cache_fill:
            for name in CACHE_FILL_DROPPED_HEADERS:
                headers.pop(name, None)

        return await self.fetcher.fetch(
            directive.target_url,
            request.method,
            headers,
            request.body,
            follow_redirects=directive.follow_redirects,
        )

    async def _serve_fallback(self) -> Response:
        upstream = await self.fetcher.fetch(
            self.settings.fallback_url,
            "GET",
            httpx.Headers(),
            follow_redirects=True,
        )
        return self._relay(upstream)

    def _relay(self, upstream: UpstreamResponse) -> Response:
        headers = build_inbound_headers(
            upstream.headers,
            set_cookie_alias_header=self.settings.set_cookie_alias_header,
        )
        response = build_streaming_response(upstream.status_code, headers, upstream.iter_body())
        # Releases the connection even if the body iterator never starts
        response.background = BackgroundTask(upstream.aclose)
        return response

    def _record_error(self, error_type: str) -> None:
        if self.metrics:
            self.metrics.record_error(error_type)
