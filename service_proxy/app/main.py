"""
Edge proxy service.
"""

from typing import Dict, Optional

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ProxySettings

from .adapters.upstream_client import UpstreamFetcher
from .caching.backends import CacheBackend, create_backend
from .caching.edge_cache import EdgeCache
from .domain.connection_info import describe_connection
from .domain.dispatcher import InboundRequest, RequestDispatcher
from .domain.responses import error_response


PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "DELETE", "OPTIONS", "PATCH", "TRACE"]


class ProxyService(BaseService):
    """Path-addressed proxy service implementation."""

    def __init__(
        self,
        config: Optional[ProxySettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        backend: Optional[CacheBackend] = None,
    ):
        super().__init__(config)

        self.cache = EdgeCache(
            backend if backend is not None else create_backend(self.config.cache_backend, self.config.redis_url),
            key_prefix=self.config.cache_key_prefix,
            set_cookie_alias_header=self.config.set_cookie_alias_header,
            metrics=self.metrics,
        )
        self.fetcher = UpstreamFetcher(
            transport=transport,
            timeout=self.config.upstream_timeout,
            max_redirects=self.config.max_redirects,
            metrics=self.metrics,
        )
        self.dispatcher = RequestDispatcher(self.config, self.fetcher, self.cache, metrics=self.metrics)

        self._setup_proxy_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.proxy_service = self

    def _setup_proxy_routes(self):
        """Diagnostics first; the catch-all proxy route must be registered last."""

        @self.app.get("/connection-info")
        async def connection_info(request: Request):
            """Echo the caller's connection details."""
            return JSONResponse(
                describe_connection(
                    httpx.Headers(request.headers.raw),
                    peer_host=request.client.host if request.client else None,
                    http_version=request.scope.get("http_version", "1.1"),
                    scheme=request.url.scheme,
                )
            )

        @self.app.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
        async def proxy(path: str, request: Request):
            inbound = await InboundRequest.from_starlette(request)
            return await self.dispatcher.dispatch(inbound)

    def _error_response(self, status_code: int, text: str):
        return error_response(status_code, text)

    async def _check_dependencies(self) -> Dict[str, str]:
        return {"cache": await self.cache.check_health()}

    async def on_shutdown(self) -> None:
        await self.fetcher.close()
        await self.cache.close()


def create_app(
    config: Optional[ProxySettings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    backend: Optional[CacheBackend] = None,
):
    """Create FastAPI application."""
    service = ProxyService(config, transport=transport, backend=backend)
    return service.app


def main():
    ProxyService().run()


if __name__ == "__main__":
    main()
