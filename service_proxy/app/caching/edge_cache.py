"""
Edge cache for proxied responses.
"""

import hashlib
import time
from typing import Optional, TYPE_CHECKING

import httpx

from shared.errors import CacheBackendError
from shared.logging import get_logger

from ..domain.headers import DEFAULT_SET_COOKIE_ALIAS_HEADER, build_inbound_headers
from .backends import CacheBackend
from .entity import CachedEntity, compute_etag

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..adapters.upstream_client import UpstreamResponse
    from shared.metrics import MetricsCollector


class EdgeCache:
    """Stores whole 2xx responses keyed by canonical target URL.

    Reads that fail at the backend count as misses and writes that fail are
    logged and dropped; a broken store degrades to plain proxying. TTL is
    handed to the backend and echoed in Cache-Control, never re-checked here.
    """

    def __init__(
        self,
        backend: CacheBackend,
        *,
        key_prefix: str = "edge",
        set_cookie_alias_header: str = DEFAULT_SET_COOKIE_ALIAS_HEADER,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.backend = backend
        self.key_prefix = key_prefix
        self.set_cookie_alias_header = set_cookie_alias_header
        self.metrics = metrics
        self.logger = get_logger("proxy.edge_cache")

    def _make_key(self, key: str) -> str:
        """Backend key for a canonical target URL."""
        return f"{self.key_prefix}:{hashlib.sha256(key.encode('utf-8')).hexdigest()}"

    async def get(self, key: str) -> Optional[CachedEntity]:
        """Look up an entity; None on miss, backend failure or unreadable state."""
        try:
            raw = await self.backend.get(self._make_key(key))
        except CacheBackendError as exc:
            self.logger.error("Cache fetch error", key=key, error=exc.message)
            self._count("proxy_cache_lookups_total", result="error")
            return None

        if raw is None:
            self._count("proxy_cache_lookups_total", result="miss")
            return None

        try:
            entity = CachedEntity.from_json(raw)
        except (ValueError, KeyError, TypeError) as exc:
            self.logger.warning("Discarding unreadable cache entry", key=key, error=str(exc))
            self._count("proxy_cache_lookups_total", result="error")
            return None

        self._count("proxy_cache_lookups_total", result="hit")
        return entity

    async def put(self, key: str, entity: CachedEntity) -> bool:
        """Write an entity; concurrent writers to one key are last-write-wins."""
        try:
            await self.backend.set(self._make_key(key), entity.to_json().encode("utf-8"), entity.ttl_seconds)
        except CacheBackendError as exc:
            self.logger.error("Cache set error", key=key, error=exc.message)
            self._count("proxy_cache_stores_total", result="error")
            return False

        self._count("proxy_cache_stores_total", result="stored")
        self.logger.debug("Cached response", key=key, ttl=entity.ttl_seconds, size=len(entity.body))
        return True

    def build_entity(self, status: int, upstream_headers: httpx.Headers, body: bytes, ttl: int) -> CachedEntity:
        """Materialize an entity from a fully read upstream response."""
        headers = build_inbound_headers(upstream_headers, set_cookie_alias_header=self.set_cookie_alias_header)
        # Recomputed from the stored body when served
        headers.pop("content-length", None)
        etag = compute_etag(body)
        headers["ETag"] = etag
        headers["Cache-Control"] = f"public, max-age={ttl}"
        return CachedEntity(
            body=body,
            status=status,
            headers=tuple(headers.multi_items()),
            etag=etag,
            stored_at=time.time(),
            ttl_seconds=ttl,
        )

    async def fill(self, key: str, upstream: "UpstreamResponse", ttl: int) -> CachedEntity:
        """Buffer a successful upstream response, store it and return it.

        Nothing is written unless the whole body was read.
        """
        body = await upstream.read_body()
        entity = self.build_entity(upstream.status_code, upstream.headers, body, ttl)
        await self.put(key, entity)
        return entity

    async def check_health(self) -> str:
        return "ok" if await self.backend.ping() else "error"

    async def close(self) -> None:
        await self.backend.close()

    def _count(self, metric_name: str, **labels) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, **labels)
