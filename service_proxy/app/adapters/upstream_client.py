"""
Upstream fetcher for the proxy.
"""

import time
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import AsyncIterator, Optional, TYPE_CHECKING

import httpx

from shared.errors import UpstreamUnreachableError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


BODYLESS_METHODS = frozenset({"GET", "HEAD"})


def _cookieless_jar() -> CookieJar:
    """A jar that refuses every cookie, so the shared client never replays them."""
    return CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))


class UpstreamResponse:
    """An upstream response whose body has not been read yet."""

    def __init__(self, response: httpx.Response):
        self._response = response

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    @property
    def url(self) -> str:
        return str(self._response.url)

    @property
    def is_success(self) -> bool:
        return self._response.is_success

    async def iter_body(self) -> AsyncIterator[bytes]:
        """Yield raw (still content-encoded) body chunks, then release the connection."""
        try:
            async for chunk in self._response.aiter_raw():
                yield chunk
        finally:
            await self._response.aclose()

    async def read_body(self) -> bytes:
        """Read the whole raw body. Raises UpstreamUnreachableError if the transfer breaks."""
        chunks = []
        try:
            async for chunk in self._response.aiter_raw():
                chunks.append(chunk)
        except httpx.HTTPError as exc:
            raise UpstreamUnreachableError(
                self.url,
                "Upstream body transfer failed",
                details={"error": str(exc)},
            ) from exc
        finally:
            await self._response.aclose()
        return b"".join(chunks)

    async def aclose(self) -> None:
        await self._response.aclose()


class UpstreamFetcher:
    """Issues sanitized outbound requests over one pooled httpx client."""

    def __init__(
        self,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
        max_redirects: int = 20,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.logger = get_logger("proxy.upstream")
        self.metrics = metrics
        self._client = httpx.AsyncClient(
            transport=transport,
            timeout=timeout,
            max_redirects=max_redirects,
            follow_redirects=False,
            cookies=_cookieless_jar(),
        )
        # Drop httpx defaults (Accept-Encoding, User-Agent); only sanitized client headers go upstream
        self._client.headers.clear()

    async def fetch(
        self,
        url: str,
        method: str,
        headers: httpx.Headers,
        body: Optional[bytes] = None,
        follow_redirects: bool = False,
    ) -> UpstreamResponse:
        """Send one request and return once response headers arrive.

        GET and HEAD never carry a body. With ``follow_redirects`` false a 3xx
        comes back as-is, Location included. No retries are attempted.
        """
        method = method.upper()
        content = None if method in BODYLESS_METHODS else body

        start = time.perf_counter()
        try:
            request = self._client.build_request(method, url, headers=headers, content=content)
            response = await self._client.send(request, stream=True, follow_redirects=follow_redirects)
        except httpx.RequestError as exc:
            self._record(method, None, start)
            self.logger.warning(
                "Upstream request failed",
                url=url,
                method=method,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise UpstreamUnreachableError(
                url,
                details={"error_type": type(exc).__name__, "error": str(exc) or type(exc).__name__},
            ) from exc

        self._record(method, response.status_code, start)
        self.logger.debug(
            "Upstream responded",
            url=url,
            final_url=str(response.url),
            method=method,
            status_code=response.status_code,
        )
        return UpstreamResponse(response)

    def _record(self, method: str, status_code: Optional[int], start: float) -> None:
        if self.metrics:
            self.metrics.record_upstream(method, status_code, time.perf_counter() - start)

    async def close(self) -> None:
        await self._client.aclose()
