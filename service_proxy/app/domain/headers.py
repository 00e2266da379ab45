"""
Header sanitization in both directions.

Both builders are pure: they copy their input into a fresh ``httpx.Headers``
and never mutate the argument.
"""

from typing import Iterable, Mapping, Optional, Tuple, Union

import httpx

from ..routing.directives import Directive


DEFAULT_COOKIE_ESCAPE_HEADER = "X-Proxy-Cookie"
DEFAULT_SET_COOKIE_ALIAS_HEADER = "X-Proxy-Set-Cookie"

CORS_HEADERS: Tuple[Tuple[str, str], ...] = (
    ("Access-Control-Allow-Origin", "*"),
    ("Access-Control-Allow-Methods", "GET,HEAD,POST,PUT,DELETE,CONNECT,OPTIONS,TRACE,PATCH"),
    ("Access-Control-Allow-Headers", "*,Authorization"),
    ("Access-Control-Expose-Headers", "*"),
    ("Access-Control-Max-Age", "86400"),
    ("Timing-Allow-Origin", "*"),
)

# RFC 9110 section 7.6.1
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

# Rebuilt by the HTTP client for the target
_OUTBOUND_DROPPED = HOP_BY_HOP_HEADERS | {"host", "content-length", "origin", "cookie", "referer"}

HeaderInput = Union[httpx.Headers, Mapping[str, str], Iterable[Tuple[str, str]]]


def _copy(headers: HeaderInput) -> httpx.Headers:
    if isinstance(headers, httpx.Headers):
        return httpx.Headers(headers.multi_items())
    return httpx.Headers(headers)


def build_outbound_headers(
    inbound: HeaderInput,
    directive: Directive,
    inbound_referer: Optional[str] = None,
    *,
    cookie_escape_header: str = DEFAULT_COOKIE_ESCAPE_HEADER,
) -> httpx.Headers:
    """Headers for the upstream request derived from the client's headers.

    Origin, Cookie and Referer are always removed. A value supplied under the
    escape-hatch header becomes the outbound Cookie. Referer is set only when
    the directive's referer policy yields a non-empty value.
    """
    source = _copy(inbound)
    escaped_cookie = source.get(cookie_escape_header)
    dropped = _OUTBOUND_DROPPED | {cookie_escape_header.lower()}

    outbound = httpx.Headers(
        [(name, value) for name, value in source.multi_items() if name.lower() not in dropped]
    )
    if escaped_cookie:
        outbound["Cookie"] = escaped_cookie

    referer = directive.referer_policy.resolve(inbound_referer)
    if referer:
        outbound["Referer"] = referer
    return outbound


def build_inbound_headers(
    upstream: HeaderInput,
    *,
    set_cookie_alias_header: str = DEFAULT_SET_COOKIE_ALIAS_HEADER,
) -> httpx.Headers:
    """Headers for the client response derived from the upstream's headers.

    Every Set-Cookie value moves to the alias header so third-party cookies
    never land in the proxy origin's cookie jar. Cookie and Set-Cookie are
    then removed and the CORS/timing set is asserted. Applying this twice
    gives the same result as applying it once.
    """
    source = _copy(upstream)
    cookies = source.get_list("set-cookie")
    dropped = HOP_BY_HOP_HEADERS | {"cookie", "set-cookie"}

    items = [(name, value) for name, value in source.multi_items() if name.lower() not in dropped]
    if cookies:
        alias = set_cookie_alias_header.lower()
        items = [(name, value) for name, value in items if name.lower() != alias]
        items.extend((set_cookie_alias_header, value) for value in cookies)

    inbound = httpx.Headers(items)
    for name, value in CORS_HEADERS:
        inbound[name] = value
    return inbound


def cors_headers() -> httpx.Headers:
    """The fixed CORS/timing set on its own, for locally generated responses."""
    return httpx.Headers(list(CORS_HEADERS))
