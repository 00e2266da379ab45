"""
Path router: decodes a request path into a directive.

Grammar (path relative to the proxy origin, leading slash removed)::

    cache/[<ttl>/]<nested>            nested := all/... | set_referer/... | keep_referer/... | <url>
    all/<rest>                        follow redirects, rest := set_referer/... | keep_referer/... | <url>
    set_referer/<referer>/<url>
    keep_referer/<url>
    <url>                             url := http://... | https://...

``cache/`` is checked first and wraps exactly one proxy directive. Anything
that does not start with one of these forms is unrouted (``route`` returns
None) and the caller serves its fallback.
"""

import re
from typing import Optional, Tuple

import httpx

from shared.errors import BadRequestError

from .directives import CacheDirective, Directive, ProxyDirective, RefererPolicy


CACHE_PREFIX = "cache/"
ALL_PREFIX = "all/"
SET_REFERER_PREFIX = "set_referer/"
KEEP_REFERER_PREFIX = "keep_referer/"

_URL_SCHEMES = ("http://", "https://")
_COLLAPSED_SCHEME = re.compile(r"(https?):/(?!/)")
_TTL_SEGMENT = re.compile(r"^(\d+)/")


def normalize_path(path: str) -> str:
    """Strip the leading slash and repair schemes whose ``//`` was collapsed."""
    if path.startswith("/"):
        path = path[1:]
    return _COLLAPSED_SCHEME.sub(r"\1://", path)


def is_target_url(value: str) -> bool:
    return value.startswith(_URL_SCHEMES)


def route(path: str, *, default_ttl: int, max_ttl: int) -> Optional[Directive]:
    """Decode ``path`` into a directive.

    Returns None when the path carries no recognized prefix. Raises
    BadRequestError when a recognized prefix is followed by something that is
    not an absolute http(s) URL.
    """
    if path.startswith(CACHE_PREFIX):
        remainder = path[len(CACHE_PREFIX):]
        ttl, remainder = _parse_ttl(remainder, default_ttl, max_ttl)
        inner = _route_proxy(remainder)
        if inner is None:
            raise BadRequestError("cache/ must wrap a target URL", details={"path": path})
        return CacheDirective(ttl_seconds=ttl, inner=inner, nested=not is_target_url(remainder))

    return _route_proxy(path)


def _parse_ttl(remainder: str, default_ttl: int, max_ttl: int) -> Tuple[int, str]:
    match = _TTL_SEGMENT.match(remainder)
    if match is None:
        return default_ttl, remainder
    ttl = min(max(int(match.group(1)), 1), max_ttl)
    return ttl, remainder[match.end():]


def _route_proxy(path: str) -> Optional[ProxyDirective]:
    follow_redirects = False
    if path.startswith(ALL_PREFIX):
        follow_redirects = True
        path = path[len(ALL_PREFIX):]

    if path.startswith(SET_REFERER_PREFIX):
        referer, target = split_referer(path[len(SET_REFERER_PREFIX):])
        return ProxyDirective(
            target_url=_require_target(target),
            referer_policy=RefererPolicy.fixed(referer),
            follow_redirects=follow_redirects,
        )

    if path.startswith(KEEP_REFERER_PREFIX):
        return ProxyDirective(
            target_url=_require_target(path[len(KEEP_REFERER_PREFIX):]),
            referer_policy=RefererPolicy.pass_through(),
            follow_redirects=follow_redirects,
        )

    if is_target_url(path):
        return ProxyDirective(target_url=_require_target(path), follow_redirects=follow_redirects)

    if follow_redirects:
        raise BadRequestError("all/ must wrap a target URL", details={"path": path})
    return None


def split_referer(remainder: str) -> Tuple[str, str]:
    """Split ``<referer>/<url>`` at the last embedded http(s) URL.

    The last occurrence is used so that referers which are URLs themselves
    stay intact: ``http://ref.test/http://a.test/x`` splits into
    ``http://ref.test`` and ``http://a.test/x``.
    """
    index = max(remainder.rfind("/" + scheme) for scheme in _URL_SCHEMES)
    if index < 0:
        raise BadRequestError("set_referer/ requires an embedded target URL", details={"path": remainder})
    return remainder[:index], remainder[index + 1:]


def _require_target(url: str) -> str:
    if not is_target_url(url):
        raise BadRequestError("Target must start with http:// or https://", details={"target": url})
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as exc:
        raise BadRequestError("Target URL is malformed", details={"target": url, "error": str(exc)}) from exc
    if not parsed.host:
        raise BadRequestError("Target URL has no host", details={"target": url})
    return url


def cache_key(target_url: str) -> str:
    """Canonical form of a target URL used as the cache key."""
    parsed = httpx.URL(target_url).copy_with(fragment=None)
    # httpx lower-cases scheme and host and drops default ports on parse
    return str(parsed)
