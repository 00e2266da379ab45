"""
Directive types produced by the path router.

A directive is the parsed intent of one request path. Two variants exist:
``ProxyDirective`` (fetch a target, optionally following redirects and
injecting a referer) and ``CacheDirective`` (serve one ``ProxyDirective``
through the edge cache). Both expose the same flat view so callers can read
``target_url``, ``cache_mode``, ``ttl_seconds``, ``referer_policy`` and
``follow_redirects`` without caring which variant they hold.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class CacheMode(str, Enum):
    """How a directive interacts with the edge cache."""

    NONE = "none"
    CACHE = "cache"
    NESTED = "nested"


class RefererKind(str, Enum):
    """Where the outbound Referer comes from."""

    NONE = "none"
    FIXED = "fixed"
    PASS_THROUGH = "pass_through"


@dataclass(frozen=True)
class RefererPolicy:
    """Referer handling for the outbound request."""

    kind: RefererKind = RefererKind.NONE
    value: Optional[str] = None

    @classmethod
    def none(cls) -> "RefererPolicy":
        return cls()

    @classmethod
    def fixed(cls, value: str) -> "RefererPolicy":
        return cls(RefererKind.FIXED, value)

    @classmethod
    def pass_through(cls) -> "RefererPolicy":
        return cls(RefererKind.PASS_THROUGH)

    def resolve(self, inbound_referer: Optional[str]) -> Optional[str]:
        """Return the Referer to send upstream, or None to send none."""
        if self.kind is RefererKind.FIXED:
            return self.value or None
        if self.kind is RefererKind.PASS_THROUGH:
            return inbound_referer or None
        return None


@dataclass(frozen=True)
class ProxyDirective:
    """Fetch ``target_url`` and relay the response."""

    target_url: str
    referer_policy: RefererPolicy = RefererPolicy()
    follow_redirects: bool = False

    @property
    def cache_mode(self) -> CacheMode:
        return CacheMode.NONE

    @property
    def ttl_seconds(self) -> Optional[int]:
        return None

    @property
    def proxy(self) -> "ProxyDirective":
        return self


@dataclass(frozen=True)
class CacheDirective:
    """Serve ``inner`` through the edge cache for ``ttl_seconds``."""

    ttl_seconds: int
    inner: ProxyDirective
    nested: bool = False

    @property
    def cache_mode(self) -> CacheMode:
        return CacheMode.NESTED if self.nested else CacheMode.CACHE

    @property
    def target_url(self) -> str:
        return self.inner.target_url

    @property
    def referer_policy(self) -> RefererPolicy:
        return self.inner.referer_policy

    @property
    def follow_redirects(self) -> bool:
        return self.inner.follow_redirects

    @property
    def proxy(self) -> ProxyDirective:
        return self.inner


Directive = Union[ProxyDirective, CacheDirective]
