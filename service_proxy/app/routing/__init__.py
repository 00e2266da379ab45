"""
Path routing for the proxy.

The router is pure: it turns a path into a directive or rejects it, and
never performs I/O.
"""

from .directives import CacheDirective, CacheMode, Directive, ProxyDirective, RefererKind, RefererPolicy
from .router import cache_key, normalize_path, route

__all__ = [
    "CacheDirective",
    "CacheMode",
    "Directive",
    "ProxyDirective",
    "RefererKind",
    "RefererPolicy",
    "cache_key",
    "normalize_path",
    "route",
]
