"""
Shared error handling for the edge proxy.
"""

from typing import Dict, Any, Optional


class ProxyException(Exception):
    """Base exception for proxy failures that map onto an HTTP status."""

    status_code = 502

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_text(self) -> str:
        """Render the plain-text diagnostic body returned to clients."""
        lines = [f"{self.code}: {self.message}"]
        for key, value in self.details.items():
            lines.append(f"{key}: {value}")
        return "\n".join(lines) + "\n"


class BadRequestError(ProxyException):
    """The request path does not encode a usable target."""

    status_code = 400

    def __init__(self, message: str = "Malformed target URL", details: Optional[Dict[str, Any]] = None):
        super().__init__("BAD_REQUEST", message, details)


class UpstreamUnreachableError(ProxyException):
    """DNS, connect, timeout or protocol failure talking to the target."""

    status_code = 502

    def __init__(self, url: str, message: str = "Upstream unreachable", details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details.setdefault("url", url)
        super().__init__("UPSTREAM_UNREACHABLE", message, details)


class CacheBackendError(ProxyException):
    """Cache backend failure. Logged by the cache layer, never sent to clients."""

    def __init__(self, operation: str, message: str = "Cache backend error", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_BACKEND_ERROR", f"{operation}: {message}", details)
