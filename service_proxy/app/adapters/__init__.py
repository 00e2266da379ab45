"""
Adapters package for the Proxy Service.

Contains the HTTP client wrapper used to reach arbitrary upstream targets.
It encapsulates:

- Connection pooling and redirect policy
- Cookie isolation of the shared client
- Mapping of transport failures to shared errors

No retries happen here; a failed exchange surfaces immediately.
"""

from .upstream_client import UpstreamFetcher, UpstreamResponse

__all__ = [
    "UpstreamFetcher",
    "UpstreamResponse",
]
