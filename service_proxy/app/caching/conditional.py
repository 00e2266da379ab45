"""
Conditional (ETag) responses for cached entities.
"""

from typing import Optional

from starlette.responses import Response

from ..domain.responses import build_response
from .entity import CachedEntity


def etag_matches(if_none_match: Optional[str], etag: Optional[str]) -> bool:
    """Exact, case-sensitive comparison, quotes included."""
    return bool(if_none_match) and bool(etag) and if_none_match == etag


def apply_conditional(if_none_match: Optional[str], entity: CachedEntity, *, head: bool = False) -> Response:
    """304 with the entity headers when the client's ETag matches, else the full entity."""
    headers = entity.header_set()
    if etag_matches(if_none_match, entity.etag):
        return build_response(304, headers)
    if head:
        headers["Content-Length"] = str(len(entity.body))
        return build_response(entity.status, headers)
    return build_response(entity.status, headers, entity.body)
