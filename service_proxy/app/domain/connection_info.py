"""
Connection diagnostics: echoes what the edge knows about the caller.
"""

import re
from typing import Any, Dict, Optional

import httpx


# Edge headers describing TLS, client certificates or edge internals are not echoed
_HIDDEN_EDGE_FIELDS = re.compile(r"^(tls|client|edge|request|verified)")


def client_ip(headers: httpx.Headers, peer_host: Optional[str]) -> Optional[str]:
    """Caller address: CF-Connecting-IP, then the first X-Forwarded-For hop, then the socket peer."""
    connecting_ip = headers.get("cf-connecting-ip")
    if connecting_ip:
        return connecting_ip.strip()
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return peer_host


def describe_connection(
    headers: httpx.Headers,
    *,
    peer_host: Optional[str],
    http_version: str,
    scheme: str,
) -> Dict[str, Any]:
    info: Dict[str, Any] = {
        "httpProtocol": f"HTTP/{http_version}",
        "scheme": scheme,
    }
    for name, value in headers.multi_items():
        if not name.startswith("cf-") or name == "cf-connecting-ip":
            continue
        field = name[len("cf-"):]
        if _HIDDEN_EDGE_FIELDS.match(field):
            continue
        info[field] = value
    info["clientIp"] = client_ip(headers, peer_host)
    return info
