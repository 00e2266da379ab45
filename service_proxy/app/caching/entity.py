"""
Cached entity model and serialization.
"""

import base64
import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, Tuple

import httpx


def compute_etag(body: bytes) -> str:
    """Quoted SHA-256 hex digest of the full body."""
    return f'"{hashlib.sha256(body).hexdigest()}"'


@dataclass(frozen=True)
class CachedEntity:
    """A stored 2xx response. Replaced, never mutated, by later writes."""

    body: bytes
    status: int
    headers: Tuple[Tuple[str, str], ...]
    etag: str
    stored_at: float
    ttl_seconds: int

    def header_set(self) -> httpx.Headers:
        return httpx.Headers(list(self.headers))

    def to_json(self) -> str:
        """Serialize for the key-value backend."""
        payload: Dict[str, Any] = {
            "status": self.status,
            "headers": [list(pair) for pair in self.headers],
            "etag": self.etag,
            "stored_at": self.stored_at,
            "ttl_seconds": self.ttl_seconds,
            "body": base64.b64encode(self.body).decode("ascii"),
        }
        return json.dumps(payload, separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: Any) -> "CachedEntity":
        """Rehydrate an entity from backend state."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        payload = json.loads(raw)
        return cls(
            body=base64.b64decode(payload["body"]),
            status=int(payload["status"]),
            headers=tuple((str(name), str(value)) for name, value in payload["headers"]),
            etag=payload["etag"],
            stored_at=float(payload["stored_at"]),
            ttl_seconds=int(payload["ttl_seconds"]),
        )
