"""
Starlette response construction from httpx header collections.

Starlette's ``headers=`` argument is a plain mapping and would fold repeated
headers (several alias cookies, several Vary lines), so headers are appended
to ``raw_headers`` instead.
"""

from typing import AsyncIterator

import httpx
from starlette.responses import Response, StreamingResponse

from .headers import cors_headers


def _attach(response: Response, headers: httpx.Headers) -> Response:
    explicit_length = "content-length" in headers
    if explicit_length:
        response.raw_headers = [
            (name, value) for name, value in response.raw_headers if name != b"content-length"
        ]
    for name, value in headers.raw:
        response.raw_headers.append((name.lower(), value))
    return response


def build_response(status_code: int, headers: httpx.Headers, body: bytes = b"") -> Response:
    """Buffered response; an explicit Content-Length in ``headers`` wins."""
    return _attach(Response(content=body, status_code=status_code), headers)


def build_streaming_response(
    status_code: int,
    headers: httpx.Headers,
    body: AsyncIterator[bytes],
) -> StreamingResponse:
    """Relay an upstream body chunk by chunk."""
    return _attach(StreamingResponse(body, status_code=status_code), headers)


def empty_response(status_code: int) -> Response:
    return build_response(status_code, cors_headers())


def error_response(status_code: int, text: str) -> Response:
    """Plain-text diagnostic carrying the CORS set."""
    headers = cors_headers()
    headers["Content-Type"] = "text/plain; charset=utf-8"
    return build_response(status_code, headers, text.encode("utf-8"))
