"""
Edge Proxy Service package.

The proxy decodes the target URL from the request path and forwards the
request, enforcing:
- Cookie isolation: inbound Cookie stripped, upstream Set-Cookie renamed
- Referer control: dropped, fixed or passed through per path prefix
- Edge caching: whole 2xx responses with ETag revalidation

Structure:
- app.main: FastAPI app, catch-all route and service wiring.
- app.routing: Path grammar and directive types.
- app.adapters: Upstream HTTP client.
- app.caching: Edge cache, backends and conditional responses.
- app.domain: Header sanitization, dispatch and response helpers.
"""
