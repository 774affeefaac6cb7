"""Security headers middleware.

Learn: The API only ever returns JSON or file downloads, so it can send
a very strict policy:
- X-Content-Type-Options: no MIME sniffing (matters for uploaded files)
- X-Frame-Options / frame-ancestors: never framed
- Content-Security-Policy: nothing executes from an API response
- Cache-Control: auth responses carry tokens and must not be cached
- Strict-Transport-Security: only on HTTPS connections
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

API_CSP = "default-src 'none'; frame-ancestors 'none'"
DOCS_PATHS = ("/docs", "/redoc", "/openapi.json")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        response: Response = await call_next(request)
        path = request.url.path

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if not path.startswith(DOCS_PATHS):
            # Swagger UI loads scripts from a CDN; everything else is data.
            response.headers["Content-Security-Policy"] = API_CSP
        if path.startswith("/api/v1/auth"):
            response.headers["Cache-Control"] = "no-store"
        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response
