"""Response hardening for an API that hands out credentials."""

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

# Bodies carry bearer tokens, backup codes and TOTP secrets: never cache them,
# never render them as documents, never leak them through a Referer.
STATIC_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}

HSTS_VALUE = "max-age=31536000; includeSubDomains"


def _is_https(request: Request) -> bool:
    return request.url.scheme == "https" or request.headers.get("x-forwarded-proto") == "https"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers.update(STATIC_HEADERS)
        if _is_https(request):
            response.headers["Strict-Transport-Security"] = HSTS_VALUE
        return response
