"""
Security Headers Middleware

Every response gets the standard hardening headers. Outside DEBUG it also
gets HSTS and a CSP that admits the Stripe and PayPal checkout scripts the
goal form loads.

API responses carry user data and payment state, so they are marked
no-store. Uploaded evidence under UPLOAD_URL_PREFIX is left cacheable.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from core.config import settings

PAYMENT_ORIGINS = (
    "https://js.stripe.com",
    "https://api.stripe.com",
    "https://www.paypal.com",
    "https://www.sandbox.paypal.com",
)

BASE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), geolocation=(), microphone=(), payment=(self)",
}


def content_security_policy() -> str:
    payment = " ".join(PAYMENT_ORIGINS)
    return (
        "default-src 'self'; "
        f"script-src 'self' {payment}; "
        "style-src 'self' 'unsafe-inline'; "
        "img-src 'self' data: https:; "
        f"frame-src {payment}; "
        f"connect-src 'self' {payment}; "
        "frame-ancestors 'none';"
    )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        for name, value in BASE_HEADERS.items():
            response.headers[name] = value

        if not request.url.path.startswith(settings.UPLOAD_URL_PREFIX):
            response.headers.setdefault("Cache-Control", "no-store")

        if not settings.DEBUG:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
            response.headers["Content-Security-Policy"] = content_security_policy()

        return response
