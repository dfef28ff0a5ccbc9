from typing import Dict, Optional
from fastapi import Request, FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from jose import jwt, JWTError
import html
import re

from streetserve.shared.utils import settings

# --- Rate Limiting ---
def rate_limit_key(request: Request) -> str:
    """Limit signed-in buyers and vendors per account, everyone else per IP.

    The token is only read here, not verified; verification happens in the
    endpoint dependency and a forged subject just gets its own bucket.
    """
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        try:
            sub = jwt.get_unverified_claims(token).get("sub")
        except JWTError:
            sub = None
        if sub:
            return f"user:{sub}"
    return get_remote_address(request)

limiter = Limiter(key_func=rate_limit_key, enabled=settings.RATE_LIMIT_ENABLED)

def setup_rate_limiting(app: FastAPI):
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# --- Security Headers Middleware ---
API_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    # JSON only, nothing here should ever render
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Referrer-Policy": "no-referrer",
}

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, extra_headers: Optional[Dict[str, str]] = None):
        super().__init__(app)
        self.headers = {**API_HEADERS, **(extra_headers or {})}

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.update(self.headers)
        return response

# --- Input Sanitization ---
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

def sanitize_input(text: Optional[str]) -> Optional[str]:
    """Trim, drop control characters and HTML-escape free text (names, addresses, notes)."""
    if not isinstance(text, str):
        return text
    return html.escape(CONTROL_CHARS.sub("", text.strip()))
