"""
PlaylistMirror - Authentication & Rate Limiting Middleware
"""

import hmac
import time
import threading
from collections import defaultdict

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from constants import RATE_LIMIT_REQUESTS, RATE_LIMIT_WINDOW
from settings import get_setting


# In-memory rate limiting store: {ip: [timestamps]}
_rate_limit_store: dict[str, list[float]] = defaultdict(list)
_rate_limit_lock = threading.Lock()
_rate_limit_last_cleanup = 0.0

# Reachable without a key, so clients can discover that auth is required
AUTH_EXEMPT_PATHS = {"/api/config"}


def _get_client_ip(request: Request) -> str:
    """Get client IP, respecting X-Forwarded-For for reverse proxies."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _check_rate_limit(ip: str) -> tuple[bool, int]:
    """Sliding-window check for one IP. Returns (allowed, remaining)."""
    global _rate_limit_last_cleanup
    now = time.time()
    window_start = now - RATE_LIMIT_WINDOW

    with _rate_limit_lock:
        recent = [t for t in _rate_limit_store[ip] if t > window_start]
        _rate_limit_store[ip] = recent

        # Drop idle IPs once per window so the store stays bounded
        if now - _rate_limit_last_cleanup > RATE_LIMIT_WINDOW:
            for addr in [a for a, ts in _rate_limit_store.items() if not ts or ts[-1] <= window_start]:
                _rate_limit_store.pop(addr, None)
            _rate_limit_last_cleanup = now

        if len(recent) >= RATE_LIMIT_REQUESTS:
            return False, 0
        _rate_limit_store[ip] = recent + [now]
        return True, RATE_LIMIT_REQUESTS - len(recent) - 1


def _unauthorised() -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"detail": "Invalid or missing API key"},
        headers={"WWW-Authenticate": "API-Key"},
    )


def _rate_limited() -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded. Try again later."},
        headers={
            "Retry-After": str(RATE_LIMIT_WINDOW),
            "X-RateLimit-Limit": str(RATE_LIMIT_REQUESTS),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(int(time.time() + RATE_LIMIT_WINDOW)),
        },
    )


class AuthMiddleware(BaseHTTPMiddleware):
    """API key check (when one is configured) and per-IP rate limiting for /api."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not path.startswith("/api"):
            return await call_next(request)

        api_key = get_setting("api_key", "")
        if api_key and path not in AUTH_EXEMPT_PATHS:
            request_key = request.headers.get("x-api-key", "")
            if not hmac.compare_digest(request_key, api_key):
                return _unauthorised()

        allowed, remaining = _check_rate_limit(_get_client_ip(request))
        if not allowed:
            return _rate_limited()

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(RATE_LIMIT_REQUESTS)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
