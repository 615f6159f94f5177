"""
Middleware and exception handlers for the GhostRegime API.

Provides:
- Security headers on every response
- Per-IP limit on forced (synchronous) recomputes
- Exception handlers mapping GhostRegimeError to its HTTP status and
  error code; nothing else leaks a stack trace
"""

import logging
import os
import time
from collections import defaultdict
from typing import Callable, Dict, List

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from src.errors import GhostRegimeError

logger = logging.getLogger(__name__)

_IS_PRODUCTION = os.getenv("GHOSTREGIME_ENV", "development") == "production"

# ─── Security Headers Middleware ──────────────────────────────────


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Inject security headers into every response.

    Snapshots change at most once per business day, but a forced
    recompute can replace a row, so responses are never cached.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
        response.headers["Pragma"] = "no-cache"
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none'"
        )
        response.headers["Cross-Origin-Resource-Policy"] = "same-origin"

        if _IS_PRODUCTION:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response


# ─── Forced Recompute Limiter ─────────────────────────────────────


class ForceRateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window limit on ``force=true`` requests per client IP.

    A forced request runs the full vendor fetch synchronously; plain
    reads are never limited.

    Args:
        max_requests: Forced requests allowed per window.
        window_seconds: Length of the sliding window in seconds.
    """

    def __init__(self, app: FastAPI, max_requests: int = 6, window_seconds: int = 60):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._request_log: Dict[str, List[float]] = defaultdict(list)

    @staticmethod
    def _is_forced(request: Request) -> bool:
        return request.query_params.get("force", "").lower() in ("1", "true", "yes", "on")

    def _get_client_ip(self, request: Request) -> str:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self._is_forced(request):
            return await call_next(request)

        ip = self._get_client_ip(request)
        now = time.time()
        cutoff = now - self.window_seconds
        recent = [t for t in self._request_log[ip] if t > cutoff]

        if len(recent) >= self.max_requests:
            self._request_log[ip] = recent
            logger.warning(f"Forced recompute limit exceeded for {ip}")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "error": "RATE_LIMITED",
                    "message": "Too many forced recomputes. Please wait before retrying.",
                },
                headers={"Retry-After": str(self.window_seconds)},
            )

        recent.append(now)
        self._request_log[ip] = recent
        return await call_next(request)


# ─── Exception Handlers ──────────────────────────────────────────


def register_exception_handlers(app: FastAPI) -> None:
    """Register handlers that turn errors into ``{"error", "message"}`` bodies."""

    @app.exception_handler(GhostRegimeError)
    async def _ghostregime_error(request: Request, exc: GhostRegimeError) -> JSONResponse:
        log = logger.error if exc.http_status >= 500 else logger.info
        log(f"{exc.code} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def _unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            f"Unhandled exception on {request.method} {request.url.path}: {exc}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "INTERNAL_ERROR",
                "message": "An unexpected error occurred. Please try again later.",
            },
        )
