"""
Security module for the SSC review API.

Implements:
- Rate limiting (IP-based using slowapi)
- Security headers middleware with request ids for audit logging
- Request size validation
- Secure error responses that keep CORS headers

Configuration via environment variables:
- RATE_LIMIT_PER_MINUTE: Requests per minute per IP (default: 100)
- MAX_REQUEST_SIZE_MB: Maximum request body size in MB (default: 10)
- TRUSTED_PROXY_COUNT: Proxies in front of the app (default: 1)
- ENVIRONMENT: 'production' or 'development' (affects error detail exposure)
"""

import ipaddress
import logging
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = logging.getLogger(__name__)

# =============================================================================
# Configuration
# =============================================================================

RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE", "100"))
DEFAULT_RATE_LIMIT = f"{RATE_LIMIT_PER_MINUTE}/minute"

MAX_REQUEST_SIZE_MB = int(os.getenv("MAX_REQUEST_SIZE_MB", "10"))
MAX_REQUEST_SIZE_BYTES = MAX_REQUEST_SIZE_MB * 1024 * 1024

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
IS_PRODUCTION = ENVIRONMENT.lower() == "production"

TRUSTED_PROXY_COUNT = int(os.getenv("TRUSTED_PROXY_COUNT", "1"))


# =============================================================================
# Rate Limiter Setup
# =============================================================================

def _is_valid_ip(ip_str: str) -> bool:
    """Validate that a string is an IPv4 or IPv6 address."""
    if not ip_str or len(ip_str) > 45:
        return False
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def get_client_ip(request: Request) -> str:
    """
    Extract the client IP, trusting only the rightmost proxy hops.

    With ``TRUSTED_PROXY_COUNT=1`` and ``X-Forwarded-For: a, b, proxy`` the
    client is ``b``; anything further left may be spoofed.

    Returns:
        The client IP address, or "unknown" if not determinable
    """
    direct_ip = request.client.host if request.client else None

    if forwarded_for := request.headers.get("X-Forwarded-For"):
        if ips := [ip.strip() for ip in forwarded_for.split(",") if ip.strip()]:
            if len(ips) > TRUSTED_PROXY_COUNT:
                client_ip = ips[-(TRUSTED_PROXY_COUNT + 1)]
            else:
                client_ip = ips[0]

            if _is_valid_ip(client_ip):
                return client_ip
            logger.warning(
                "Invalid IP in X-Forwarded-For header: %r (direct_ip=%s)",
                client_ip[:50],
                direct_ip,
            )

    if real_ip := request.headers.get("X-Real-IP"):
        real_ip = real_ip.strip()
        if _is_valid_ip(real_ip):
            return real_ip
        logger.warning(
            "Invalid X-Real-IP header: %r (direct_ip=%s)", real_ip[:50], direct_ip
        )

    return direct_ip if direct_ip and _is_valid_ip(direct_ip) else "unknown"


limiter = Limiter(
    key_func=get_client_ip,
    default_limits=[DEFAULT_RATE_LIMIT],
    storage_uri="memory://",  # In-memory storage (use Redis for multi-instance)
    strategy="fixed-window",
)


def get_rate_limiter() -> Limiter:
    """Get the configured rate limiter instance."""
    return limiter


# =============================================================================
# Security Headers Middleware
# =============================================================================

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds security headers and an ``X-Request-ID`` to every response and
    logs the request duration.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.start_time = time.time()

        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "camera=(), geolocation=(), microphone=(), payment=(), usb=()"
        )
        if IS_PRODUCTION:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        response.headers["X-Request-ID"] = request_id

        # Review data includes applicant details; never cache it
        if not response.headers.get("Cache-Control"):
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"

        duration = time.time() - request.state.start_time
        logger.info(
            "Request completed: %s %s status=%s duration=%.3fs request_id=%s client_ip=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration,
            request_id,
            get_client_ip(request),
        )
        return response


# =============================================================================
# Request Size Limit Middleware
# =============================================================================

class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Rejects request bodies larger than ``MAX_REQUEST_SIZE_MB``."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if content_length := request.headers.get("content-length"):
            try:
                size = int(content_length)
            except ValueError:
                return JSONResponse(
                    status_code=400,
                    content={
                        "detail": "Invalid Content-Length header",
                        "code": "INVALID_CONTENT_LENGTH",
                    },
                )
            if size > MAX_REQUEST_SIZE_BYTES:
                return JSONResponse(
                    status_code=413,
                    content={
                        "detail": f"Request body too large. Maximum size is {MAX_REQUEST_SIZE_MB}MB.",
                        "code": "REQUEST_TOO_LARGE",
                    },
                )

        return await call_next(request)


# =============================================================================
# Exception Handlers
# =============================================================================

def _response_headers(request: Request, allowed_origins: list[str]) -> dict[str, str]:
    headers = {"X-Request-ID": getattr(request.state, "request_id", str(uuid.uuid4()))}
    origin = request.headers.get("origin", "")
    if origin in allowed_origins:
        headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Credentials"] = "true"
    return headers


def create_secure_exception_handler(allowed_origins: list[str]) -> Callable:
    """
    Handler for unhandled exceptions: full details in the log, a generic
    message to production clients.
    """

    async def secure_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        headers = _response_headers(request, allowed_origins)
        request_id = headers["X-Request-ID"]

        logger.error(
            "Unhandled exception: %s: %s request_id=%s path=%s method=%s client_ip=%s",
            type(exc).__name__,
            exc,
            request_id,
            request.url.path,
            request.method,
            get_client_ip(request),
            exc_info=True,
        )

        if IS_PRODUCTION:
            content = {
                "detail": "An internal server error occurred. Please try again later.",
                "code": "INTERNAL_ERROR",
                "request_id": request_id,
            }
        else:
            content = {
                "detail": str(exc),
                "error_type": type(exc).__name__,
                "request_id": request_id,
            }
        return JSONResponse(status_code=500, content=content, headers=headers)

    return secure_exception_handler


def create_rate_limit_exceeded_handler(allowed_origins: list[str]) -> Callable:
    """Rate limit handler that keeps CORS headers and suggests a retry."""

    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        headers = _response_headers(request, allowed_origins)
        headers["Retry-After"] = "60"

        logger.warning(
            "Rate limit exceeded: client_ip=%s path=%s request_id=%s",
            get_client_ip(request),
            request.url.path,
            headers["X-Request-ID"],
        )
        return JSONResponse(
            status_code=429,
            content={
                "detail": "Rate limit exceeded. Please slow down your requests.",
                "code": "RATE_LIMIT_EXCEEDED",
                "retry_after_seconds": 60,
                "request_id": headers["X-Request-ID"],
            },
            headers=headers,
        )

    return rate_limit_handler


def create_http_exception_handler(allowed_origins: list[str]) -> Callable:
    """HTTPException handler that keeps CORS headers and logs auth failures."""

    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        headers = _response_headers(request, allowed_origins)
        if exc.headers:
            headers.update(exc.headers)

        if exc.status_code in (401, 403):
            logger.warning(
                "%s: client_ip=%s path=%s request_id=%s",
                "Authentication failed" if exc.status_code == 401 else "Authorization denied",
                get_client_ip(request),
                request.url.path,
                headers["X-Request-ID"],
            )

        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "request_id": headers["X-Request-ID"]},
            headers=headers,
        )

    return http_exception_handler


# =============================================================================
# Security Setup Function
# =============================================================================

def setup_security(app: FastAPI, allowed_origins: list[str]) -> None:
    """
    Configure security middleware and handlers for a FastAPI application.

    Args:
        app: The FastAPI application instance
        allowed_origins: List of allowed CORS origins
    """
    app.state.limiter = limiter

    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestSizeLimitMiddleware)

    app.add_exception_handler(
        RateLimitExceeded, create_rate_limit_exceeded_handler(allowed_origins)
    )
    app.add_exception_handler(Exception, create_secure_exception_handler(allowed_origins))
    app.add_exception_handler(HTTPException, create_http_exception_handler(allowed_origins))

    logger.info(
        "Security middleware configured: rate_limit=%s/min, max_request_size=%sMB, environment=%s",
        RATE_LIMIT_PER_MINUTE,
        MAX_REQUEST_SIZE_MB,
        ENVIRONMENT,
    )


# =============================================================================
# Rate Limit Decorators for Sensitive Endpoints
# =============================================================================

SENSITIVE_RATE_LIMIT = "30/minute"
AUTH_RATE_LIMIT = "5/minute"


def rate_limit_sensitive():
    """Decorator for state-changing review endpoints."""
    return limiter.limit(SENSITIVE_RATE_LIMIT)


def rate_limit_auth():
    """Decorator for authentication endpoints with strict rate limiting."""
    return limiter.limit(AUTH_RATE_LIMIT)


# =============================================================================
# Audit Logging Utilities
# =============================================================================

def log_security_event(
    event_type: str,
    request: Request,
    details: Optional[dict] = None
) -> None:
    """
    Log a security-relevant event for audit purposes.

    Args:
        event_type: Type of security event (e.g., 'auth_failure', 'admin_required')
        request: The request object
        details: Optional additional details to log
    """
    log_data = {
        "event_type": event_type,
        "request_id": getattr(request.state, "request_id", "unknown"),
        "client_ip": get_client_ip(request),
        "path": request.url.path,
        "method": request.method,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if details:
        log_data |= details

    logger.warning("SECURITY_EVENT: %s", log_data)
