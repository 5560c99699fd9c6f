"""Rate limiting configuration using slowapi.

Security: Coarse per-client request caps on the credential and passcode
endpoints. These sit in front of the per-identifier lockout guard and the
per-recipient passcode resend interval; they do not replace them.

Unauthenticated endpoints (login, register, passcode send/verify) key on
the client IP. When a session cookie is present the key includes a short
digest of it so clients behind one NAT do not starve each other.

Usage in routers:
    from wyzar.core.rate_limiting import limiter

    @router.post("/login")
    @limiter.limit(lambda: settings.rate_limit_login)
    async def login(request: Request, ...):
        ...
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from wyzar.core.auth import hash_token
from wyzar.core.config import settings


def _rate_limit_key_func(request: Request) -> str:
    """Get rate limit key from request.

    Key format:
    - Session cookie present: "session:{first 16 hex of token hash}"
    - Otherwise: "ip:{remote address}"

    Note: No session lookup here. The cookie only partitions the bucket;
    authorization happens in the dependencies.

    Args:
        request: The incoming request.

    Returns:
        Rate limit key string.
    """
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        return f"session:{hash_token(token)[:16]}"
    return f"ip:{get_remote_address(request)}"


# Global limiter instance
# Configured with in-memory storage (suitable for single-instance deployment)
# For multi-instance, configure Redis storage via RATELIMIT_STORAGE_URL
limiter = Limiter(
    key_func=_rate_limit_key_func,
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Handle rate limit exceeded errors.

    Security: Returns 429 Too Many Requests with standard error envelope.

    Args:
        request: The incoming request.
        exc: The rate limit exception.

    Returns:
        JSONResponse with 429 status and retry-after header.
    """
    # slowapi detail looks like "10 per 15 minute"; fall back to 60 seconds
    retry_after = "60"
    try:
        window = exc.limit.limit.get_expiry()
        retry_after = str(int(window))
    except (AttributeError, TypeError, ValueError):
        pass

    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMITED",
                "message": "Too many requests. Please try again later.",
                "details": None,
            }
        },
        headers={"Retry-After": retry_after},
    )
