"""API error classes.

HTTP status codes and error codes for the consistent error envelope, plus
the authentication error taxonomy shared by the login, passcode, and
session resolution paths.

WHY CUSTOM ERROR CLASSES:
- Consistent error response format across all endpoints
- Easy to map to HTTP status codes in exception handlers
- Machine-readable fields (attempts_left, unlock_at, wait_seconds) travel in
  ``details`` while the human message stays deliberately vague
"""

import math
from datetime import datetime


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
        headers: Optional response headers (e.g., Retry-After).
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        self.headers = headers
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400)."""

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class UnauthorizedError(APIError):
    """Authentication required (401).

    Use when no valid auth credentials provided.
    """

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
        )


class ForbiddenError(APIError):
    """Not allowed to access resource (403)."""

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=403,
        )


class AdminRequiredError(ForbiddenError):
    """Admin access required (403)."""

    def __init__(self) -> None:
        APIError.__init__(
            self,
            code="ADMIN_REQUIRED",
            message="Admin access required",
            status_code=403,
        )


class NotFoundError(APIError):
    """Resource not found (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
        )


class ConflictError(APIError):
    """Duplicate or conflicting resource (409)."""

    def __init__(
        self,
        code: str,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


class ServiceUnavailableError(APIError):
    """A required downstream service could not be reached (503)."""

    def __init__(self, message: str = "Service temporarily unavailable") -> None:
        super().__init__(
            code="SERVICE_UNAVAILABLE",
            message=message,
            status_code=503,
        )


class InternalError(APIError):
    """Unexpected server error (500).

    Use for unhandled exceptions. Never expose stack traces to clients.
    """

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
        )


# =============================================================================
# Credential login
# =============================================================================


class InvalidCredentialsError(APIError):
    """Identifier/password rejected (401).

    Security: Same message for unknown identifier and wrong password.
    """

    def __init__(self, attempts_left: int | None = None) -> None:
        details = None
        if attempts_left is not None:
            details = [{"attempts_left": attempts_left}]
        super().__init__(
            code="INVALID_CREDENTIALS",
            message="Invalid credentials",
            status_code=401,
            details=details,
        )


class AccountLockedError(APIError):
    """Identifier temporarily locked after repeated failures (429).

    The message never says whether the identifier exists.

    Args:
        unlock_at: When the lock expires.
        now: Reference time for the retry-after computation.
    """

    def __init__(self, unlock_at: datetime, now: datetime) -> None:
        retry_after = max(1, math.ceil((unlock_at - now).total_seconds()))
        self.unlock_at = unlock_at
        super().__init__(
            code="ACCOUNT_LOCKED",
            message="Too many failed attempts. Please try again later.",
            status_code=429,
            details=[
                {
                    "attempts_left": 0,
                    "unlock_at": unlock_at.isoformat(),
                    "retry_after_seconds": retry_after,
                }
            ],
            headers={"Retry-After": str(retry_after)},
        )


class AccountSuspendedError(APIError):
    """Account is suspended (403)."""

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(
            code="ACCOUNT_SUSPENDED",
            message="Account suspended. Please contact support.",
            status_code=403,
            details=[{"reason": reason}] if reason else None,
        )


class RateLimitedError(APIError):
    """Caller must wait before retrying (429)."""

    def __init__(self, wait_seconds: int, message: str | None = None) -> None:
        self.wait_seconds = wait_seconds
        super().__init__(
            code="RATE_LIMITED",
            message=message or "Please wait before trying again.",
            status_code=429,
            details=[{"wait_seconds": wait_seconds}],
            headers={"Retry-After": str(wait_seconds)},
        )


# =============================================================================
# One-time passcodes
# =============================================================================


class OTPNotFoundError(APIError):
    """No actionable passcode for this recipient and purpose (404)."""

    def __init__(self) -> None:
        super().__init__(
            code="OTP_NOT_FOUND",
            message="No active passcode found. Please request a new one.",
            status_code=404,
        )


class OTPExpiredError(APIError):
    """Passcode is past its expiry (400)."""

    def __init__(self) -> None:
        super().__init__(
            code="OTP_EXPIRED",
            message="Passcode has expired. Please request a new one.",
            status_code=400,
        )


class OTPAttemptsExhaustedError(APIError):
    """Passcode verification attempt cap reached (400)."""

    def __init__(self) -> None:
        super().__init__(
            code="OTP_ATTEMPTS_EXHAUSTED",
            message="Maximum verification attempts exceeded. Please request a new passcode.",
            status_code=400,
        )


class OTPMismatchError(APIError):
    """Wrong passcode (400)."""

    def __init__(self, attempts_left: int) -> None:
        self.attempts_left = attempts_left
        super().__init__(
            code="OTP_MISMATCH",
            message=f"Invalid passcode. {attempts_left} attempt(s) remaining.",
            status_code=400,
            details=[{"attempts_left": attempts_left}],
        )


# =============================================================================
# Session resolution
# =============================================================================


class AuthenticationError(UnauthorizedError):
    """Base for credential-specific failures raised inside session resolution.

    The resolver catches these per source and only ever surfaces the
    generic 401 to callers.
    """

    def __init__(self, code: str, message: str) -> None:
        APIError.__init__(self, code=code, message=message, status_code=401)


class SessionInvalidError(AuthenticationError):
    """Token or session record is unknown, malformed, or revoked."""

    def __init__(self, message: str = "Invalid session") -> None:
        super().__init__(code="SESSION_INVALID", message=message)


class SessionExpiredError(AuthenticationError):
    """Token or session record is past its expiry."""

    def __init__(self, message: str = "Session expired") -> None:
        super().__init__(code="SESSION_EXPIRED", message=message)


class FederationTokenInvalidError(AuthenticationError):
    """Identity provider rejected the token or could not be reached."""

    def __init__(self, message: str = "Invalid identity token") -> None:
        super().__init__(code="FEDERATION_TOKEN_INVALID", message=message)


# =============================================================================
# Outbound delivery (not rendered directly; routes map it to a 503)
# =============================================================================


class DeliveryError(Exception):
    """Email or SMS provider rejected the message or could not be reached."""

    def __init__(self, channel: str, message: str = "Delivery failed") -> None:
        self.channel = channel
        super().__init__(f"{channel}: {message}")
