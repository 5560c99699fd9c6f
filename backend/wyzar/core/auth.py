"""Authentication helpers: password hashing, tokens, and cookie management.

Shared utilities used by the auth and passcode endpoints and by the
session resolver.

Pipeline:
- hash_password / verify_password: bcrypt, opaque to callers
- validate_password_strength: Format rules (sync, no network)
- create_legacy_token / decode_legacy_token: self-issued HS256 JWTs
- create_reset_grant / decode_reset_grant: short-lived password-reset grant
- is_self_issued_token: signature check that ignores claims
- generate_session_token / hash_token: opaque server-session tokens
- set_session_cookie / clear_session_cookie: httpOnly cookie handling
- DUMMY_HASH: Timing-safe constant for identifier enumeration defense
"""

import hashlib
import logging
import re
import secrets
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
import jwt
from fastapi import Response

from wyzar.core.config import settings
from wyzar.core.errors import SessionExpiredError, SessionInvalidError, ValidationError

logger = logging.getLogger(__name__)

# bcrypt work factor
_BCRYPT_ROUNDS = 12

# Claim value distinguishing a reset grant from a login token
_RESET_GRANT_PURPOSE = "password-reset"

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_MICROSECOND = timedelta(microseconds=1)

# Pre-computed bcrypt hash for timing-safe comparison on identifier-not-found.
# Security: prevents account enumeration via response time differences.
# Pre-generated to avoid ~300ms bcrypt computation on every app startup.
DUMMY_HASH = b"$2b$12$ZP2PVB8yI35X.mkRqcUPUuSzJA1CNRt4dZ7X3cyrfJu.2S3w.Qen2"


def hash_password(password: str) -> str:
    """Hash a password with bcrypt.

    Args:
        password: Plain-text password.

    Returns:
        bcrypt hash as a UTF-8 string.
    """
    hashed = bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=_BCRYPT_ROUNDS))
    return hashed.decode()


def verify_password(password: str, password_hash: str | None) -> bool:
    """Compare a password against a stored hash.

    Always performs a bcrypt comparison, against DUMMY_HASH when there is
    no stored hash, so unknown identifiers and password-less accounts take
    the same time as a real mismatch.

    Args:
        password: Plain-text password from the request.
        password_hash: Stored bcrypt hash, or None.

    Returns:
        True only if a real hash exists and matches.
    """
    target = password_hash.encode() if password_hash else DUMMY_HASH
    try:
        matched = bcrypt.checkpw(password.encode(), target)
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False
    return matched and password_hash is not None


def validate_password_strength(password: str) -> None:
    """Validate password meets strength requirements.

    8-128 chars, letter + number + special character.

    Args:
        password: Plain-text password to validate.

    Raises:
        ValidationError: If password doesn't meet requirements.
    """
    if len(password) < 8:
        raise ValidationError("Password must be at least 8 characters")
    if len(password) > 128:
        raise ValidationError("Password must be at most 128 characters")
    if not re.search(r"[a-zA-Z]", password):
        raise ValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise ValidationError("Password must contain at least one number")
    if not re.search(r"[^a-zA-Z\d]", password):
        raise ValidationError("Password must contain at least one special character")


def _secret() -> str:
    return settings.auth_secret.get_secret_value()


def _encode(claims: dict[str, Any], expires_delta: timedelta, now: datetime) -> str:
    payload = {
        **claims,
        "aud": settings.auth_audience,
        "iss": settings.auth_issuer,
        "exp": now + expires_delta,
        "iat": now,
    }
    return jwt.encode(payload, _secret(), algorithm="HS256")


def _decode(token: str) -> dict[str, Any]:
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            _secret(),
            algorithms=["HS256"],
            audience=settings.auth_audience,
            issuer=settings.auth_issuer,
            options={"require": ["sub", "exp", "iat"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise SessionExpiredError() from exc
    except jwt.InvalidTokenError as exc:
        raise SessionInvalidError() from exc
    return payload


def create_legacy_token(
    account_id: uuid.UUID,
    *,
    expires_delta: timedelta | None = None,
    now: datetime | None = None,
) -> str:
    """Create a self-issued bearer token for legacy clients.

    Args:
        account_id: Account UUID for the sub claim.
        expires_delta: Time until expiration. Defaults to the configured TTL.
        now: Issue time (defaults to current time).

    Returns:
        Encoded JWT string.
    """
    return _encode(
        {"sub": str(account_id)},
        expires_delta or timedelta(seconds=settings.legacy_token_ttl_seconds),
        now or datetime.now(UTC),
    )


def decode_legacy_token(token: str) -> tuple[uuid.UUID, datetime]:
    """Verify a legacy token.

    Reset grants are refused here even though they share the signing key.

    Returns:
        Tuple of (account_id, issued_at).

    Raises:
        SessionExpiredError: Token is past its exp claim.
        SessionInvalidError: Bad signature, claims, or subject.
    """
    payload = _decode(token)
    if payload.get("purpose") is not None:
        raise SessionInvalidError()
    try:
        account_id = uuid.UUID(str(payload["sub"]))
        issued_at = datetime.fromtimestamp(float(payload["iat"]), tz=UTC)
    except (KeyError, TypeError, ValueError) as exc:
        raise SessionInvalidError() from exc
    return account_id, issued_at


def create_reset_grant(account_id: uuid.UUID, *, now: datetime | None = None) -> str:
    """Create the short-lived grant returned by a verified password-reset passcode.

    Besides the whole-second ``iat``, the grant carries ``iat_us``, its exact
    issue time in microseconds, so it can be ordered against a revocation
    cutoff that falls in the same second.
    """
    issued_at = now or datetime.now(UTC)
    return _encode(
        {
            "sub": str(account_id),
            "purpose": _RESET_GRANT_PURPOSE,
            "iat_us": (issued_at - _EPOCH) // _MICROSECOND,
        },
        timedelta(seconds=settings.password_reset_grant_ttl_seconds),
        issued_at,
    )


def decode_reset_grant(grant: str) -> tuple[uuid.UUID, datetime]:
    """Verify a password-reset grant.

    Returns:
        Tuple of (account_id, issued_at), issued_at to the microsecond.

    Raises:
        SessionExpiredError: Grant is past its exp claim.
        SessionInvalidError: Grant is invalid or is not a reset grant.
    """
    payload = _decode(grant)
    if payload.get("purpose") != _RESET_GRANT_PURPOSE:
        raise SessionInvalidError()
    try:
        return (
            uuid.UUID(str(payload["sub"])),
            _EPOCH + int(payload["iat_us"]) * _MICROSECOND,
        )
    except (KeyError, TypeError, ValueError, OverflowError) as exc:
        raise SessionInvalidError() from exc


def is_self_issued_token(token: str) -> bool:
    """True if the token carries a valid signature under our signing key.

    Claims are not checked, so expired legacy tokens and reset grants
    still count as ours.
    """
    try:
        jwt.decode(
            token,
            _secret(),
            algorithms=["HS256"],
            options={
                "verify_exp": False,
                "verify_nbf": False,
                "verify_iat": False,
                "verify_aud": False,
                "verify_iss": False,
            },
        )
    except jwt.InvalidTokenError:
        return False
    return True


def hash_token(token: str) -> str:
    """SHA-256 hex digest used to store opaque tokens and passcodes."""
    return hashlib.sha256(token.encode()).hexdigest()


def generate_session_token() -> tuple[str, str]:
    """Generate a new opaque session token.

    Returns:
        Tuple of (plain token for the client, hash for storage).
    """
    token = secrets.token_urlsafe(32)
    return token, hash_token(token)


def set_session_cookie(response: Response, token: str) -> None:
    """Set httpOnly session cookie on response.

    Security: httpOnly prevents XSS cookie theft. Secure flag and SameSite
    are configured via settings for environment-appropriate security.

    Args:
        response: FastAPI response object.
        token: Plain session token.
    """
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        path="/",
        max_age=settings.session_ttl_seconds,
        domain=settings.session_cookie_domain or None,
    )


def clear_session_cookie(response: Response) -> None:
    """Expire the session cookie on the client."""
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        domain=settings.session_cookie_domain or None,
        secure=settings.session_cookie_secure,
        httponly=True,
        samesite=settings.session_cookie_samesite,
    )
