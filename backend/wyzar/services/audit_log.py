"""Security audit log.

Append-only record of security-relevant events (logins, lockouts,
passcodes, authorization failures, admin actions). Each entry is written
in its own transaction through a dedicated session, so a request that
later rolls back still leaves its audit trail. Every entry is also
emitted as a structlog event.

Payloads are redacted before storage: any key whose words hit the
denylist (password, token, secret, otp, pin, card number, ...) has its
value replaced, at any nesting depth.
"""

import enum
import re
import uuid
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wyzar.core.clock import Clock, as_utc, utc_now
from wyzar.models.audit_entry import AuditEntry
from wyzar.repositories.audit_repository import AuditRepository

logger = structlog.get_logger()

REDACTED = "[REDACTED]"

# Single words and word pairs that mark a key as sensitive
_SENSITIVE_WORDS = frozenset(
    {"password", "passwd", "token", "secret", "otp", "pin", "cvv", "cvc", "passcode"}
)
_SENSITIVE_PAIRS = frozenset({("card", "number"), ("api", "key")})

# Splits camelCase boundaries ("cardNumber" -> "card Number")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_WORD_SEPARATOR = re.compile(r"[^a-zA-Z0-9]+")


class AuditEventKind(enum.StrEnum):
    """Kinds of audited events."""

    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    LOGIN_BLOCKED = "LOGIN_BLOCKED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    ACCOUNT_UNLOCKED = "ACCOUNT_UNLOCKED"
    OTP_ISSUED = "OTP_ISSUED"
    OTP_THROTTLED = "OTP_THROTTLED"
    OTP_VERIFIED = "OTP_VERIFIED"
    OTP_MISMATCH = "OTP_MISMATCH"
    OTP_EXHAUSTED = "OTP_EXHAUSTED"
    OTP_EXPIRED = "OTP_EXPIRED"
    OTP_NOT_FOUND = "OTP_NOT_FOUND"
    OTP_DELIVERY_FAILED = "OTP_DELIVERY_FAILED"
    SUSPENDED_ACCESS = "SUSPENDED_ACCESS"
    AUTH_FAILURE = "AUTH_FAILURE"
    AUTHORIZATION_FAILURE = "AUTHORIZATION_FAILURE"
    ACCOUNT_CREATED = "ACCOUNT_CREATED"
    ACCOUNT_LINKED = "ACCOUNT_LINKED"
    ACCOUNT_REGISTERED = "ACCOUNT_REGISTERED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    PASSWORD_RESET = "PASSWORD_RESET"
    LOGOUT = "LOGOUT"
    ADMIN_ACTION = "ADMIN_ACTION"
    ACCOUNT_SUSPENDED = "ACCOUNT_SUSPENDED"
    ACCOUNT_REINSTATED = "ACCOUNT_REINSTATED"


class AuditOutcome(enum.StrEnum):
    """Outcome recorded with each event."""

    SUCCESS = "success"
    FAILURE = "failure"
    BLOCKED = "blocked"


def _key_words(key: str) -> list[str]:
    spaced = _CAMEL_BOUNDARY.sub(" ", key)
    return [w.lower() for w in _WORD_SEPARATOR.split(spaced) if w]


def is_sensitive_key(key: str) -> bool:
    """Whether a payload key names a secret.

    Keys are split into words on snake_case, kebab-case, and camelCase
    boundaries. "resetToken", "card_number", and "API-Key" all match;
    "pinned" and "tokenizer" do not.
    """
    words = _key_words(key)
    if any(w in _SENSITIVE_WORDS for w in words):
        return True
    return any(pair in _SENSITIVE_PAIRS for pair in zip(words, words[1:], strict=False))


def redact(value: Any) -> Any:
    """Return a copy of value with sensitive keys masked at every depth."""
    if isinstance(value, dict):
        return {
            k: REDACTED if is_sensitive_key(str(k)) else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list | tuple):
        return [redact(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, uuid.UUID | enum.Enum):
        return str(value)
    return value


class AuditLog:
    """Writes and queries audit entries.

    Args:
        session_factory: Factory for dedicated audit sessions.
        clock: Time source (UTC).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def record(
        self,
        event_kind: AuditEventKind,
        *,
        outcome: AuditOutcome = AuditOutcome.SUCCESS,
        account_id: uuid.UUID | None = None,
        email: str | None = None,
        identifier: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Append one entry and commit it.

        Returns:
            The stored entry.
        """
        occurred_at = as_utc(self._clock())
        entry = AuditEntry(
            id=uuid.uuid4(),
            occurred_at=occurred_at,
            occurred_on=occurred_at.date(),
            event_kind=str(event_kind),
            outcome=str(outcome),
            account_id=account_id,
            email=email,
            identifier=identifier,
            ip_address=ip_address,
            user_agent=user_agent,
            payload=redact(payload or {}),
        )
        async with self._session_factory() as db:
            await AuditRepository.add(db, entry)
            await db.commit()

        logger.info(
            "audit_event",
            event_kind=entry.event_kind,
            outcome=entry.outcome,
            account_id=str(account_id) if account_id else None,
            ip_address=ip_address,
            payload=entry.payload,
        )
        return entry

    async def query(
        self,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        event_kind: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[AuditEntry], int]:
        """Entries newest first, with the total count for pagination."""
        async with self._session_factory() as db:
            return await AuditRepository.query(
                db,
                start=start,
                end=end,
                event_kind=event_kind,
                limit=limit,
                offset=offset,
            )
