"""One-time passcode issuance and verification.

One record per (purpose, recipient) in the keyed state store under
``otp:<purpose>:<recipient>``:

    {"code_hash": ..., "created_at": <ts>, "expires_at": <ts>,
     "attempts": <int>, "verified": <bool>}

Issuing replaces the previous record, so an older code stops working the
moment a new one is issued. Only the SHA-256 of the code is stored; the
manager never transmits codes (callers deliver them).

Verification checks, in order: existence (missing or already verified),
attempt cap, expiry, match. Every call counts as an attempt, and the call
whose attempt number reaches the cap is refused even with the right code.
"""

import enum
import hmac
import logging
import math
import secrets
from dataclasses import dataclass

from wyzar.core.auth import hash_token
from wyzar.core.clock import Clock, to_timestamp, utc_now
from wyzar.core.config import OTPPurpose
from wyzar.core.kv_store import (
    JsonRecord,
    KeyValueStore,
    atomic_update,
    decode_record,
    read_record,
)
from wyzar.core.sms import normalize_identifier

logger = logging.getLogger(__name__)

KEY_PREFIX = "otp:"

# Keep records a little past expiry so late verifies report "expired"
_TTL_SLACK_SECONDS = 5 * 60


@dataclass(frozen=True)
class OTPPolicy:
    """Passcode rules for one purpose.

    Attributes:
        length: Number of digits.
        ttl_seconds: Lifetime of an issued code.
        resend_interval_seconds: Minimum gap between issuances.
        max_attempts: Verification calls allowed per issued code.
    """

    length: int = 6
    ttl_seconds: int = 10 * 60
    resend_interval_seconds: int = 60
    max_attempts: int = 5


@dataclass(frozen=True)
class IssuePermission:
    """Whether a new code may be issued now."""

    allowed: bool
    wait_seconds: int = 0


class OTPFailureReason(enum.StrEnum):
    """Why a verification did not succeed."""

    NOT_FOUND = "not_found"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"
    MISMATCH = "mismatch"


@dataclass(frozen=True)
class OTPVerification:
    """Result of a verify call.

    Attributes:
        success: Code matched and the record is now verified.
        message: Human-readable summary.
        reason: Failure reason, None on success.
        attempts_left: Further calls that will still be evaluated
            (mismatch only).
    """

    success: bool
    message: str
    reason: OTPFailureReason | None = None
    attempts_left: int | None = None


class OTPManager:
    """Issues and verifies one-time passcodes.

    Args:
        store: Keyed state store.
        default_policy: Policy for purposes without an override.
        policies: Per-purpose overrides.
        clock: Time source (UTC).
    """

    def __init__(
        self,
        store: KeyValueStore,
        default_policy: OTPPolicy | None = None,
        *,
        policies: dict[str, OTPPolicy] | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._default_policy = default_policy or OTPPolicy()
        self._policies = policies or {}
        self._clock = clock

    def policy_for(self, purpose: OTPPurpose) -> OTPPolicy:
        """Effective policy for a purpose."""
        return self._policies.get(purpose, self._default_policy)

    @staticmethod
    def _key(recipient: str, purpose: OTPPurpose) -> str:
        return f"{KEY_PREFIX}{purpose}:{normalize_identifier(recipient)}"

    def _ttl(self, policy: OTPPolicy) -> int:
        return max(policy.ttl_seconds, policy.resend_interval_seconds) + _TTL_SLACK_SECONDS

    async def can_issue(self, recipient: str, purpose: OTPPurpose) -> IssuePermission:
        """Check the minimum resend interval for a recipient and purpose.

        The interval is measured from the latest issuance, verified or not.
        """
        policy = self.policy_for(purpose)
        record = await read_record(self._store, self._key(recipient, purpose))
        if record is None:
            return IssuePermission(allowed=True)
        elapsed = to_timestamp(self._clock()) - record["created_at"]
        if elapsed >= policy.resend_interval_seconds:
            return IssuePermission(allowed=True)
        wait = max(1, math.ceil(policy.resend_interval_seconds - elapsed))
        return IssuePermission(allowed=False, wait_seconds=wait)

    async def issue(self, recipient: str, purpose: OTPPurpose) -> str:
        """Create a fresh code, replacing any existing record for the pair.

        Returns:
            The plain code, for the caller to deliver.
        """
        policy = self.policy_for(purpose)
        code = str(secrets.randbelow(10**policy.length)).zfill(policy.length)
        now_ts = to_timestamp(self._clock())
        record = {
            "code_hash": hash_token(code),
            "created_at": now_ts,
            "expires_at": now_ts + policy.ttl_seconds,
            "attempts": 0,
            "verified": False,
        }

        def mutate(_current: JsonRecord | None) -> tuple[JsonRecord, None]:
            return record, None

        await atomic_update(
            self._store,
            self._key(recipient, purpose),
            mutate,
            ttl_seconds=self._ttl(policy),
        )
        logger.info("Passcode issued", extra={"purpose": purpose})
        return code

    async def verify(
        self, recipient: str, code: str, purpose: OTPPurpose
    ) -> OTPVerification:
        """Verify a submitted code.

        Returns:
            OTPVerification with the outcome. Never raises for a wrong,
            expired, or missing code.
        """
        policy = self.policy_for(purpose)
        now_ts = to_timestamp(self._clock())
        submitted_hash = hash_token(code.strip())

        def mutate(
            record: JsonRecord | None,
        ) -> tuple[JsonRecord | None, OTPVerification]:
            if record is None or record.get("verified"):
                return record, OTPVerification(
                    success=False,
                    message="No active passcode found",
                    reason=OTPFailureReason.NOT_FOUND,
                )

            attempts = record["attempts"] + 1
            if attempts >= policy.max_attempts:
                return {**record, "attempts": policy.max_attempts}, OTPVerification(
                    success=False,
                    message="Maximum verification attempts exceeded",
                    reason=OTPFailureReason.EXHAUSTED,
                )

            updated = {**record, "attempts": attempts}
            if now_ts >= record["expires_at"]:
                return updated, OTPVerification(
                    success=False,
                    message="Passcode has expired",
                    reason=OTPFailureReason.EXPIRED,
                )

            if hmac.compare_digest(record["code_hash"], submitted_hash):
                return {**updated, "verified": True}, OTPVerification(
                    success=True,
                    message="Passcode verified",
                )

            return updated, OTPVerification(
                success=False,
                message="Invalid passcode",
                reason=OTPFailureReason.MISMATCH,
                attempts_left=policy.max_attempts - attempts - 1,
            )

        result = await atomic_update(
            self._store,
            self._key(recipient, purpose),
            mutate,
            ttl_seconds=self._ttl(policy),
        )
        logger.info(
            "Passcode verification",
            extra={"purpose": purpose, "outcome": result.reason or "success"},
        )
        return result

    async def revoke(self, recipient: str, purpose: OTPPurpose) -> None:
        """Delete the record (e.g., delivery failed, so the caller may retry)."""
        await self._store.delete(self._key(recipient, purpose))

    async def cleanup_expired(self) -> int:
        """Delete expired and already-verified records.

        Returns:
            Number of records deleted.
        """
        now_ts = to_timestamp(self._clock())
        removed = 0
        for key in await self._store.keys(KEY_PREFIX):
            raw = await self._store.get(key)
            record = decode_record(raw)
            if record is None:
                continue
            if record.get("verified") or now_ts >= record["expires_at"]:
                if await self._store.compare_and_swap(key, raw, None):
                    removed += 1
        return removed
