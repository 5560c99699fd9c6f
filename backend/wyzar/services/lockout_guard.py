"""Brute-force lockout guard for credential logins.

Counts failed login attempts per identifier in a sliding window and locks
the identifier once the count reaches the threshold. Records live in the
keyed state store under ``lockout:<identifier>``:

    {"attempts": [<ts>, ...]}                      # counting
    {"attempts": [], "locked_at": <ts>, "unlock_at": <ts>}   # locked

Attempts and lock state are mutually exclusive: locking clears attempts.
Every write is a compare-and-swap, so concurrent failures for one
identifier are all counted and a sweep never clobbers a fresh record.

The guard never raises for expected conditions. "Locked" and "unknown
identifier" look the same to the login route.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime

from wyzar.core.clock import Clock, from_timestamp, to_timestamp, utc_now
from wyzar.core.kv_store import (
    JsonRecord,
    KeyValueStore,
    atomic_update,
    decode_record,
    encode_record,
    read_record,
)
from wyzar.core.sms import normalize_identifier

logger = logging.getLogger(__name__)

KEY_PREFIX = "lockout:"

# Extra store TTL on top of the logical lifetime; the sweep removes
# inert records long before this matters.
_TTL_SLACK_SECONDS = 60


@dataclass(frozen=True)
class LockoutPolicy:
    """Lockout thresholds.

    Attributes:
        max_attempts: Failures within the window that trigger a lock.
        window_seconds: Sliding window for counting failures.
        lockout_seconds: How long a lock lasts.
    """

    max_attempts: int = 5
    window_seconds: int = 15 * 60
    lockout_seconds: int = 15 * 60


@dataclass(frozen=True)
class LockoutOutcome:
    """Result of recording a failed attempt.

    Attributes:
        locked: Identifier is locked after this call.
        attempts_left: Failures remaining before a lock (0 when locked).
        unlock_at: When the lock expires, if locked.
        newly_locked: This call crossed the threshold.
    """

    locked: bool
    attempts_left: int
    unlock_at: datetime | None = None
    newly_locked: bool = False


@dataclass(frozen=True)
class LockoutStatus:
    """Current lock on an identifier."""

    identifier: str
    locked_at: datetime | None
    unlock_at: datetime
    remaining_seconds: int


class LockoutGuard:
    """Per-identifier failed-login counter with temporary lock.

    Args:
        store: Keyed state store.
        policy: Thresholds.
        clock: Time source (UTC).
    """

    def __init__(
        self,
        store: KeyValueStore,
        policy: LockoutPolicy | None = None,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._policy = policy or LockoutPolicy()
        self._clock = clock

    @property
    def policy(self) -> LockoutPolicy:
        return self._policy

    def now(self) -> datetime:
        """Current time on the guard's clock (for retry-after math)."""
        return self._clock()

    @property
    def _ttl_seconds(self) -> int:
        return (
            max(self._policy.window_seconds, self._policy.lockout_seconds)
            + _TTL_SLACK_SECONDS
        )

    @staticmethod
    def _key(identifier: str) -> str:
        return f"{KEY_PREFIX}{normalize_identifier(identifier)}"

    def _prune(self, record: JsonRecord, now_ts: float) -> JsonRecord | None:
        """Drop an expired lock and out-of-window attempts; None if inert."""
        unlock_at = record.get("unlock_at")
        if unlock_at is not None:
            if now_ts < unlock_at:
                return record
            # Lock expired; attempts were cleared when it was set
            return None
        cutoff = now_ts - self._policy.window_seconds
        attempts = [ts for ts in record.get("attempts", []) if ts > cutoff]
        if not attempts:
            return None
        return {"attempts": attempts}

    async def record_failed_attempt(self, identifier: str) -> LockoutOutcome:
        """Count one failed login for an identifier.

        If already locked, nothing is added. Otherwise the attempt is
        appended, the window is pruned, and a lock is set when the count
        reaches max_attempts.

        Args:
            identifier: Email or phone as submitted.

        Returns:
            LockoutOutcome describing the state after this attempt.
        """
        now = self._clock()
        now_ts = to_timestamp(now)
        policy = self._policy

        def mutate(record: JsonRecord | None) -> tuple[JsonRecord | None, LockoutOutcome]:
            current = self._prune(record, now_ts) if record else None
            if current and "unlock_at" in current:
                return current, LockoutOutcome(
                    locked=True,
                    attempts_left=0,
                    unlock_at=from_timestamp(current["unlock_at"]),
                )

            attempts = [*(current or {}).get("attempts", []), now_ts]
            if len(attempts) >= policy.max_attempts:
                unlock_ts = now_ts + policy.lockout_seconds
                locked = {"attempts": [], "locked_at": now_ts, "unlock_at": unlock_ts}
                return locked, LockoutOutcome(
                    locked=True,
                    attempts_left=0,
                    unlock_at=from_timestamp(unlock_ts),
                    newly_locked=True,
                )
            return {"attempts": attempts}, LockoutOutcome(
                locked=False,
                attempts_left=policy.max_attempts - len(attempts),
            )

        outcome = await atomic_update(
            self._store, self._key(identifier), mutate, ttl_seconds=self._ttl_seconds
        )
        if outcome.newly_locked:
            logger.warning(
                "Identifier locked after repeated failures",
                extra={"unlock_at": str(outcome.unlock_at)},
            )
        return outcome

    async def is_locked(self, identifier: str) -> bool:
        """Whether the identifier is currently locked.

        An expired lock is deleted on the way (lazy expiry).
        """
        return await self.lock_status(identifier) is not None

    async def lock_status(self, identifier: str) -> LockoutStatus | None:
        """Current lock details, or None if not locked."""
        now = self._clock()
        now_ts = to_timestamp(now)
        key = self._key(identifier)

        def mutate(record: JsonRecord | None) -> tuple[JsonRecord | None, JsonRecord | None]:
            if record is None:
                return None, None
            pruned = self._prune(record, now_ts)
            # Only drop expired locks here; attempt pruning is the sweep's job
            if "unlock_at" in record and pruned is None:
                return None, None
            return record, pruned if pruned and "unlock_at" in pruned else None

        locked = await atomic_update(
            self._store, key, mutate, ttl_seconds=self._ttl_seconds
        )
        if locked is None:
            return None
        return self._status(normalize_identifier(identifier), locked, now_ts)

    @staticmethod
    def _status(identifier: str, record: JsonRecord, now_ts: float) -> LockoutStatus:
        unlock_ts = record["unlock_at"]
        locked_at = record.get("locked_at")
        return LockoutStatus(
            identifier=identifier,
            locked_at=from_timestamp(locked_at) if locked_at is not None else None,
            unlock_at=from_timestamp(unlock_ts),
            remaining_seconds=max(0, math.ceil(unlock_ts - now_ts)),
        )

    async def attempts_left(self, identifier: str) -> int:
        """Failures remaining before a lock (0 if locked)."""
        record = await read_record(self._store, self._key(identifier))
        pruned = self._prune(record, to_timestamp(self._clock())) if record else None
        if pruned is None:
            return self._policy.max_attempts
        if "unlock_at" in pruned:
            return 0
        return max(0, self._policy.max_attempts - len(pruned["attempts"]))

    async def clear_attempts(self, identifier: str) -> None:
        """Remove the whole record for an identifier, lock included.

        Called after a successful credential check. Failures that locked the
        identifier between the gate and the check are discarded too.
        """
        def mutate(_record: JsonRecord | None) -> tuple[None, None]:
            return None, None

        await atomic_update(self._store, self._key(identifier), mutate)

    async def manual_unlock(self, identifier: str) -> bool:
        """Administratively remove any lock and attempts.

        Returns:
            True if a record existed and was removed.
        """
        def mutate(record: JsonRecord | None) -> tuple[None, bool]:
            return None, record is not None

        removed = await atomic_update(self._store, self._key(identifier), mutate)
        if removed:
            logger.info("Lockout manually cleared")
        return removed

    async def locked_identifiers(self) -> list[LockoutStatus]:
        """All identifiers currently locked, soonest unlock first."""
        now_ts = to_timestamp(self._clock())
        statuses: list[LockoutStatus] = []
        for key in await self._store.keys(KEY_PREFIX):
            record = await read_record(self._store, key)
            if record is None or record.get("unlock_at") is None:
                continue
            if now_ts >= record["unlock_at"]:
                continue
            statuses.append(self._status(key.removeprefix(KEY_PREFIX), record, now_ts))
        statuses.sort(key=lambda s: s.unlock_at)
        return statuses

    async def sweep(self) -> int:
        """Delete expired locks, prune stale attempts, drop empty records.

        Each key gets one compare-and-swap; a record changed underneath the
        sweep is skipped and left for the next pass.

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
            pruned = self._prune(record, now_ts)
            if pruned == record:
                continue
            new_raw = encode_record(pruned) if pruned is not None else None
            if await self._store.compare_and_swap(key, raw, new_raw, self._ttl_seconds):
                if pruned is None:
                    removed += 1
            else:
                logger.debug("Lockout sweep skipped a concurrently updated record")
        return removed

