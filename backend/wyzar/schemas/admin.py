"""Admin API request/response schemas.

Audit log entries, lockout status, manual unlock, and account suspension.
All request schemas use ConfigDict(extra="forbid") to reject unexpected fields.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from wyzar.models.audit_entry import AuditEntry
from wyzar.services.lockout_guard import LockoutStatus


class AuditEntryResponse(BaseModel):
    """One audit entry (payload already redacted at write time)."""

    id: str
    occurred_at: datetime
    event_kind: str
    outcome: str
    account_id: str | None
    email: str | None
    identifier: str | None
    ip_address: str | None
    user_agent: str | None
    payload: dict[str, Any]

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryResponse":
        """Build from ORM row."""
        return cls(
            id=str(entry.id),
            occurred_at=entry.occurred_at,
            event_kind=entry.event_kind,
            outcome=entry.outcome,
            account_id=str(entry.account_id) if entry.account_id else None,
            email=entry.email,
            identifier=entry.identifier,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            payload=entry.payload or {},
        )


class LockoutStatusResponse(BaseModel):
    """Currently locked identifier."""

    identifier: str
    locked_at: datetime | None
    unlock_at: datetime
    remaining_seconds: int

    @classmethod
    def from_status(cls, status: LockoutStatus) -> "LockoutStatusResponse":
        """Build from guard status."""
        return cls(
            identifier=status.identifier,
            locked_at=status.locked_at,
            unlock_at=status.unlock_at,
            remaining_seconds=status.remaining_seconds,
        )


class UnlockRequest(BaseModel):
    """Request body for POST /admin/lockouts/unlock."""

    model_config = ConfigDict(extra="forbid")

    identifier: str = Field(min_length=1, max_length=255)


class SuspensionRequest(BaseModel):
    """Request body for PUT /admin/accounts/{account_id}/suspension."""

    model_config = ConfigDict(extra="forbid")

    suspended: bool
    reason: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def require_reason_when_suspending(self) -> "SuspensionRequest":
        """A suspension must say why; reinstatement needs no reason."""
        if self.suspended and not (self.reason and self.reason.strip()):
            msg = "reason is required when suspending an account"
            raise ValueError(msg)
        return self
