"""Audit entry model - append-only security event log.

Rows are inserted once and never updated. No foreign keys: the log must
outlive the accounts it mentions. ``occurred_on`` is the day partition key.
"""

import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Date, DateTime, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from wyzar.models.base import Base


class AuditEntry(Base):
    """Immutable record of a security-relevant event.

    Attributes:
        id: UUID primary key.
        occurred_at: When the event happened (UTC).
        occurred_on: UTC calendar day of occurred_at.
        event_kind: Event kind (e.g., "LOGIN_FAILURE").
        outcome: "success", "failure", or "blocked".
        account_id: Account involved, when known.
        email: Email involved, when known.
        identifier: Login identifier or passcode recipient, when relevant.
        ip_address: Caller IP.
        user_agent: Caller user agent.
        payload: Redacted snapshot of event-specific fields.
    """

    __tablename__ = "audit_entries"
    __table_args__ = (
        Index("idx_audit_entries_kind_occurred_at", "event_kind", "occurred_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    occurred_on: Mapped[date] = mapped_column(Date(), nullable=False, index=True)
    event_kind: Mapped[str] = mapped_column(String(50), nullable=False)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    account_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    identifier: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text(), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
