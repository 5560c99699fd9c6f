"""Session model - server-managed session records.

The opaque session token is handed to the client once; only its SHA-256
hash is stored.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wyzar.models.base import Base

if TYPE_CHECKING:
    from wyzar.models.account import Account


class Session(Base):
    """Active server session.

    Attributes:
        id: UUID primary key.
        token_hash: SHA-256 hash of the session token (unique).
        account_id: FK to accounts table.
        expires_at: Session expiry timestamp.
        ip_address: Client IP at creation.
        user_agent: Client user agent at creation.
        created_at: Record creation timestamp.
    """

    __tablename__ = "sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    token_hash: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    # Relationships
    account: Mapped["Account"] = relationship("Account", back_populates="sessions")
