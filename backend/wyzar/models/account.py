"""Account model - the durable identity record.

Email is the universal linking key: at most one Account per email. An
Account may hold both a password hash and a federation subject id once a
federation login resolves to an existing email ("linked" state).
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Literal

from sqlalchemy import Boolean, CheckConstraint, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wyzar.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from wyzar.models.session import Session

AccountRole = Literal["buyer", "seller", "admin"]

ROLES: tuple[str, ...] = ("buyer", "seller", "admin")


class Account(Base, TimestampMixin):
    """Marketplace account.

    Attributes:
        id: UUID primary key.
        email: Unique, lowercased email address.
        phone: Optional phone number, unique when present.
        password_hash: bcrypt hash. NULL for federation-only accounts.
        email_verified: Whether control of the email has been proven.
        phone_verified: Whether control of the phone has been proven.
        is_suspended: Suspended accounts fail every session resolution.
        suspension_reason: Admin-supplied reason, shown to the owner.
        role: "buyer", "seller", or "admin".
        federation_subject_id: Identity provider subject id, unique when set.
            Written once by account linking.
        token_invalidated_before: Legacy tokens issued before this are rejected.
        created_at: Account creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
    """

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint(
            "role IN ('buyer', 'seller', 'admin')", name="ck_accounts_role"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    phone: Mapped[str | None] = mapped_column(
        String(32),
        unique=True,
        nullable=True,
    )
    password_hash: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    email_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
        default=False,
    )
    phone_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
        default=False,
    )
    is_suspended: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
        default=False,
    )
    suspension_reason: Mapped[str | None] = mapped_column(
        Text(),
        nullable=True,
    )
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        server_default="buyer",
        default="buyer",
    )
    federation_subject_id: Mapped[str | None] = mapped_column(
        String(255),
        unique=True,
        nullable=True,
    )
    token_invalidated_before: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )

    # Relationships
    sessions: Mapped[list["Session"]] = relationship(
        "Session",
        back_populates="account",
        cascade="all, delete-orphan",
    )

    @property
    def is_admin(self) -> bool:
        """Whether the account holds the admin role."""
        return self.role == "admin"
