"""Create identity tables: accounts, sessions, audit_entries.

Revision ID: 001_identity_tables
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001_identity_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # pgcrypto provides gen_random_uuid() for UUID primary keys
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # Credential store. Email is the linking key; phone and federation
    # subject are unique when present.
    op.create_table(
        "accounts",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column(
            "email_verified", sa.Boolean(), nullable=False, server_default="false"
        ),
        sa.Column(
            "phone_verified", sa.Boolean(), nullable=False, server_default="false"
        ),
        sa.Column(
            "is_suspended", sa.Boolean(), nullable=False, server_default="false"
        ),
        sa.Column("suspension_reason", sa.Text(), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="buyer"),
        sa.Column("federation_subject_id", sa.String(255), nullable=True),
        sa.Column(
            "token_invalidated_before", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "role IN ('buyer', 'seller', 'admin')", name="ck_accounts_role"
        ),
        sa.UniqueConstraint("email", name="uq_accounts_email"),
        sa.UniqueConstraint("phone", name="uq_accounts_phone"),
        sa.UniqueConstraint(
            "federation_subject_id", name="uq_accounts_federation_subject_id"
        ),
    )

    # Server-managed sessions. Only the token hash is stored.
    op.create_table(
        "sessions",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column(
            "account_id",
            sa.UUID(),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("token_hash", name="uq_sessions_token_hash"),
    )
    op.create_index("ix_sessions_account_id", "sessions", ["account_id"])
    op.create_index("ix_sessions_expires_at", "sessions", ["expires_at"])

    # Append-only audit log. No foreign keys: entries outlive accounts.
    op.create_table(
        "audit_entries",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("occurred_on", sa.Date(), nullable=False),
        sa.Column("event_kind", sa.String(50), nullable=False),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("account_id", sa.UUID(), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("identifier", sa.String(255), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column(
            "payload", sa.JSON(), nullable=False, server_default=sa.text("'{}'")
        ),
    )
    op.create_index("ix_audit_entries_occurred_at", "audit_entries", ["occurred_at"])
    op.create_index("ix_audit_entries_occurred_on", "audit_entries", ["occurred_on"])
    op.create_index(
        "idx_audit_entries_kind_occurred_at",
        "audit_entries",
        ["event_kind", "occurred_at"],
    )


def downgrade() -> None:
    op.drop_table("audit_entries")
    op.drop_table("sessions")
    op.drop_table("accounts")
