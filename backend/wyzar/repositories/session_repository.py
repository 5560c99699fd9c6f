"""Repository for server Session operations.

Session tokens are stored as SHA-256 hashes; callers pass the hash, never
the plain token.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from wyzar.models.session import Session


class SessionRepository:
    """Stateless repository for Session table operations.

    All methods are static with no instance state.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        account_id: uuid.UUID,
        token_hash: str,
        expires_at: datetime,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Session:
        """Store a new session.

        Args:
            db: Async database session.
            account_id: Owning account.
            token_hash: SHA-256 hash of the plain session token.
            expires_at: Session expiry timestamp.
            ip_address: Client IP.
            user_agent: Client user agent.

        Returns:
            Created Session.
        """
        session = Session(
            account_id=account_id,
            token_hash=token_hash,
            expires_at=expires_at,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.add(session)
        await db.flush()
        return session

    @staticmethod
    async def get_by_token_hash(db: AsyncSession, token_hash: str) -> Session | None:
        """Look up a session by token hash.

        Returns:
            Session if found, None otherwise.
        """
        stmt = select(Session).where(Session.token_hash == token_hash)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def delete_by_token_hash(db: AsyncSession, token_hash: str) -> None:
        """Delete a single session (logout)."""
        stmt = delete(Session).where(Session.token_hash == token_hash)
        await db.execute(stmt)

    @staticmethod
    async def delete_all_for_account(db: AsyncSession, account_id: uuid.UUID) -> int:
        """Delete every session of an account (password change, suspension).

        Returns:
            Number of deleted rows.
        """
        stmt = delete(Session).where(Session.account_id == account_id)
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count

    @staticmethod
    async def delete_expired(db: AsyncSession, now: datetime | None = None) -> int:
        """Delete all expired sessions (periodic cleanup).

        Returns:
            Number of deleted rows.
        """
        stmt = delete(Session).where(Session.expires_at < (now or datetime.now(UTC)))
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
