"""Repository for AuditEntry operations.

Insert and read only: the audit log is append-only, so there is no update
or delete method here.
"""

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wyzar.models.audit_entry import AuditEntry


class AuditRepository:
    """Stateless repository for AuditEntry table operations."""

    @staticmethod
    async def add(db: AsyncSession, entry: AuditEntry) -> AuditEntry:
        """Insert an audit entry.

        Args:
            db: Async database session.
            entry: Fully populated entry.

        Returns:
            The inserted entry.
        """
        db.add(entry)
        await db.flush()
        return entry

    @staticmethod
    async def query(
        db: AsyncSession,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        event_kind: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[AuditEntry], int]:
        """List entries newest-first, filtered by any supplied bounds.

        Args:
            db: Async database session.
            start: Inclusive lower bound on occurred_at.
            end: Inclusive upper bound on occurred_at.
            event_kind: Exact event kind to match.
            limit: Page size.
            offset: Rows to skip.

        Returns:
            Tuple of (entries, total matching count).
        """
        conditions = []
        if start is not None:
            conditions.append(AuditEntry.occurred_at >= start)
        if end is not None:
            conditions.append(AuditEntry.occurred_at <= end)
        if event_kind is not None:
            conditions.append(AuditEntry.event_kind == event_kind)

        count_stmt = select(func.count()).select_from(AuditEntry).where(*conditions)
        total = (await db.execute(count_stmt)).scalar_one()

        stmt = (
            select(AuditEntry)
            .where(*conditions)
            .order_by(AuditEntry.occurred_at.desc(), AuditEntry.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all()), total
