"""SQLAlchemy ORM models for the WyZar identity layer.

All models are exported from this module for convenient imports:
    from wyzar.models import Account, Session, AuditEntry

Models:
- account.py: Account (credential store)
- session.py: Session (server-managed sessions)
- audit_entry.py: AuditEntry (append-only security log)
"""

from wyzar.models.account import ROLES, Account
from wyzar.models.audit_entry import AuditEntry
from wyzar.models.base import Base, TimestampMixin
from wyzar.models.session import Session

__all__ = [
    "ROLES",
    "Account",
    "AuditEntry",
    "Base",
    "Session",
    "TimestampMixin",
]
