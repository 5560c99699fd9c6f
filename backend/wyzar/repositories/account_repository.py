"""Repository for Account CRUD operations.

Provides database access for the accounts table (the credential store).
"""

import uuid
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wyzar.core.sms import format_phone_number
from wyzar.models.account import Account

# Fields that may be updated via AccountRepository.update().
# Security: Never add 'id', 'email', 'role', 'federation_subject_id', or
# the suspension columns.
# - email: unique identity and linking key
# - role: use set_role() for explicit promotion
# - federation_subject_id: written once by link_federation_subject()
# - is_suspended / suspension_reason: use set_suspension()
_UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {
        "phone",
        "password_hash",
        "email_verified",
        "phone_verified",
        "token_invalidated_before",
    }
)


class AccountRepository:
    """Stateless repository for Account table operations.

    All methods are static with no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, account_id: uuid.UUID) -> Account | None:
        """Fetch an account by primary key.

        Args:
            db: Async database session.
            account_id: UUID primary key.

        Returns:
            Account if found, None otherwise.
        """
        return await db.get(Account, account_id)

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> Account | None:
        """Fetch an account by email address (case-insensitive).

        Args:
            db: Async database session.
            email: Email address to look up.

        Returns:
            Account if found, None otherwise.
        """
        stmt = select(Account).where(Account.email == email.strip().lower())
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_phone(db: AsyncSession, phone: str) -> Account | None:
        """Fetch an account by phone number.

        Args:
            db: Async database session.
            phone: Phone number in any accepted format.

        Returns:
            Account if found, None otherwise.
        """
        stmt = select(Account).where(Account.phone == format_phone_number(phone))
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_identifier(db: AsyncSession, identifier: str) -> Account | None:
        """Fetch an account by login identifier (email or phone).

        Identifiers containing "@" are treated as email addresses.
        """
        if "@" in identifier:
            return await AccountRepository.get_by_email(db, identifier)
        return await AccountRepository.get_by_phone(db, identifier)

    @staticmethod
    async def get_by_federation_subject(
        db: AsyncSession, subject_id: str
    ) -> Account | None:
        """Fetch an account by identity provider subject id.

        Args:
            db: Async database session.
            subject_id: Stable external subject id.

        Returns:
            Account if found, None otherwise.
        """
        stmt = select(Account).where(Account.federation_subject_id == subject_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        email: str,
        password_hash: str | None = None,
        phone: str | None = None,
        role: str = "buyer",
        email_verified: bool = False,
        federation_subject_id: str | None = None,
    ) -> Account:
        """Create a new account.

        Email is normalized to lowercase before storage.

        Args:
            db: Async database session.
            email: Account email address.
            password_hash: bcrypt hash (None for federation-only accounts).
            phone: Optional phone number, stored as +<country><number>.
            role: "buyer" or "seller" (admins are promoted explicitly).
            email_verified: Whether the email is already proven.
            federation_subject_id: Identity provider subject id.

        Returns:
            Created Account with database-generated fields populated.

        Raises:
            sqlalchemy.exc.IntegrityError: If email, phone, or subject id
                already exists.
        """
        account = Account(
            email=email.strip().lower(),
            password_hash=password_hash,
            phone=format_phone_number(phone) if phone else None,
            role=role,
            email_verified=email_verified,
            federation_subject_id=federation_subject_id,
        )
        db.add(account)
        await db.flush()
        await db.refresh(account)
        return account

    @staticmethod
    async def update(
        db: AsyncSession,
        account_id: uuid.UUID,
        **kwargs: str | datetime | bool | None,
    ) -> Account | None:
        """Update account fields.

        Only fields in _UPDATABLE_FIELDS are allowed. Unknown field names
        raise ValueError.

        Args:
            db: Async database session.
            account_id: UUID of the account to update.
            **kwargs: Field names and values to update.

        Returns:
            Updated Account if found, None if account does not exist.

        Raises:
            ValueError: If an unknown field name is passed.
        """
        unknown = set(kwargs) - _UPDATABLE_FIELDS
        if unknown:
            msg = f"Unknown fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        account = await db.get(Account, account_id)
        if account is None:
            return None

        if isinstance(kwargs.get("phone"), str):
            kwargs["phone"] = format_phone_number(kwargs["phone"])

        for field, value in kwargs.items():
            setattr(account, field, value)

        await db.flush()
        await db.refresh(account)
        return account

    @staticmethod
    async def link_federation_subject(
        db: AsyncSession, account_id: uuid.UUID, subject_id: str
    ) -> bool:
        """Attach a federation subject id to an account that has none.

        Conditional update: only succeeds while the column is still NULL,
        so two concurrent first-sight logins cannot both write it.

        Args:
            db: Async database session.
            account_id: Account to link.
            subject_id: Identity provider subject id.

        Returns:
            True if this call performed the link, False otherwise.

        Raises:
            sqlalchemy.exc.IntegrityError: If another account already holds
                the subject id.
        """
        stmt = (
            update(Account)
            .where(
                Account.id == account_id,
                Account.federation_subject_id.is_(None),
            )
            .values(federation_subject_id=subject_id, email_verified=True)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        await db.flush()
        linked: bool = result.rowcount == 1  # type: ignore[attr-defined]
        return linked

    @staticmethod
    async def set_suspension(
        db: AsyncSession,
        account_id: uuid.UUID,
        *,
        suspended: bool,
        reason: str | None = None,
    ) -> Account | None:
        """Suspend or reinstate an account.

        Separated from update() so only the admin path can change it.

        Args:
            db: Async database session.
            account_id: UUID of the account.
            suspended: New suspension state.
            reason: Reason shown to the owner (cleared on reinstatement).

        Returns:
            Updated Account if found, None if account does not exist.
        """
        account = await db.get(Account, account_id)
        if account is None:
            return None
        account.is_suspended = suspended
        account.suspension_reason = reason if suspended else None
        await db.flush()
        await db.refresh(account)
        return account

    @staticmethod
    async def set_role(
        db: AsyncSession, account_id: uuid.UUID, *, role: str
    ) -> Account | None:
        """Set the role for an account.

        Separated from update() to prevent mass-assignment privilege
        escalation. Only call from explicit promotion paths.
        """
        account = await db.get(Account, account_id)
        if account is None:
            return None
        account.role = role
        await db.flush()
        await db.refresh(account)
        return account
