"""Account linking for federated sign-in.

Resolves a verified provider identity to exactly one local Account.
Email is the universal linking key.

Rules:
1. If federation_subject_id already exists -> returning account (no linking)
2. If email exists, has no subject yet, and the provider verified the email
   -> link the subject to that account (same person)
3. If email exists but is linked to a different subject, or the provider
   did not verify the email -> REJECT (pre-hijack defense)
4. If no matching email -> create a verified, password-less account

Concurrency: the link is a conditional UPDATE and both email and
federation_subject_id carry unique constraints. A writer that loses the race
rolls back and re-reads, so two first-sight logins for the same identity
always end on the same Account.
"""

import enum
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wyzar.core.identity_provider import FederatedIdentity
from wyzar.models.account import Account
from wyzar.repositories.account_repository import AccountRepository

logger = logging.getLogger(__name__)

# One retry covers the only race left after a rollback: the winning row
# becomes visible between our lookup and our insert.
_MAX_LINK_ATTEMPTS = 2


class LinkOutcome(enum.StrEnum):
    """How a federated identity was matched to an Account."""

    EXISTING = "existing"
    LINKED = "linked"
    CREATED = "created"


class AccountLinkingBlockedError(Exception):
    """Raised when account linking is blocked by the linking rules.

    Pre-hijack defense: an account with the same email exists but is bound to
    another subject, or the provider does not vouch for the email, so
    linking is unsafe.
    """


async def find_or_create_account_for_federation(
    *,
    db: AsyncSession,
    identity: FederatedIdentity,
) -> tuple[Account, LinkOutcome]:
    """Find, link, or create the Account for a federated identity.

    Commits as soon as a link or creation succeeds so the row is visible to
    any concurrent resolver.

    Args:
        db: Async database session.
        identity: Identity returned by the provider.

    Returns:
        Tuple of (Account, LinkOutcome).

    Raises:
        AccountLinkingBlockedError: If linking rules refuse the identity.
    """
    for _ in range(_MAX_LINK_ATTEMPTS):
        try:
            return await _resolve_once(db, identity)
        except IntegrityError:
            # Another writer claimed the email or subject first
            await db.rollback()
            logger.info(
                "Account linking lost a concurrent write; re-reading",
                extra={"subject_id": identity.subject_id},
            )
            winner = await AccountRepository.get_by_federation_subject(
                db, identity.subject_id
            )
            if winner is not None:
                return winner, LinkOutcome.EXISTING

    # Email row exists but neither link nor create could complete
    logger.warning(
        "Account linking could not converge",
        extra={"subject_id": identity.subject_id},
    )
    msg = "Account linking could not be completed."
    raise AccountLinkingBlockedError(msg)


async def _resolve_once(
    db: AsyncSession, identity: FederatedIdentity
) -> tuple[Account, LinkOutcome]:
    # Step 1: Returning federated account
    account = await AccountRepository.get_by_federation_subject(db, identity.subject_id)
    if account is not None:
        return account, LinkOutcome.EXISTING

    # Step 2: Existing account with the same email
    account = await AccountRepository.get_by_email(db, identity.email)
    if account is not None:
        if account.federation_subject_id is not None or not identity.email_verified:
            logger.warning(
                "Federated account linking blocked",
                extra={
                    "account_id": str(account.id),
                    "provider_verified": identity.email_verified,
                    "already_linked": account.federation_subject_id is not None,
                },
            )
            msg = (
                "Account linking blocked. "
                "Please sign in with your original method first."
            )
            raise AccountLinkingBlockedError(msg)

        linked = await AccountRepository.link_federation_subject(
            db, account.id, identity.subject_id
        )
        await db.commit()
        await db.refresh(account)
        if linked:
            logger.info(
                "Linked federated identity to existing account",
                extra={"account_id": str(account.id)},
            )
            return account, LinkOutcome.LINKED

        # Conditional update matched nothing: someone linked first
        if account.federation_subject_id == identity.subject_id:
            return account, LinkOutcome.EXISTING
        msg = "Account is linked to a different identity."
        raise AccountLinkingBlockedError(msg)

    # Step 3: First sight of this email
    account = await AccountRepository.create(
        db,
        email=identity.email,
        email_verified=True,
        federation_subject_id=identity.subject_id,
    )
    await db.commit()
    logger.info(
        "Created account for federated identity",
        extra={"account_id": str(account.id)},
    )
    return account, LinkOutcome.CREATED
