"""Server-session minting and revocation.

Used by register, password login, passcode login, and change-password.
Only the SHA-256 of the session token is stored; the plain token goes
to the client once (cookie + response body).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from wyzar.core.auth import create_legacy_token, generate_session_token
from wyzar.core.clock import utc_now
from wyzar.core.config import settings
from wyzar.models.account import Account
from wyzar.repositories.account_repository import AccountRepository
from wyzar.repositories.session_repository import SessionRepository
from wyzar.services.session_resolver import revocation_cutoff

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedSession:
    """A freshly minted session.

    Attributes:
        token: Plain session token (never stored).
        expires_at: Session expiry.
        legacy_token: Self-issued JWT when legacy issuance is enabled.
    """

    token: str
    expires_at: datetime
    legacy_token: str | None = None


async def start_session(
    db: AsyncSession,
    account: Account,
    *,
    ip_address: str | None,
    user_agent: str | None,
    now: datetime | None = None,
) -> IssuedSession:
    """Create a server session (and optionally a legacy token) for account."""
    now = now or utc_now()
    plain, token_hash = generate_session_token()
    expires_at = now + timedelta(seconds=settings.session_ttl_seconds)
    await SessionRepository.create(
        db,
        account_id=account.id,
        token_hash=token_hash,
        expires_at=expires_at,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    legacy = (
        create_legacy_token(account.id, now=now) if settings.issue_legacy_tokens else None
    )
    return IssuedSession(token=plain, expires_at=expires_at, legacy_token=legacy)


async def revoke_all_sessions(db: AsyncSession, account: Account) -> int:
    """Delete every server session and invalidate outstanding legacy tokens.

    Returns:
        Number of server sessions removed.
    """
    removed = await SessionRepository.delete_all_for_account(db, account.id)
    await AccountRepository.update(
        db, account.id, token_invalidated_before=revocation_cutoff()
    )
    logger.info(
        "Revoked sessions",
        extra={"account_id": str(account.id), "sessions_removed": removed},
    )
    return removed
