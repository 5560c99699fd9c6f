"""Multi-source session resolution.

Turns the credentials on a request into at most one Account. Sources are
tried in a fixed order and the first success wins:

1. Legacy token: self-issued HS256 JWT (``x-auth-token`` header, else Bearer)
2. Server session: opaque token (session cookie, else Bearer)
3. Federation: identity-provider token (``x-identity-token`` header, else
   Bearer), resolved to a local Account by account linking. A Bearer value
   that is one of our own tokens is never sent to the identity provider.

Nothing presented -> ANONYMOUS. Something presented but rejected -> FAILED,
without saying which source rejected it. A suspended account turns any
success into FAILED with reason SUSPENDED.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from wyzar.core.account_linking import (
    AccountLinkingBlockedError,
    LinkOutcome,
    find_or_create_account_for_federation,
)
from wyzar.core.auth import decode_legacy_token, hash_token, is_self_issued_token
from wyzar.core.clock import Clock, as_utc, utc_now
from wyzar.core.config import settings
from wyzar.core.errors import (
    AuthenticationError,
    FederationTokenInvalidError,
    SessionExpiredError,
    SessionInvalidError,
)
from wyzar.core.identity_provider import IdentityProvider
from wyzar.models.account import Account
from wyzar.repositories.account_repository import AccountRepository
from wyzar.repositories.session_repository import SessionRepository
from wyzar.services.audit_log import AuditEventKind, AuditLog, AuditOutcome

logger = logging.getLogger(__name__)


class ResolutionSource(enum.StrEnum):
    """Where the resolved identity came from."""

    LEGACY_TOKEN = "legacy_token"
    SERVER_SESSION = "server_session"
    FEDERATION = "federation"
    ANONYMOUS = "anonymous"
    FAILED = "failed"


class ResolutionFailure(enum.StrEnum):
    """Why resolution ended in FAILED."""

    INVALID_CREDENTIALS = "invalid_credentials"
    SUSPENDED = "suspended"


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one request.

    Attributes:
        source: Winning source, ANONYMOUS, or FAILED.
        account: Resolved account (only for the three success sources).
        reason: Failure reason when source is FAILED.
        suspension_reason: Admin-supplied reason when reason is SUSPENDED.
    """

    source: ResolutionSource
    account: Account | None = None
    reason: ResolutionFailure | None = None
    suspension_reason: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.account is not None


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


@dataclass(frozen=True)
class RequestCredentials:
    """Candidate tokens and client details extracted from a request."""

    legacy_token: str | None = None
    session_token: str | None = None
    federation_token: str | None = None
    bearer_token: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestCredentials":
        """Collect candidates; a Bearer token backs up every dedicated header."""
        bearer = _bearer_token(request)
        return cls(
            legacy_token=request.headers.get(settings.legacy_token_header) or bearer,
            session_token=request.cookies.get(settings.session_cookie_name) or bearer,
            federation_token=request.headers.get(settings.federation_token_header),
            bearer_token=bearer,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )

    @property
    def presented(self) -> bool:
        return any(
            (
                self.legacy_token,
                self.session_token,
                self.federation_token,
                self.bearer_token,
            )
        )


class SessionResolver:
    """Ordered resolver over the three credential sources.

    Args:
        identity_provider: Verifier for federation tokens.
        audit_log: Audit sink for suspended access and linking events.
        clock: Time source (UTC).
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        audit_log: AuditLog,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._identity_provider = identity_provider
        self._audit_log = audit_log
        self._clock = clock

    async def resolve(
        self, db: AsyncSession, credentials: RequestCredentials
    ) -> Resolution:
        """Resolve credentials to an account.

        Args:
            db: Request database session.
            credentials: Candidates from RequestCredentials.from_request().

        Returns:
            Resolution; never raises for bad credentials.
        """
        if not credentials.presented:
            return Resolution(source=ResolutionSource.ANONYMOUS)

        attempts = (
            (
                ResolutionSource.LEGACY_TOKEN,
                credentials.legacy_token,
                self._from_legacy_token,
            ),
            (
                ResolutionSource.SERVER_SESSION,
                credentials.session_token,
                self._from_session,
            ),
            (
                ResolutionSource.FEDERATION,
                credentials.federation_token or credentials.bearer_token,
                self._from_federation,
            ),
        )
        for source, token, attempt in attempts:
            if not token:
                continue
            try:
                account = await attempt(db, token, credentials)
            except AuthenticationError as exc:
                logger.debug(
                    "Credential source rejected",
                    extra={"source": str(source), "code": exc.code},
                )
                continue
            except AccountLinkingBlockedError:
                await self._audit_log.record(
                    AuditEventKind.AUTH_FAILURE,
                    outcome=AuditOutcome.BLOCKED,
                    ip_address=credentials.ip_address,
                    user_agent=credentials.user_agent,
                    payload={"source": str(source), "reason": "linking_blocked"},
                )
                continue

            if account.is_suspended:
                await self._audit_log.record(
                    AuditEventKind.SUSPENDED_ACCESS,
                    outcome=AuditOutcome.BLOCKED,
                    account_id=account.id,
                    email=account.email,
                    ip_address=credentials.ip_address,
                    user_agent=credentials.user_agent,
                    payload={"source": str(source)},
                )
                return Resolution(
                    source=ResolutionSource.FAILED,
                    reason=ResolutionFailure.SUSPENDED,
                    suspension_reason=account.suspension_reason,
                )
            return Resolution(source=source, account=account)

        return Resolution(
            source=ResolutionSource.FAILED,
            reason=ResolutionFailure.INVALID_CREDENTIALS,
        )

    async def _from_legacy_token(
        self, db: AsyncSession, token: str, _credentials: RequestCredentials
    ) -> Account:
        account_id, issued_at = decode_legacy_token(token)
        account = await AccountRepository.get_by_id(db, account_id)
        if account is None:
            raise SessionInvalidError()
        # Revocation: tokens issued before the cutoff second are dead. iat has
        # one-second resolution, so compare against the truncated cutoff.
        cutoff = account.token_invalidated_before
        if cutoff is not None and issued_at < as_utc(cutoff).replace(microsecond=0):
            raise SessionInvalidError("Token revoked")
        return account

    async def _from_session(
        self, db: AsyncSession, token: str, _credentials: RequestCredentials
    ) -> Account:
        session = await SessionRepository.get_by_token_hash(db, hash_token(token))
        if session is None:
            raise SessionInvalidError()
        if as_utc(session.expires_at) <= self._clock():
            raise SessionExpiredError()
        account = await AccountRepository.get_by_id(db, session.account_id)
        if account is None:
            raise SessionInvalidError()
        return account

    async def _from_federation(
        self, db: AsyncSession, token: str, credentials: RequestCredentials
    ) -> Account:
        if token != credentials.federation_token and await self._is_own_token(
            db, token
        ):
            raise FederationTokenInvalidError()
        identity = await self._identity_provider.verify(token)
        account, outcome = await find_or_create_account_for_federation(
            db=db, identity=identity
        )
        if outcome is not LinkOutcome.EXISTING:
            kind = (
                AuditEventKind.ACCOUNT_LINKED
                if outcome is LinkOutcome.LINKED
                else AuditEventKind.ACCOUNT_CREATED
            )
            await self._audit_log.record(
                kind,
                account_id=account.id,
                email=account.email,
                ip_address=credentials.ip_address,
                user_agent=credentials.user_agent,
                payload={"source": "federation"},
            )
        return account

    @staticmethod
    async def _is_own_token(db: AsyncSession, token: str) -> bool:
        """Signed with our key, or names a session row (expired rows included)."""
        if is_self_issued_token(token):
            return True
        session = await SessionRepository.get_by_token_hash(db, hash_token(token))
        return session is not None


def revocation_cutoff(now: datetime | None = None) -> datetime:
    """Cutoff for token_invalidated_before, kept to the microsecond.

    Reset grants are compared at full precision. Legacy tokens only carry a
    whole-second iat and are compared against the cutoff truncated to the
    second, so a token minted right after revocation stays valid.
    """
    return now or utc_now()
