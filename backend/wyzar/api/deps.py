"""Shared dependencies for API endpoints.

Session resolution, role gating, and the keyed-store-backed services.

WHY DEPENDENCY INJECTION:
- Consistent auth across all endpoints
- Services are process-wide singletons (factory) but swappable per test
- Testable with app.dependency_overrides
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from wyzar.core.database import get_db
from wyzar.core.errors import (
    AccountSuspendedError,
    AdminRequiredError,
    UnauthorizedError,
)
from wyzar.models.account import Account
from wyzar.services import factory
from wyzar.services.audit_log import AuditEventKind, AuditLog, AuditOutcome
from wyzar.services.lockout_guard import LockoutGuard
from wyzar.services.otp_manager import OTPManager
from wyzar.services.session_resolver import (
    RequestCredentials,
    Resolution,
    ResolutionFailure,
    ResolutionSource,
    SessionResolver,
)

DbSession = Annotated[AsyncSession, Depends(get_db)]


def client_details(request: Request) -> tuple[str | None, str | None]:
    """(ip_address, user_agent) for audit entries and session records."""
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")


def get_lockout_guard() -> LockoutGuard:
    """Lockout guard singleton."""
    return factory.get_lockout_guard()


def get_otp_manager() -> OTPManager:
    """Passcode manager singleton."""
    return factory.get_otp_manager()


def get_audit_log() -> AuditLog:
    """Audit log singleton."""
    return factory.get_audit_log()


def get_session_resolver() -> SessionResolver:
    """Session resolver singleton."""
    return factory.get_session_resolver()


Guard = Annotated[LockoutGuard, Depends(get_lockout_guard)]
Passcodes = Annotated[OTPManager, Depends(get_otp_manager)]
Audit = Annotated[AuditLog, Depends(get_audit_log)]
Resolver = Annotated[SessionResolver, Depends(get_session_resolver)]


async def resolve_session(
    request: Request,
    db: DbSession,
    resolver: Resolver,
) -> Resolution:
    """Resolve the request's credentials.

    FastAPI caches dependencies per request, so require_session,
    optional_session, and require_admin share a single resolution.
    """
    return await resolver.resolve(db, RequestCredentials.from_request(request))


SessionResolution = Annotated[Resolution, Depends(resolve_session)]


async def require_session(
    request: Request,
    resolution: SessionResolution,
    audit_log: Audit,
) -> Account:
    """Require an authenticated, non-suspended account.

    Raises:
        AccountSuspendedError: 403 when the resolved account is suspended.
        UnauthorizedError: 401 for anything else. The message never says
            which credential failed or why.
    """
    if resolution.account is not None:
        return resolution.account

    if resolution.reason is ResolutionFailure.SUSPENDED:
        raise AccountSuspendedError(resolution.suspension_reason)

    if resolution.source is ResolutionSource.FAILED:
        ip_address, user_agent = client_details(request)
        await audit_log.record(
            AuditEventKind.AUTH_FAILURE,
            outcome=AuditOutcome.FAILURE,
            ip_address=ip_address,
            user_agent=user_agent,
            payload={"path": request.url.path},
        )
    raise UnauthorizedError()


async def optional_session(resolution: SessionResolution) -> Account | None:
    """Account if the request resolved to one, else None (never raises)."""
    return resolution.account


CurrentAccount = Annotated[Account, Depends(require_session)]
OptionalAccount = Annotated[Account | None, Depends(optional_session)]


async def require_admin(
    request: Request,
    account: CurrentAccount,
    audit_log: Audit,
) -> Account:
    """Require the admin role.

    Raises:
        AdminRequiredError: 403 for authenticated non-admins (audited).
    """
    if not account.is_admin:
        ip_address, user_agent = client_details(request)
        await audit_log.record(
            AuditEventKind.AUTHORIZATION_FAILURE,
            outcome=AuditOutcome.BLOCKED,
            account_id=account.id,
            email=account.email,
            ip_address=ip_address,
            user_agent=user_agent,
            payload={
                "path": request.url.path,
                "required_role": "admin",
                "role": account.role,
            },
        )
        raise AdminRequiredError()
    return account


AdminAccount = Annotated[Account, Depends(require_admin)]

