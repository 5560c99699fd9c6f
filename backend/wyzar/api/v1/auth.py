"""Credential authentication endpoints.

register, login, logout, me, change-password, reset-password.

Security considerations:
- login: lockout gate before the password check, DUMMY_HASH comparison for
  unknown identifiers, identical 401 for unknown identifier and wrong password
- change-password / reset-password: revoke every server session and every
  outstanding legacy token
- reset-password: grant is single-use (rejected once a newer cutoff exists)
"""

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy.exc import IntegrityError

from wyzar.api.deps import (
    Audit,
    CurrentAccount,
    DbSession,
    Guard,
    OptionalAccount,
    client_details,
)
from wyzar.core.auth import (
    clear_session_cookie,
    decode_reset_grant,
    hash_password,
    hash_token,
    set_session_cookie,
    validate_password_strength,
    verify_password,
)
from wyzar.core.clock import as_utc
from wyzar.core.config import settings
from wyzar.core.errors import (
    AccountLockedError,
    AccountSuspendedError,
    ConflictError,
    InvalidCredentialsError,
    SessionInvalidError,
    UnauthorizedError,
)
from wyzar.core.rate_limiting import limiter
from wyzar.core.responses import DataResponse
from wyzar.core.sms import normalize_identifier
from wyzar.models.account import Account
from wyzar.repositories.account_repository import AccountRepository
from wyzar.repositories.session_repository import SessionRepository
from wyzar.schemas.account import AccountResponse, SessionResponse
from wyzar.services.audit_log import AuditEventKind, AuditOutcome
from wyzar.services.session_issuer import (
    IssuedSession,
    revoke_all_sessions,
    start_session,
)
from wyzar.services.session_resolver import RequestCredentials

router = APIRouter()


# ===================================================================
# Request models
# ===================================================================


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    phone: str | None = Field(None, min_length=5, max_length=32)
    role: str = Field("buyer", pattern="^(buyer|seller)$")


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    model_config = ConfigDict(extra="forbid")

    identifier: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /auth/change-password."""

    model_config = ConfigDict(extra="forbid")

    current_password: str | None = Field(None, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /auth/reset-password."""

    model_config = ConfigDict(extra="forbid")

    reset_token: str = Field(min_length=1, max_length=2048)
    new_password: str = Field(min_length=1, max_length=128)


def session_response(
    response: Response, account: Account, issued: IssuedSession
) -> SessionResponse:
    """Set the session cookie and build the response body."""
    set_session_cookie(response, issued.token)
    return SessionResponse(
        account=AccountResponse.from_account(account),
        session_token=issued.token,
        expires_at=issued.expires_at,
        legacy_token=issued.legacy_token,
    )


# ===================================================================
# POST /auth/register
# ===================================================================


@router.post("/register", status_code=201)
@limiter.limit(lambda: settings.rate_limit_register)
async def register(
    request: Request,
    body: RegisterRequest,
    response: Response,
    db: DbSession,
    audit_log: Audit,
) -> DataResponse[SessionResponse]:
    """Create a buyer or seller account and sign it in.

    Rate limit: RATE_LIMIT_REGISTER per IP.
    """
    validate_password_strength(body.password)
    password_hash = hash_password(body.password)

    try:
        account = await AccountRepository.create(
            db,
            email=body.email,
            password_hash=password_hash,
            phone=body.phone.strip() if body.phone else None,
            role=body.role,
        )
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(
            code="EMAIL_ALREADY_EXISTS",
            message="Email or phone already registered",
        ) from exc

    ip_address, user_agent = client_details(request)
    issued = await start_session(
        db, account, ip_address=ip_address, user_agent=user_agent
    )
    await db.commit()

    await audit_log.record(
        AuditEventKind.ACCOUNT_REGISTERED,
        account_id=account.id,
        email=account.email,
        ip_address=ip_address,
        user_agent=user_agent,
        payload={"role": account.role},
    )
    return DataResponse(data=session_response(response, account, issued))


# ===================================================================
# POST /auth/login
# ===================================================================


@router.post("/login")
@limiter.limit(lambda: settings.rate_limit_login)
async def login(
    request: Request,
    body: LoginRequest,
    response: Response,
    db: DbSession,
    guard: Guard,
    audit_log: Audit,
) -> DataResponse[SessionResponse]:
    """Sign in with email or phone plus password.

    Order: lockout gate -> password check -> suspension check -> session.
    The lockout and credential responses never reveal whether the
    identifier exists.

    Rate limit: RATE_LIMIT_LOGIN per IP.
    """
    identifier = normalize_identifier(body.identifier)
    ip_address, user_agent = client_details(request)

    status = await guard.lock_status(identifier)
    if status is not None:
        await audit_log.record(
            AuditEventKind.LOGIN_BLOCKED,
            outcome=AuditOutcome.BLOCKED,
            identifier=identifier,
            ip_address=ip_address,
            user_agent=user_agent,
            payload={"unlock_at": status.unlock_at},
        )
        raise AccountLockedError(status.unlock_at, guard.now())

    account = await AccountRepository.get_by_identifier(db, identifier)

    # Security: always runs bcrypt, against DUMMY_HASH when account is None
    password_ok = verify_password(
        body.password, account.password_hash if account else None
    )
    if account is None or not password_ok:
        outcome = await guard.record_failed_attempt(identifier)
        await audit_log.record(
            AuditEventKind.LOGIN_FAILURE,
            outcome=AuditOutcome.FAILURE,
            account_id=account.id if account else None,
            identifier=identifier,
            ip_address=ip_address,
            user_agent=user_agent,
            payload={"attempts_left": outcome.attempts_left},
        )
        if outcome.locked and outcome.unlock_at is not None:
            if outcome.newly_locked:
                await audit_log.record(
                    AuditEventKind.ACCOUNT_LOCKED,
                    outcome=AuditOutcome.BLOCKED,
                    account_id=account.id if account else None,
                    identifier=identifier,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    payload={"unlock_at": outcome.unlock_at},
                )
            raise AccountLockedError(outcome.unlock_at, guard.now())
        raise InvalidCredentialsError(outcome.attempts_left)

    await guard.clear_attempts(identifier)

    if account.is_suspended:
        await audit_log.record(
            AuditEventKind.SUSPENDED_ACCESS,
            outcome=AuditOutcome.BLOCKED,
            account_id=account.id,
            email=account.email,
            ip_address=ip_address,
            user_agent=user_agent,
            payload={"source": "password"},
        )
        raise AccountSuspendedError(account.suspension_reason)

    issued = await start_session(
        db, account, ip_address=ip_address, user_agent=user_agent
    )
    await audit_log.record(
        AuditEventKind.LOGIN_SUCCESS,
        account_id=account.id,
        email=account.email,
        identifier=identifier,
        ip_address=ip_address,
        user_agent=user_agent,
        payload={"method": "password"},
    )
    return DataResponse(data=session_response(response, account, issued))


# ===================================================================
# POST /auth/logout
# ===================================================================


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    db: DbSession,
    account: OptionalAccount,
    audit_log: Audit,
) -> DataResponse[dict]:
    """Delete the presented server session (cookie or Bearer) and clear the cookie.

    Always succeeds, so a stale cookie can still be cleared.
    """
    token = RequestCredentials.from_request(request).session_token
    if token:
        await SessionRepository.delete_by_token_hash(db, hash_token(token))
    clear_session_cookie(response)

    if account is not None:
        ip_address, user_agent = client_details(request)
        await audit_log.record(
            AuditEventKind.LOGOUT,
            account_id=account.id,
            email=account.email,
            ip_address=ip_address,
            user_agent=user_agent,
        )
    return DataResponse(data={"message": "Logged out"})


# ===================================================================
# GET /auth/me
# ===================================================================


@router.get("/me")
async def me(account: CurrentAccount) -> DataResponse[AccountResponse]:
    """Return the signed-in account."""
    return DataResponse(data=AccountResponse.from_account(account))


# ===================================================================
# POST /auth/change-password
# ===================================================================


@router.post("/change-password")
async def change_password(
    request: Request,
    body: ChangePasswordRequest,
    response: Response,
    db: DbSession,
    account: CurrentAccount,
    audit_log: Audit,
) -> DataResponse[SessionResponse]:
    """Change the password and sign out everywhere else.

    Accounts created through federation have no password yet; they may
    set one without supplying current_password.
    """
    if account.password_hash is not None:
        if not body.current_password or not verify_password(
            body.current_password, account.password_hash
        ):
            raise UnauthorizedError("Current password is incorrect")

    validate_password_strength(body.new_password)
    await AccountRepository.update(
        db, account.id, password_hash=hash_password(body.new_password)
    )
    revoked = await revoke_all_sessions(db, account)

    ip_address, user_agent = client_details(request)
    issued = await start_session(
        db, account, ip_address=ip_address, user_agent=user_agent
    )
    await audit_log.record(
        AuditEventKind.PASSWORD_CHANGED,
        account_id=account.id,
        email=account.email,
        ip_address=ip_address,
        user_agent=user_agent,
        payload={"sessions_revoked": revoked},
    )
    return DataResponse(data=session_response(response, account, issued))


# ===================================================================
# POST /auth/reset-password
# ===================================================================


@router.post("/reset-password")
@limiter.limit(lambda: settings.rate_limit_otp)
async def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    response: Response,
    db: DbSession,
    guard: Guard,
    audit_log: Audit,
) -> DataResponse[dict]:
    """Set a new password using the grant from a verified reset passcode.

    Revokes every session and clears any lockout on the account's
    identifiers. The caller signs in afterwards.
    """
    account_id, issued_at = decode_reset_grant(body.reset_token)
    account = await AccountRepository.get_by_id(db, account_id)
    if account is None:
        raise SessionInvalidError()

    # Single use: the first reset moves the cutoff past issued_at. Both are
    # microsecond-precise, so a grant minted after an unrelated revocation in
    # the same second is still accepted.
    cutoff = account.token_invalidated_before
    if cutoff is not None and issued_at <= as_utc(cutoff):
        raise SessionInvalidError("Reset token already used")

    validate_password_strength(body.new_password)
    await AccountRepository.update(
        db, account.id, password_hash=hash_password(body.new_password)
    )
    revoked = await revoke_all_sessions(db, account)
    clear_session_cookie(response)

    for identifier in (account.email, account.phone):
        if identifier:
            await guard.manual_unlock(identifier)

    ip_address, user_agent = client_details(request)
    await audit_log.record(
        AuditEventKind.PASSWORD_RESET,
        account_id=account.id,
        email=account.email,
        ip_address=ip_address,
        user_agent=user_agent,
        payload={"sessions_revoked": revoked},
    )
    return DataResponse(data={"message": "Password has been reset"})
