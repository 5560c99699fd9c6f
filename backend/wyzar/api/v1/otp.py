"""One-time passcode endpoints.

send: issue a passcode and deliver it by email or SMS.
verify: check a passcode and apply the purpose's side effect.

Security considerations:
- send: resend interval enforced per recipient + purpose; a password-reset
  or login request for an unknown recipient takes the same path and gets
  the same response, but nothing is delivered
- verify: attempt cap per issued code; the reset grant is short-lived and
  single-use
"""

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from wyzar.api.deps import Audit, DbSession, Guard, Passcodes, client_details
from wyzar.api.v1.auth import session_response
from wyzar.core.auth import create_reset_grant
from wyzar.core.config import OTPPurpose, settings
from wyzar.core.email import send_passcode_email
from wyzar.core.errors import (
    AccountSuspendedError,
    APIError,
    DeliveryError,
    OTPAttemptsExhaustedError,
    OTPExpiredError,
    OTPMismatchError,
    OTPNotFoundError,
    RateLimitedError,
    ServiceUnavailableError,
    UnauthorizedError,
)
from wyzar.core.rate_limiting import limiter
from wyzar.core.responses import DataResponse
from wyzar.core.sms import normalize_identifier, send_passcode_sms
from wyzar.models.account import Account
from wyzar.repositories.account_repository import AccountRepository
from wyzar.schemas.account import SessionResponse
from wyzar.services.audit_log import AuditEventKind, AuditOutcome
from wyzar.services.otp_manager import OTPFailureReason, OTPVerification
from wyzar.services.session_issuer import start_session

router = APIRouter()

# Purposes that only make sense for an existing account
_ACCOUNT_PURPOSES: frozenset[str] = frozenset({"login", "password-reset"})

_FAILURE_EVENTS: dict[OTPFailureReason, AuditEventKind] = {
    OTPFailureReason.NOT_FOUND: AuditEventKind.OTP_NOT_FOUND,
    OTPFailureReason.EXHAUSTED: AuditEventKind.OTP_EXHAUSTED,
    OTPFailureReason.EXPIRED: AuditEventKind.OTP_EXPIRED,
    OTPFailureReason.MISMATCH: AuditEventKind.OTP_MISMATCH,
}


# ===================================================================
# Request / response models
# ===================================================================


class SendOTPRequest(BaseModel):
    """Request body for POST /otp/send."""

    model_config = ConfigDict(extra="forbid")

    recipient: str = Field(min_length=3, max_length=255)
    purpose: OTPPurpose


class VerifyOTPRequest(BaseModel):
    """Request body for POST /otp/verify."""

    model_config = ConfigDict(extra="forbid")

    recipient: str = Field(min_length=3, max_length=255)
    code: str = Field(min_length=4, max_length=10, pattern=r"^\s*\d+\s*$")
    purpose: OTPPurpose


class SendOTPResponse(BaseModel):
    """Response for POST /otp/send. Identical whether or not anything was sent."""

    message: str
    expires_in_seconds: int
    resend_after_seconds: int


class VerifyOTPResponse(BaseModel):
    """Response for POST /otp/verify.

    Exactly one of session / reset_token is set for login / password-reset;
    neither for registration.
    """

    verified: bool
    purpose: str
    session: SessionResponse | None = None
    reset_token: str | None = None


def _is_email(recipient: str) -> bool:
    return "@" in recipient


def _failure_error(result: OTPVerification) -> APIError:
    if result.reason is OTPFailureReason.EXHAUSTED:
        return OTPAttemptsExhaustedError()
    if result.reason is OTPFailureReason.EXPIRED:
        return OTPExpiredError()
    if result.reason is OTPFailureReason.MISMATCH:
        return OTPMismatchError(result.attempts_left or 0)
    return OTPNotFoundError()


# ===================================================================
# POST /otp/send
# ===================================================================


@router.post("/send")
@limiter.limit(lambda: settings.rate_limit_otp)
async def send_otp(
    request: Request,
    body: SendOTPRequest,
    db: DbSession,
    passcodes: Passcodes,
    audit_log: Audit,
) -> DataResponse[SendOTPResponse]:
    """Issue a passcode and deliver it.

    Email recipients go through Resend, anything else is treated as a phone
    number and goes through the SMS gateway. A delivery failure revokes the
    code so the caller can retry immediately.

    Rate limit: RATE_LIMIT_OTP per IP, plus the per-recipient resend interval.
    """
    recipient = normalize_identifier(body.recipient)
    ip_address, user_agent = client_details(request)
    policy = passcodes.policy_for(body.purpose)

    permission = await passcodes.can_issue(recipient, body.purpose)
    if not permission.allowed:
        await audit_log.record(
            AuditEventKind.OTP_THROTTLED,
            outcome=AuditOutcome.BLOCKED,
            identifier=recipient,
            ip_address=ip_address,
            user_agent=user_agent,
            payload={"purpose": body.purpose, "wait_seconds": permission.wait_seconds},
        )
        raise RateLimitedError(
            permission.wait_seconds,
            f"Please wait {permission.wait_seconds} seconds before requesting "
            "a new passcode.",
        )

    deliver = True
    account: Account | None = None
    if body.purpose in _ACCOUNT_PURPOSES:
        account = await AccountRepository.get_by_identifier(db, recipient)
        deliver = account is not None

    # Issued even when not delivered so the resend interval behaves the same
    code = await passcodes.issue(recipient, body.purpose)
    channel = "email" if _is_email(recipient) else "sms"

    if deliver:
        try:
            if channel == "email":
                await send_passcode_email(
                    to_email=recipient, code=code, purpose=body.purpose
                )
            else:
                await send_passcode_sms(
                    to_phone=recipient, code=code, purpose=body.purpose
                )
        except DeliveryError as exc:
            await passcodes.revoke(recipient, body.purpose)
            await audit_log.record(
                AuditEventKind.OTP_DELIVERY_FAILED,
                outcome=AuditOutcome.FAILURE,
                account_id=account.id if account else None,
                identifier=recipient,
                ip_address=ip_address,
                user_agent=user_agent,
                payload={"purpose": body.purpose, "channel": exc.channel},
            )
            raise ServiceUnavailableError(
                "Could not deliver the passcode. Please try again."
            ) from exc

    await audit_log.record(
        AuditEventKind.OTP_ISSUED,
        account_id=account.id if account else None,
        identifier=recipient,
        ip_address=ip_address,
        user_agent=user_agent,
        payload={"purpose": body.purpose, "channel": channel, "delivered": deliver},
    )
    return DataResponse(
        data=SendOTPResponse(
            message="If the recipient is eligible, a passcode has been sent.",
            expires_in_seconds=policy.ttl_seconds,
            resend_after_seconds=policy.resend_interval_seconds,
        )
    )


# ===================================================================
# POST /otp/verify
# ===================================================================


@router.post("/verify")
@limiter.limit(lambda: settings.rate_limit_otp)
async def verify_otp(
    request: Request,
    body: VerifyOTPRequest,
    response: Response,
    db: DbSession,
    passcodes: Passcodes,
    guard: Guard,
    audit_log: Audit,
) -> DataResponse[VerifyOTPResponse]:
    """Verify a passcode and apply its purpose.

    - registration: marks the account's email or phone as verified
    - login: signs the account in (cookie + body)
    - password-reset: returns a short-lived reset grant for
      POST /auth/reset-password
    """
    recipient = normalize_identifier(body.recipient)
    ip_address, user_agent = client_details(request)

    result = await passcodes.verify(recipient, body.code, body.purpose)
    if not result.success:
        await audit_log.record(
            _FAILURE_EVENTS[result.reason or OTPFailureReason.NOT_FOUND],
            outcome=AuditOutcome.FAILURE,
            identifier=recipient,
            ip_address=ip_address,
            user_agent=user_agent,
            payload={"purpose": body.purpose, "attempts_left": result.attempts_left},
        )
        raise _failure_error(result)

    account = await AccountRepository.get_by_identifier(db, recipient)
    await audit_log.record(
        AuditEventKind.OTP_VERIFIED,
        account_id=account.id if account else None,
        identifier=recipient,
        ip_address=ip_address,
        user_agent=user_agent,
        payload={"purpose": body.purpose},
    )

    if body.purpose == "registration":
        if account is not None:
            field = "email_verified" if _is_email(recipient) else "phone_verified"
            await AccountRepository.update(db, account.id, **{field: True})
        return DataResponse(data=VerifyOTPResponse(verified=True, purpose=body.purpose))

    if account is None:
        raise UnauthorizedError("Invalid credentials")

    if body.purpose == "password-reset":
        return DataResponse(
            data=VerifyOTPResponse(
                verified=True,
                purpose=body.purpose,
                reset_token=create_reset_grant(account.id),
            )
        )

    # login
    if account.is_suspended:
        await audit_log.record(
            AuditEventKind.SUSPENDED_ACCESS,
            outcome=AuditOutcome.BLOCKED,
            account_id=account.id,
            email=account.email,
            ip_address=ip_address,
            user_agent=user_agent,
            payload={"source": "passcode"},
        )
        raise AccountSuspendedError(account.suspension_reason)

    await guard.clear_attempts(recipient)
    # Receiving the code proves control of the channel
    field = "email_verified" if _is_email(recipient) else "phone_verified"
    await AccountRepository.update(db, account.id, **{field: True})
    issued = await start_session(
        db, account, ip_address=ip_address, user_agent=user_agent
    )
    await audit_log.record(
        AuditEventKind.LOGIN_SUCCESS,
        account_id=account.id,
        email=account.email,
        identifier=recipient,
        ip_address=ip_address,
        user_agent=user_agent,
        payload={"method": "passcode"},
    )
    return DataResponse(
        data=VerifyOTPResponse(
            verified=True,
            purpose=body.purpose,
            session=session_response(response, account, issued),
        )
    )
