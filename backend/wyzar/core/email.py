"""Email sending via Resend API.

Simple HTTP POST to Resend for one-time passcode emails. Plain-text
format only.
"""

import logging

import httpx

from wyzar.core.config import OTPPurpose, settings
from wyzar.core.errors import DeliveryError

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"

_SUBJECTS: dict[str, str] = {
    "registration": "Verify Your WyZar Account",
    "login": "Your WyZar Sign-in Code",
    "password-reset": "Password Reset Request",
}


def _passcode_body(code: str, purpose: OTPPurpose, ttl_minutes: int) -> str:
    if purpose == "password-reset":
        return (
            f"Your WyZar password reset code is: {code}\n\n"
            f"This code expires in {ttl_minutes} minutes. "
            "If you didn't request this, you can safely ignore this email."
        )
    return (
        f"Your WyZar verification code is: {code}\n\n"
        f"This code will expire in {ttl_minutes} minutes. "
        "Do not share this code with anyone."
    )


async def send_passcode_email(*, to_email: str, code: str, purpose: OTPPurpose) -> None:
    """Send a one-time passcode email via Resend.

    Args:
        to_email: Recipient email address.
        code: Plain passcode.
        purpose: Passcode purpose (selects subject and wording).

    Raises:
        DeliveryError: If Resend rejects the request or cannot be reached.
    """
    ttl_minutes = max(1, settings.otp_ttl_seconds // 60)
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                _RESEND_API_URL,
                headers={
                    "Authorization": f"Bearer {settings.resend_api_key.get_secret_value()}",
                },
                json={
                    "from": settings.email_from,
                    "to": to_email,
                    "subject": _SUBJECTS[purpose],
                    "text": _passcode_body(code, purpose, ttl_minutes),
                },
                timeout=settings.delivery_timeout_seconds,
            )
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning(
            "Failed to send passcode email",
            extra={"purpose": purpose, "error_type": type(exc).__name__},
        )
        raise DeliveryError("email") from exc
