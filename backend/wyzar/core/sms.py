"""SMS sending via the Africa's Talking messaging API.

Form-encoded POST authenticated with the ``apiKey`` header. Phone numbers
are normalized to international format before sending.
"""

import logging
import re

import httpx

from wyzar.core.config import OTPPurpose, settings
from wyzar.core.errors import DeliveryError

logger = logging.getLogger(__name__)


def format_phone_number(phone: str) -> str:
    """Normalize a phone number to +<country><number>.

    0XXXXXXXXX and bare XXXXXXXXX get the configured country code;
    numbers already starting with "+" are kept. Spaces and dashes are
    stripped.
    """
    cleaned = re.sub(r"[\s-]", "", phone)
    if cleaned.startswith("+"):
        return cleaned
    if cleaned.startswith("0"):
        cleaned = cleaned[1:]
    return f"{settings.sms_default_country_code}{cleaned}"


def normalize_identifier(identifier: str) -> str:
    """Canonical form of an email or phone identifier.

    Emails are trimmed and lowercased. Anything without "@" is a phone
    number and goes through format_phone_number, so "0771234567" and
    "+263771234567" name the same handset.
    """
    cleaned = identifier.strip()
    if "@" in cleaned:
        return cleaned.lower()
    return format_phone_number(cleaned)


def _passcode_message(code: str, purpose: OTPPurpose, ttl_minutes: int) -> str:
    if purpose == "password-reset":
        return (
            f"Your WyZar password reset code is: {code}. This code expires in "
            f"{ttl_minutes} minutes. If you didn't request this, please ignore "
            "this message."
        )
    return (
        f"Your WyZar verification code is: {code}. This code will expire in "
        f"{ttl_minutes} minutes. Do not share this code with anyone."
    )


async def send_passcode_sms(*, to_phone: str, code: str, purpose: OTPPurpose) -> None:
    """Send a one-time passcode by SMS.

    Args:
        to_phone: Recipient phone number (any accepted local format).
        code: Plain passcode.
        purpose: Passcode purpose (selects wording).

    Raises:
        DeliveryError: If the gateway rejects the request or cannot be reached.
    """
    ttl_minutes = max(1, settings.otp_ttl_seconds // 60)
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                settings.sms_api_url,
                headers={
                    "apiKey": settings.sms_api_key.get_secret_value(),
                    "Accept": "application/json",
                },
                data={
                    "username": settings.sms_username,
                    "to": format_phone_number(to_phone),
                    "message": _passcode_message(code, purpose, ttl_minutes),
                    "from": settings.sms_sender_id,
                },
                timeout=settings.delivery_timeout_seconds,
            )
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning(
            "Failed to send passcode SMS",
            extra={"purpose": purpose, "error_type": type(exc).__name__},
        )
        raise DeliveryError("sms") from exc
