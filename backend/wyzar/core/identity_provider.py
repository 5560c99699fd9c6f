"""Identity provider client for federated sign-in.

The provider is treated as an opaque verifier: a bearer token goes in,
a stable subject id and email come out. Verification calls the provider's
userinfo endpoint with a bounded timeout.
"""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from wyzar.core.errors import FederationTokenInvalidError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FederatedIdentity:
    """Identity asserted by the provider.

    Attributes:
        subject_id: Provider's stable user id.
        email: Email reported by the provider (lowercased).
        email_verified: Whether the provider vouches for the email.
    """

    subject_id: str
    email: str
    email_verified: bool


class IdentityProvider(Protocol):
    """Verifies federation tokens."""

    async def verify(self, token: str) -> FederatedIdentity:
        """Verify a token.

        Raises:
            FederationTokenInvalidError: Token rejected or provider unreachable.
        """
        ...


def parse_userinfo(payload: dict[str, Any]) -> FederatedIdentity:
    """Extract the identity fields from a userinfo response.

    ``email_verified`` defaults to True when the provider omits it, since
    providers that only return verified addresses often leave it out.

    Raises:
        FederationTokenInvalidError: If sub or email is missing.
    """
    subject_id = payload.get("sub")
    email = payload.get("email")
    if not isinstance(subject_id, str) or not subject_id:
        raise FederationTokenInvalidError()
    if not isinstance(email, str) or "@" not in email:
        raise FederationTokenInvalidError()
    verified = payload.get("email_verified", True)
    if isinstance(verified, str):
        verified = verified.lower() == "true"
    return FederatedIdentity(
        subject_id=subject_id,
        email=email.strip().lower(),
        email_verified=bool(verified),
    )


class HttpIdentityProvider:
    """Userinfo-endpoint verifier.

    Args:
        userinfo_url: Provider endpoint accepting ``Authorization: Bearer``.
        timeout_seconds: Total request timeout.
    """

    def __init__(self, userinfo_url: str, *, timeout_seconds: float) -> None:
        self._userinfo_url = userinfo_url
        self._timeout_seconds = timeout_seconds

    async def verify(self, token: str) -> FederatedIdentity:
        if not self._userinfo_url:
            # Federation not configured: every token is invalid
            raise FederationTokenInvalidError()

        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(
                    self._userinfo_url,
                    headers={"Authorization": f"Bearer {token}"},
                    timeout=self._timeout_seconds,
                )
                resp.raise_for_status()
                payload = resp.json()
        except httpx.HTTPError as exc:
            logger.info(
                "Identity provider rejected token",
                extra={"error_type": type(exc).__name__},
            )
            raise FederationTokenInvalidError() from exc
        except ValueError as exc:
            logger.warning("Identity provider returned non-JSON userinfo")
            raise FederationTokenInvalidError() from exc

        if not isinstance(payload, dict):
            raise FederationTokenInvalidError()
        return parse_userinfo(payload)
