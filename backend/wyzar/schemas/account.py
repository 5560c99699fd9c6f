"""Account and session response schemas."""

from datetime import datetime

from pydantic import BaseModel

from wyzar.models.account import Account


class AccountResponse(BaseModel):
    """Public view of an account. Never includes hashes or subject ids."""

    id: str
    email: str
    phone: str | None
    role: str
    email_verified: bool
    phone_verified: bool
    is_suspended: bool
    created_at: datetime

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        """Build from ORM row."""
        return cls(
            id=str(account.id),
            email=account.email,
            phone=account.phone,
            role=account.role,
            email_verified=account.email_verified,
            phone_verified=account.phone_verified,
            is_suspended=account.is_suspended,
            created_at=account.created_at,
        )


class SessionResponse(BaseModel):
    """Returned whenever a session is minted (login, register, passcode login).

    The session token is also set as an httpOnly cookie; the body copy is
    for non-browser clients that send it as a Bearer token.
    """

    account: AccountResponse
    session_token: str
    expires_at: datetime
    legacy_token: str | None = None
