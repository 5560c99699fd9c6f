"""Pydantic request/response schemas for API endpoints."""

from wyzar.schemas.account import AccountResponse, SessionResponse
from wyzar.schemas.admin import (
    AuditEntryResponse,
    LockoutStatusResponse,
    SuspensionRequest,
    UnlockRequest,
)

__all__ = [
    # Accounts and sessions
    "AccountResponse",
    "SessionResponse",
    # Admin
    "AuditEntryResponse",
    "LockoutStatusResponse",
    "SuspensionRequest",
    "UnlockRequest",
]
