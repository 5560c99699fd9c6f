"""Admin API router.

Audit log review, lockout management, and account suspension.

All endpoints require the AdminAccount dependency. Every state-changing
action is audited with the acting admin's id.
"""

import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, Request

from wyzar.api.deps import AdminAccount, Audit, DbSession, Guard, client_details
from wyzar.core.errors import NotFoundError, ValidationError
from wyzar.core.pagination import PaginationParams, pagination_params
from wyzar.core.responses import DataResponse, ListResponse, PaginationMeta
from wyzar.repositories.account_repository import AccountRepository
from wyzar.schemas.account import AccountResponse
from wyzar.schemas.admin import (
    AuditEntryResponse,
    LockoutStatusResponse,
    SuspensionRequest,
    UnlockRequest,
)
from wyzar.services.audit_log import AuditEventKind
from wyzar.services.session_issuer import revoke_all_sessions

router = APIRouter()

# =============================================================================
# Shared types
# =============================================================================

StartDateFilter = Annotated[
    datetime | None,
    Query(description="Only entries at or after this time (ISO 8601)"),
]
EndDateFilter = Annotated[
    datetime | None,
    Query(description="Only entries at or before this time (ISO 8601)"),
]
EventTypeFilter = Annotated[
    str | None,
    Query(max_length=50, description="Filter by event kind (e.g. LOGIN_FAILURE)"),
]
AccountIdPath = Annotated[uuid.UUID, Path(description="Account id")]
Pagination = Annotated[PaginationParams, Depends(pagination_params)]


# =============================================================================
# Audit log
# =============================================================================


@router.get("/audit-logs")
async def list_audit_logs(
    admin: AdminAccount,
    audit_log: Audit,
    pagination: Pagination,
    start_date: StartDateFilter = None,
    end_date: EndDateFilter = None,
    event_type: EventTypeFilter = None,
) -> ListResponse[AuditEntryResponse]:
    """Audit entries, newest first."""
    if start_date and end_date and start_date > end_date:
        raise ValidationError("start_date must not be after end_date")

    entries, total = await audit_log.query(
        start=start_date,
        end=end_date,
        event_kind=event_type.upper() if event_type else None,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    return ListResponse(
        data=[AuditEntryResponse.from_entry(e) for e in entries],
        meta=PaginationMeta(
            total=total, page=pagination.page, per_page=pagination.per_page
        ),
    )


# =============================================================================
# Lockouts
# =============================================================================


@router.get("/lockouts")
async def list_lockouts(
    admin: AdminAccount,
    guard: Guard,
) -> DataResponse[list[LockoutStatusResponse]]:
    """Identifiers currently locked, soonest unlock first."""
    statuses = await guard.locked_identifiers()
    return DataResponse(data=[LockoutStatusResponse.from_status(s) for s in statuses])


@router.post("/lockouts/unlock")
async def unlock_identifier(
    request: Request,
    body: UnlockRequest,
    admin: AdminAccount,
    guard: Guard,
    audit_log: Audit,
) -> DataResponse[dict]:
    """Clear the lockout and failure history for an identifier."""
    removed = await guard.manual_unlock(body.identifier)
    ip_address, user_agent = client_details(request)
    await audit_log.record(
        AuditEventKind.ACCOUNT_UNLOCKED,
        account_id=admin.id,
        email=admin.email,
        identifier=body.identifier.strip(),
        ip_address=ip_address,
        user_agent=user_agent,
        payload={"performed_by": admin.id, "had_record": removed},
    )
    return DataResponse(data={"identifier": body.identifier.strip(), "unlocked": removed})


# =============================================================================
# Account suspension
# =============================================================================


@router.put("/accounts/{account_id}/suspension")
async def set_account_suspension(
    request: Request,
    account_id: AccountIdPath,
    body: SuspensionRequest,
    admin: AdminAccount,
    db: DbSession,
    audit_log: Audit,
) -> DataResponse[AccountResponse]:
    """Suspend or reinstate an account.

    Suspending revokes every session and legacy token; the resolver also
    refuses the account on every later request until reinstated.
    """
    if account_id == admin.id and body.suspended:
        raise ValidationError("Admins cannot suspend their own account")

    reason = body.reason.strip() if body.reason else None
    account = await AccountRepository.set_suspension(
        db, account_id, suspended=body.suspended, reason=reason
    )
    if account is None:
        raise NotFoundError("Account", str(account_id))

    revoked = await revoke_all_sessions(db, account) if body.suspended else 0

    ip_address, user_agent = client_details(request)
    await audit_log.record(
        AuditEventKind.ACCOUNT_SUSPENDED
        if body.suspended
        else AuditEventKind.ACCOUNT_REINSTATED,
        account_id=account.id,
        email=account.email,
        ip_address=ip_address,
        user_agent=user_agent,
        payload={
            "performed_by": admin.id,
            "reason": reason,
            "sessions_revoked": revoked,
        },
    )
    return DataResponse(data=AccountResponse.from_account(account))
