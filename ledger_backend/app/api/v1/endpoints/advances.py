"""
Advance API Endpoints.

Issue, inspect and settle cash advances.
"""

from typing import Optional

from fastapi import APIRouter, Depends, status, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_backend.app.core.config import settings
from ledger_backend.app.core.dependencies import get_current_user
from ledger_backend.app.core.guards import require_role, LedgerAccessGuard, FINANCE_ROLES
from ledger_backend.app.db.session import get_db
from ledger_backend.app.models.ledger_enums import AdvanceStatus, AdvancePurpose
from ledger_backend.app.schemas.advance import (
    AdvanceIssueRequest, AdvanceActionRequest, AdvanceReturnRequest, AdvanceResponse,
    AdvanceListResponse, ExpireOverdueResponse
)
from ledger_backend.app.services.advance_tracker import AdvanceTracker

router = APIRouter(prefix="/advances", tags=["Advances"])
ledger_guard = LedgerAccessGuard()


@router.get("", response_model=AdvanceListResponse)
async def list_advances(
    employee_id: Optional[int] = Query(None),
    advance_status: Optional[AdvanceStatus] = Query(None, alias="status"),
    purpose: Optional[AdvancePurpose] = Query(None),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(
        settings.ledger_default_page_size, ge=1, le=settings.ledger_max_page_size,
        description="Items per page"
    ),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    List advances, newest first. Employees see only their own.
    """
    own_id = ledger_guard.filter_by_access(current_user)
    if own_id is not None:
        if employee_id is not None and employee_id != own_id:
            ledger_guard.enforce(employee_id, current_user, "advance")
        employee_id = own_id

    advances, total = await AdvanceTracker.list_advances(
        db, employee_id=employee_id, status=advance_status, purpose=purpose,
        page=page, page_size=page_size
    )
    return AdvanceListResponse(
        items=[AdvanceResponse.model_validate(v) for v in AdvanceTracker.views(advances)],
        total=total
    )


@router.get("/employee/{employee_id}", response_model=AdvanceListResponse)
async def get_employee_advances(
    employee_id: int = Path(..., description="Employee ID"),
    include_closed: bool = Query(True),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    ledger_guard.enforce(employee_id, current_user, "advance")
    advances = await AdvanceTracker.get_employee_advances(db, employee_id, include_closed)
    return AdvanceListResponse(
        items=[AdvanceResponse.model_validate(v) for v in AdvanceTracker.views(advances)],
        total=len(advances)
    )


@router.post("/issue", response_model=AdvanceResponse, status_code=status.HTTP_201_CREATED)
async def issue_advance(
    request: AdvanceIssueRequest,
    current_user: dict = Depends(require_role(FINANCE_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """
    Issue a cash advance. Creates the advance and its ledger CREDIT together.
    """
    advance = await AdvanceTracker.issue_advance(
        db, request.employee_id, request.amount, request.purpose,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        expires_at=request.expires_at,
        validity_days=request.validity_days,
        purpose_description=request.purpose_description,
        notes=request.notes,
    )
    return AdvanceResponse.model_validate(AdvanceTracker.view(advance))


@router.post("/expire-overdue", response_model=ExpireOverdueResponse)
async def expire_overdue_advances(
    current_user: dict = Depends(require_role(FINANCE_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """
    Mark every overdue advance that still has money left as EXPIRED.
    """
    expired = await AdvanceTracker.expire_overdue_advances(
        db, actor_id=current_user["user_id"], actor_username=current_user.get("sub")
    )
    return ExpireOverdueResponse(expired_count=len(expired), advance_ids=expired)


@router.get("/{advance_id}", response_model=AdvanceResponse)
async def get_advance(
    advance_id: int = Path(..., description="Advance ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    advance = await AdvanceTracker.get_advance(db, advance_id)
    ledger_guard.enforce(advance.employee_id, current_user, "advance")
    return AdvanceResponse.model_validate(AdvanceTracker.view(advance))


@router.post("/{advance_id}/return", response_model=AdvanceResponse)
async def return_advance(
    request: Optional[AdvanceReturnRequest] = None,
    advance_id: int = Path(..., description="Advance ID"),
    current_user: dict = Depends(require_role(FINANCE_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """
    Return unused advance cash as a CASH_RETURN.

    A full return posts the remaining balance and closes the advance. A
    partial return posts `return_amount` and leaves the advance open.
    """
    request = request or AdvanceReturnRequest()
    advance = await AdvanceTracker.return_advance(
        db, advance_id,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        notes=request.notes,
        return_type=request.return_type,
        return_amount=request.return_amount,
    )
    return AdvanceResponse.model_validate(AdvanceTracker.view(advance))


@router.post("/{advance_id}/close", response_model=AdvanceResponse)
async def close_advance(
    request: Optional[AdvanceActionRequest] = None,
    advance_id: int = Path(..., description="Advance ID"),
    current_user: dict = Depends(require_role(FINANCE_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """
    Close an advance. The ledger balance is not changed.
    """
    advance = await AdvanceTracker.close_advance(
        db, advance_id,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        notes=request.notes if request else None,
    )
    return AdvanceResponse.model_validate(AdvanceTracker.view(advance))
