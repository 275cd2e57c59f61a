"""
Ledger API Endpoints.

Entries, balances, previews, reconciliation and statistics for employee
ledgers. Employees read only their own ledger; money movements are posted
by FINANCE or ADMIN.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_backend.app.core.config import settings
from ledger_backend.app.core.dependencies import get_current_user
from ledger_backend.app.core.exceptions import InsufficientPermissionsError
from ledger_backend.app.core.guards import (
    require_role, require_admin, LedgerAccessGuard, LEDGER_READ_ROLES, FINANCE_ROLES
)
from ledger_backend.app.db.session import get_db
from ledger_backend.app.domain.ledger.types import EntryDraft
from ledger_backend.app.models.enums import EmployeeRole
from ledger_backend.app.models.ledger_enums import EntryType, Direction, ApprovalStatus
from ledger_backend.app.schemas.ledger import (
    LedgerFilters, LedgerEntryResponse, LedgerEntryListResponse, BalanceResponse,
    BalanceSummaryResponse, LedgerPreviewResponse, ReconciliationSummaryResponse,
    LedgerStatisticsResponse, ExpenseCreate, CashReturnCreate, ReimbursementCreate,
    EntryDecision, OpeningBalanceCreate, OpeningBalanceResponse, PreviewRequest
)
from ledger_backend.app.services.balance_aggregator import BalanceAggregator
from ledger_backend.app.services.ledger_store import LedgerStore
from ledger_backend.app.services.opening_balance import OpeningBalanceManager
from ledger_backend.app.services.preview import PreviewEngine
from ledger_backend.app.services.reconciliation import ReconciliationEngine

router = APIRouter(prefix="/ledger", tags=["Ledger"])
ledger_guard = LedgerAccessGuard()


def _is_finance(current_user: dict) -> bool:
    return current_user.get("role") in [r.value for r in FINANCE_ROLES]


@router.get("", response_model=LedgerEntryListResponse)
async def list_entries(
    employee_id: Optional[int] = Query(None),
    entry_types: Optional[List[EntryType]] = Query(None, alias="entry_type"),
    direction: Optional[Direction] = Query(None),
    approval_status: Optional[ApprovalStatus] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    min_amount: Optional[Decimal] = Query(None),
    max_amount: Optional[Decimal] = Query(None),
    category: Optional[str] = Query(None),
    related_entity_type: Optional[str] = Query(None),
    related_entity_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(
        settings.ledger_default_page_size, ge=1, le=settings.ledger_max_page_size,
        description="Items per page"
    ),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    List ledger entries in (employee, sequence) order.

    Employees are restricted to their own ledger.
    """
    own_id = ledger_guard.filter_by_access(current_user)
    if own_id is not None:
        if employee_id is not None and employee_id != own_id:
            ledger_guard.enforce(employee_id, current_user)
        employee_id = own_id

    filters = LedgerFilters(
        employee_id=employee_id,
        entry_types=entry_types,
        direction=direction,
        approval_status=approval_status,
        date_from=date_from,
        date_to=date_to,
        min_amount=min_amount,
        max_amount=max_amount,
        category=category,
        related_entity_type=related_entity_type,
        related_entity_id=related_entity_id,
        search=search,
        page=page,
        page_size=page_size,
    )
    entries, total = await LedgerStore.list_entries(db, filters)

    return LedgerEntryListResponse(
        items=[LedgerEntryResponse.model_validate(e) for e in entries],
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/statistics", response_model=LedgerStatisticsResponse)
async def get_statistics(
    current_user: dict = Depends(require_role(FINANCE_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """
    Organization-wide balance rollups and advance aging.
    """
    stats = await BalanceAggregator.statistics(db)
    return LedgerStatisticsResponse.model_validate(stats)


@router.get("/entries/{entry_id}", response_model=LedgerEntryResponse)
async def get_entry(
    entry_id: int = Path(..., description="Ledger entry ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    entry = await LedgerStore.get_entry(db, entry_id)
    ledger_guard.enforce(entry.employee_id, current_user, "ledger entry")
    return LedgerEntryResponse.model_validate(entry)


@router.get("/balance/{employee_id}", response_model=BalanceResponse)
async def get_balance(
    employee_id: int = Path(..., description="Employee ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Current balance pointer for an employee.
    """
    ledger_guard.enforce(employee_id, current_user)
    account = await BalanceAggregator.get_balance(db, employee_id)
    return BalanceResponse.model_validate(account)


@router.get("/summary/{employee_id}", response_model=BalanceSummaryResponse)
async def get_summary(
    employee_id: int = Path(..., description="Employee ID"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Full balance summary: totals, surplus/deficit, open advances and pending amounts.
    """
    ledger_guard.enforce(employee_id, current_user)
    summary = await BalanceAggregator.summarize(db, employee_id)
    return BalanceSummaryResponse.model_validate(summary)


@router.post("/preview", response_model=LedgerPreviewResponse)
async def preview_entry(
    request: PreviewRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Simulate a draft entry. Nothing is persisted.

    An employee previewing their own expense sees it as PENDING, exactly as
    it would be posted.
    """
    ledger_guard.enforce(request.employee_id, current_user)

    approval_status = request.approval_status
    if request.entry_type == EntryType.EXPENSE and not _is_finance(current_user):
        approval_status = ApprovalStatus.PENDING

    draft = EntryDraft(
        entry_type=request.entry_type,
        amount=request.amount,
        related_advance_id=request.related_advance_id,
        approval_status=approval_status,
        purpose=request.purpose,
        expires_at=request.expires_at,
        effective_date=request.effective_date,
        description=request.description,
    )
    preview = await PreviewEngine.preview(db, request.employee_id, draft)
    return LedgerPreviewResponse.model_validate(preview)


@router.get("/reconciliation/{employee_id}", response_model=ReconciliationSummaryResponse)
async def get_reconciliation(
    employee_id: int = Path(..., description="Employee ID"),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    current_user: dict = Depends(require_role(LEDGER_READ_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """
    Reconcile an employee ledger over a date range (full history by default).

    Discrepancies are reported in `findings`; nothing is corrected.
    """
    if date_from and date_to and date_from > date_to:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="date_from must not be after date_to"
        )
    summary = await ReconciliationEngine.reconcile(db, employee_id, date_from, date_to)
    return ReconciliationSummaryResponse.model_validate(summary)


@router.post("/expense", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def post_expense(
    expense: ExpenseCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Post an expense debit, optionally drawn against an advance.

    FINANCE and ADMIN post for anyone. Other employees may post only their
    own expenses, which always enter as PENDING.
    """
    approval_status = expense.approval_status
    if not _is_finance(current_user):
        if current_user["user_id"] != expense.employee_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Employees may only submit their own expenses"
            )
        approval_status = ApprovalStatus.PENDING

    draft = EntryDraft(
        entry_type=EntryType.EXPENSE,
        amount=expense.amount,
        related_advance_id=expense.related_advance_id,
        category=expense.category,
        description=expense.description,
        notes=expense.notes,
        related_entity_type=expense.related_entity_type,
        related_entity_id=expense.related_entity_id,
        approval_status=approval_status,
    )
    entry = await LedgerStore.append(
        db, expense.employee_id, draft,
        actor_id=current_user["user_id"], actor_username=current_user.get("sub")
    )
    return LedgerEntryResponse.model_validate(entry)


@router.post("/cash-return", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def post_cash_return(
    cash_return: CashReturnCreate,
    current_user: dict = Depends(require_role(FINANCE_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """
    Post cash handed back by an employee (DEBIT).
    """
    draft = EntryDraft(
        entry_type=EntryType.CASH_RETURN,
        amount=cash_return.amount,
        related_advance_id=cash_return.related_advance_id,
        description=cash_return.description,
        notes=cash_return.notes,
    )
    entry = await LedgerStore.append(
        db, cash_return.employee_id, draft,
        actor_id=current_user["user_id"], actor_username=current_user.get("sub")
    )
    return LedgerEntryResponse.model_validate(entry)


@router.post("/reimbursement", response_model=LedgerEntryResponse, status_code=status.HTTP_201_CREATED)
async def post_reimbursement(
    reimbursement: ReimbursementCreate,
    current_user: dict = Depends(require_role(FINANCE_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """
    Post a reimbursement paid to an employee (CREDIT).
    """
    draft = EntryDraft(
        entry_type=EntryType.REIMBURSEMENT,
        amount=reimbursement.amount,
        category=reimbursement.category,
        description=reimbursement.description,
        notes=reimbursement.notes,
        related_entity_type=reimbursement.related_entity_type,
        related_entity_id=reimbursement.related_entity_id,
        approval_status=reimbursement.approval_status,
    )
    entry = await LedgerStore.append(
        db, reimbursement.employee_id, draft,
        actor_id=current_user["user_id"], actor_username=current_user.get("sub")
    )
    return LedgerEntryResponse.model_validate(entry)


async def _decidable_entry(db: AsyncSession, entry_id: int, current_user: dict):
    entry = await LedgerStore.get_entry(db, entry_id)
    if entry.employee_id == current_user["user_id"]:
        raise InsufficientPermissionsError(
            "You cannot approve or reject your own entry",
            details={"entry_id": entry_id}
        )
    return entry


@router.post("/entries/{entry_id}/approve", response_model=LedgerEntryResponse)
async def approve_entry(
    entry_id: int = Path(..., description="Ledger entry ID"),
    current_user: dict = Depends(require_role(LEDGER_READ_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """
    Approve a PENDING entry so it counts toward the balance.
    """
    await _decidable_entry(db, entry_id, current_user)
    entry = await LedgerStore.approve_entry(
        db, entry_id,
        actor_id=current_user["user_id"], actor_username=current_user.get("sub")
    )
    return LedgerEntryResponse.model_validate(entry)


@router.post("/entries/{entry_id}/reject", response_model=LedgerEntryResponse)
async def reject_entry(
    decision: Optional[EntryDecision] = None,
    entry_id: int = Path(..., description="Ledger entry ID"),
    current_user: dict = Depends(require_role(LEDGER_READ_ROLES)),
    db: AsyncSession = Depends(get_db)
):
    """
    Reject a PENDING entry. It stays visible but never affects balances.
    """
    await _decidable_entry(db, entry_id, current_user)
    entry = await LedgerStore.reject_entry(
        db, entry_id,
        actor_id=current_user["user_id"], actor_username=current_user.get("sub"),
        reason=decision.reason if decision else None
    )
    return LedgerEntryResponse.model_validate(entry)


@router.post("/opening-balance", response_model=OpeningBalanceResponse, status_code=status.HTTP_201_CREATED)
async def set_opening_balance(
    opening: OpeningBalanceCreate,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Set an employee's opening balance (Admin only).

    Allowed once per employee. Setting it after entries exist recomputes
    every running balance.
    """
    record = await OpeningBalanceManager.set_opening_balance(
        db, opening.employee_id, opening.amount,
        effective_date=opening.effective_date,
        actor_id=current_user["user_id"],
        actor_username=current_user.get("sub"),
        notes=opening.notes,
    )
    return OpeningBalanceResponse.model_validate(record)
