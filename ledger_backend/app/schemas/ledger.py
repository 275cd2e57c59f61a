"""
Ledger Schemas.

Amounts are accepted as JSON numbers or strings and always returned as
decimal strings.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from ledger_backend.app.models.ledger_enums import (
    EntryType, Direction, ApprovalStatus, AdvanceStatus, AdvancePurpose
)


class LedgerFilters(BaseModel):
    """Query filters for listing ledger entries."""
    employee_id: Optional[int] = None
    entry_types: Optional[List[EntryType]] = None
    direction: Optional[Direction] = None
    approval_status: Optional[ApprovalStatus] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    category: Optional[str] = None
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[str] = None
    search: Optional[str] = None
    page: int = Field(1, ge=1)
    page_size: int = Field(50, ge=1)


class LedgerEntryResponse(BaseModel):
    """Schema for displaying a ledger entry."""
    id: int
    employee_id: int
    sequence: int
    entry_type: EntryType
    direction: Optional[Direction]
    amount: Decimal
    running_balance: Decimal
    related_advance_id: Optional[int]
    related_entity_type: Optional[str]
    related_entity_id: Optional[str]
    category: Optional[str]
    description: Optional[str]
    notes: Optional[str]
    approval_status: ApprovalStatus
    approved_by: Optional[int]
    approved_at: Optional[datetime]
    created_at: datetime
    created_by: Optional[int]

    class Config:
        from_attributes = True


class LedgerEntryListResponse(BaseModel):
    items: List[LedgerEntryResponse]
    total: int
    page: int
    page_size: int


class BalanceResponse(BaseModel):
    """Cached balance pointer for one employee."""
    employee_id: int
    current_balance: Decimal
    opening_balance: Decimal
    opening_balance_set: bool
    entry_count: int
    version: int
    last_transaction_at: Optional[datetime]

    class Config:
        from_attributes = True


# Write requests

class ExpenseCreate(BaseModel):
    """Schema for posting an expense debit."""
    employee_id: int
    amount: Decimal
    related_advance_id: Optional[int] = None
    category: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    related_entity_type: Optional[str] = Field(None, max_length=50)
    related_entity_id: Optional[str] = Field(None, max_length=64)
    approval_status: ApprovalStatus = ApprovalStatus.APPROVED


class CashReturnCreate(BaseModel):
    """Schema for posting cash handed back by an employee."""
    employee_id: int
    amount: Decimal
    related_advance_id: Optional[int] = None
    description: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None


class ReimbursementCreate(BaseModel):
    """Schema for posting a reimbursement credit."""
    employee_id: int
    amount: Decimal
    category: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    related_entity_type: Optional[str] = Field(None, max_length=50)
    related_entity_id: Optional[str] = Field(None, max_length=64)
    approval_status: ApprovalStatus = ApprovalStatus.APPROVED


class EntryDecision(BaseModel):
    reason: Optional[str] = None


class OpeningBalanceCreate(BaseModel):
    employee_id: int
    amount: Decimal
    effective_date: Optional[date] = None
    notes: Optional[str] = None


class OpeningBalanceResponse(BaseModel):
    employee_id: int
    amount: Decimal
    effective_date: date
    created_by: Optional[int]
    created_at: datetime
    notes: Optional[str]

    class Config:
        from_attributes = True


class PreviewRequest(BaseModel):
    """A draft entry to simulate. Nothing is persisted."""
    employee_id: int
    entry_type: EntryType
    amount: Decimal
    related_advance_id: Optional[int] = None
    approval_status: ApprovalStatus = ApprovalStatus.APPROVED
    purpose: Optional[AdvancePurpose] = None
    expires_at: Optional[datetime] = None
    effective_date: Optional[date] = None
    description: Optional[str] = None


# Computed views

class AdvanceSummaryResponse(BaseModel):
    id: Optional[int]
    amount: Decimal
    utilized_amount: Decimal
    returned_amount: Decimal
    remaining_balance: Decimal
    utilization_percentage: Decimal
    status: AdvanceStatus
    purpose: AdvancePurpose
    issued_date: datetime
    expires_at: Optional[datetime]
    is_expired: bool
    days_outstanding: int

    class Config:
        from_attributes = True


class BalanceSummaryResponse(BaseModel):
    employee_id: int
    opening_balance: Decimal
    current_balance: Decimal
    total_credits: Decimal
    total_debits: Decimal
    is_in_surplus: bool
    is_in_deficit: bool
    surplus_amount: Decimal
    deficit_amount: Decimal
    open_advances: List[AdvanceSummaryResponse]
    open_advance_count: int
    total_open_advances: Decimal
    total_advance_utilization: Decimal
    pending_expenses: Decimal
    pending_reimbursements: Decimal
    entry_count: int
    last_transaction_date: Optional[datetime]

    class Config:
        from_attributes = True


class LedgerPreviewResponse(BaseModel):
    summary: BalanceSummaryResponse
    entry_type: EntryType
    direction: Optional[Direction]
    amount: Decimal
    current_balance: Decimal
    new_balance: Decimal
    balance_change: Decimal
    will_create_deficit: bool
    deficit_amount: Decimal
    warnings: List[str]
    linked_advance_id: Optional[int]
    advance_remaining_before: Optional[Decimal]
    advance_remaining_after: Optional[Decimal]

    class Config:
        from_attributes = True


class ReconciliationFindingResponse(BaseModel):
    kind: str
    message: str
    expected: Decimal
    actual: Decimal
    variance: Decimal
    entry_id: Optional[int]
    advance_id: Optional[int]
    sequence: Optional[int]

    class Config:
        from_attributes = True


class ReconciliationSummaryResponse(BaseModel):
    employee_id: int
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    opening_balance: Decimal
    period_credits: Decimal
    period_debits: Decimal
    transaction_count: int
    advances_issued: Decimal
    expenses_posted: Decimal
    cash_returns: Decimal
    reimbursements: Decimal
    expected_closing_balance: Decimal
    actual_closing_balance: Decimal
    variance: Decimal
    is_balanced: bool
    findings: List[ReconciliationFindingResponse]

    class Config:
        from_attributes = True


class EmployeeBalanceRankResponse(BaseModel):
    employee_id: int
    employee_name: Optional[str]
    balance: Decimal
    rank: int
    open_advances: int
    last_transaction_date: Optional[datetime]

    class Config:
        from_attributes = True


class LedgerStatisticsResponse(BaseModel):
    total_employees: int
    total_surplus: Decimal
    total_deficit: Decimal
    net_balance: Decimal
    employees_in_surplus: int
    employees_in_deficit: int
    employees_zero_balance: int
    top_surplus_employees: List[EmployeeBalanceRankResponse]
    top_deficit_employees: List[EmployeeBalanceRankResponse]
    total_open_advances: int
    total_advance_amount: Decimal
    total_advance_utilization: Decimal
    average_utilization_percentage: Decimal
    advances_0_30_days: int
    advances_31_60_days: int
    advances_61_90_days: int
    advances_over_90_days: int

    class Config:
        from_attributes = True
