"""
In-memory ledger state used by the posting engine.

A LedgerSnapshot is a detached copy of one employee's ledger. The posting,
aggregation and reconciliation functions operate on snapshots only, so the
same arithmetic serves real commits, previews and diagnostics.
"""

import copy
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional

from ledger_backend.app.models.ledger_enums import (
    EntryType, Direction, ApprovalStatus, AdvanceStatus, AdvancePurpose
)

MONEY_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


@dataclass
class EntryDraft:
    """A prospective ledger entry as submitted by a caller."""
    entry_type: EntryType
    amount: Any
    description: Optional[str] = None
    notes: Optional[str] = None
    related_advance_id: Optional[int] = None
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[str] = None
    category: Optional[str] = None
    approval_status: ApprovalStatus = ApprovalStatus.APPROVED

    # ADVANCE_ISSUE only
    purpose: Optional[AdvancePurpose] = None
    purpose_description: Optional[str] = None
    expires_at: Optional[datetime] = None

    # OPENING_BALANCE only
    effective_date: Optional[date] = None


@dataclass
class EntryState:
    sequence: int
    entry_type: EntryType
    direction: Optional[Direction]
    amount: Decimal
    running_balance: Decimal
    approval_status: ApprovalStatus
    created_at: datetime
    related_advance_id: Optional[int] = None
    id: Optional[int] = None

    @property
    def is_genesis(self) -> bool:
        return self.entry_type == EntryType.OPENING_BALANCE

    @property
    def counts(self) -> bool:
        """Whether the entry contributes to the running balance."""
        return not self.is_genesis and self.approval_status == ApprovalStatus.APPROVED

    @property
    def signed_amount(self) -> Decimal:
        if self.direction == Direction.CREDIT:
            return self.amount
        if self.direction == Direction.DEBIT:
            return -self.amount
        return ZERO


@dataclass
class AdvanceState:
    id: Optional[int]
    amount: Decimal
    utilized_amount: Decimal
    status: AdvanceStatus
    purpose: AdvancePurpose
    issued_date: datetime
    expires_at: Optional[datetime] = None
    employee_id: Optional[int] = None
    # Cash handed back through linked CASH_RETURN entries
    returned_amount: Decimal = ZERO

    @property
    def remaining_balance(self) -> Decimal:
        return self.amount - self.utilized_amount - self.returned_amount

    @property
    def utilization_percentage(self) -> Decimal:
        if self.amount <= 0:
            return ZERO
        return (self.utilized_amount / self.amount * HUNDRED).quantize(MONEY_PLACES)


@dataclass
class LedgerSnapshot:
    employee_id: int
    opening_balance: Decimal = ZERO
    opening_balance_set: bool = False
    entries: List[EntryState] = field(default_factory=list)
    advances: List[AdvanceState] = field(default_factory=list)
    version: int = 0
    # Balance stored on the ledger account row, None when no row exists yet
    pointer_balance: Optional[Decimal] = None

    @property
    def has_account(self) -> bool:
        return self.pointer_balance is not None

    @property
    def current_balance(self) -> Decimal:
        if self.entries:
            return self.entries[-1].running_balance
        return self.opening_balance

    @property
    def transactional_entries(self) -> List[EntryState]:
        return [e for e in self.entries if not e.is_genesis]

    @property
    def next_sequence(self) -> int:
        if not self.entries:
            return 1
        return max(self.entries[-1].sequence + 1, 1)

    def find_advance(self, advance_id: int) -> Optional[AdvanceState]:
        for advance in self.advances:
            if advance.id == advance_id:
                return advance
        return None

    def find_entry(self, entry_id: int) -> Optional[EntryState]:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None

    def clone(self) -> "LedgerSnapshot":
        return copy.deepcopy(self)


@dataclass
class Posting:
    """Outcome of applying one draft (or approval) to a snapshot."""
    entry: EntryState
    balance_before: Decimal
    balance_after: Decimal
    new_advance: Optional[AdvanceState] = None
    # Linked advance drawn on by an expense or repaid by a cash return
    utilized_advance: Optional[AdvanceState] = None
    advance_remaining_before: Optional[Decimal] = None
    # Existing entries whose running balance was rewritten by a replay
    rebalanced: List[EntryState] = field(default_factory=list)


@dataclass
class AdvanceSummary:
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


@dataclass
class BalanceSummary:
    employee_id: int
    opening_balance: Decimal
    current_balance: Decimal
    total_credits: Decimal
    total_debits: Decimal
    is_in_surplus: bool
    is_in_deficit: bool
    surplus_amount: Decimal
    deficit_amount: Decimal
    open_advances: List[AdvanceSummary]
    open_advance_count: int
    total_open_advances: Decimal
    total_advance_utilization: Decimal
    pending_expenses: Decimal
    pending_reimbursements: Decimal
    entry_count: int
    last_transaction_date: Optional[datetime]


@dataclass
class LedgerPreview:
    summary: BalanceSummary
    entry_type: EntryType
    direction: Optional[Direction]
    amount: Decimal
    current_balance: Decimal
    new_balance: Decimal
    balance_change: Decimal
    will_create_deficit: bool
    deficit_amount: Decimal
    warnings: List[str] = field(default_factory=list)
    linked_advance_id: Optional[int] = None
    advance_remaining_before: Optional[Decimal] = None
    advance_remaining_after: Optional[Decimal] = None


@dataclass
class ReconciliationFinding:
    """A diagnostic discrepancy. Reported, never corrected."""
    kind: str
    message: str
    expected: Decimal
    actual: Decimal
    variance: Decimal
    entry_id: Optional[int] = None
    advance_id: Optional[int] = None
    sequence: Optional[int] = None


@dataclass
class ReconciliationSummary:
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
    findings: List[ReconciliationFinding] = field(default_factory=list)


@dataclass
class AccountBalance:
    """Per-employee balance row fed into statistics."""
    employee_id: int
    employee_name: Optional[str]
    balance: Decimal
    last_transaction_at: Optional[datetime] = None


@dataclass
class EmployeeBalanceRank:
    employee_id: int
    employee_name: Optional[str]
    balance: Decimal
    rank: int
    open_advances: int
    last_transaction_date: Optional[datetime]


@dataclass
class LedgerStatistics:
    total_employees: int
    total_surplus: Decimal
    total_deficit: Decimal
    net_balance: Decimal
    employees_in_surplus: int
    employees_in_deficit: int
    employees_zero_balance: int
    top_surplus_employees: List[EmployeeBalanceRank]
    top_deficit_employees: List[EmployeeBalanceRank]
    total_open_advances: int
    total_advance_amount: Decimal
    total_advance_utilization: Decimal
    average_utilization_percentage: Decimal
    advances_0_30_days: int
    advances_31_60_days: int
    advances_61_90_days: int
    advances_over_90_days: int
