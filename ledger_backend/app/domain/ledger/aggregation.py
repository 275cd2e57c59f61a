"""
Balance aggregation over ledger snapshots.

Summaries are computed from entries and advances on every call; nothing
here is cached.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List

from ledger_backend.app.models.ledger_enums import (
    EntryType, Direction, ApprovalStatus, AdvanceStatus
)
from ledger_backend.app.domain.ledger.posting import derive_advance_status
from ledger_backend.app.domain.ledger.types import (
    MONEY_PLACES, ZERO, AdvanceState, AdvanceSummary, BalanceSummary, LedgerSnapshot,
    AccountBalance, EmployeeBalanceRank, LedgerStatistics
)

# Advances still drawing money, used for aging
AGING_STATUSES = (AdvanceStatus.OPEN, AdvanceStatus.PARTIALLY_UTILIZED)


def summarize_advance(advance: AdvanceState, now: datetime) -> AdvanceSummary:
    status = derive_advance_status(advance, now)
    return AdvanceSummary(
        id=advance.id,
        amount=advance.amount,
        utilized_amount=advance.utilized_amount,
        returned_amount=advance.returned_amount,
        remaining_balance=advance.remaining_balance,
        utilization_percentage=advance.utilization_percentage,
        status=status,
        purpose=advance.purpose,
        issued_date=advance.issued_date,
        expires_at=advance.expires_at,
        is_expired=status == AdvanceStatus.EXPIRED,
        days_outstanding=max((now - advance.issued_date).days, 0),
    )


def summarize(snapshot: LedgerSnapshot, now: datetime) -> BalanceSummary:
    """
    Build the balance summary for one employee.

    Credits and debits count approved transactional entries only, so
    current_balance == opening_balance + total_credits - total_debits holds
    for any consistent snapshot.
    """
    total_credits = ZERO
    total_debits = ZERO
    pending_expenses = ZERO
    pending_reimbursements = ZERO

    transactional = snapshot.transactional_entries
    for entry in transactional:
        if entry.counts:
            if entry.direction == Direction.CREDIT:
                total_credits += entry.amount
            else:
                total_debits += entry.amount
        elif entry.approval_status == ApprovalStatus.PENDING:
            if entry.entry_type == EntryType.EXPENSE:
                pending_expenses += entry.amount
            elif entry.entry_type == EntryType.REIMBURSEMENT:
                pending_reimbursements += entry.amount

    open_advances = [
        summarize_advance(a, now) for a in snapshot.advances
        if derive_advance_status(a, now) != AdvanceStatus.CLOSED
    ]
    current = snapshot.current_balance

    return BalanceSummary(
        employee_id=snapshot.employee_id,
        opening_balance=snapshot.opening_balance,
        current_balance=current,
        total_credits=total_credits,
        total_debits=total_debits,
        is_in_surplus=current > ZERO,
        is_in_deficit=current < ZERO,
        surplus_amount=current if current > ZERO else ZERO,
        deficit_amount=-current if current < ZERO else ZERO,
        open_advances=open_advances,
        open_advance_count=len(open_advances),
        total_open_advances=sum((a.remaining_balance for a in open_advances), ZERO),
        total_advance_utilization=sum((a.utilized_amount for a in open_advances), ZERO),
        pending_expenses=pending_expenses,
        pending_reimbursements=pending_reimbursements,
        entry_count=len(transactional),
        last_transaction_date=transactional[-1].created_at if transactional else None,
    )


def _aging_bucket(days: int) -> str:
    if days <= 30:
        return "0_30"
    if days <= 60:
        return "31_60"
    if days <= 90:
        return "61_90"
    return "over_90"


def compute_statistics(
    balances: Iterable[AccountBalance],
    advances: Iterable[AdvanceState],
    now: datetime,
    top_n: int = 5,
) -> LedgerStatistics:
    """
    Organization-wide totals, rankings and advance aging.

    `balances` holds one row per employee with a ledger account. Rankings
    break ties by employee id so repeated calls return the same order.
    """
    balances = list(balances)

    open_by_employee: Dict[int, int] = {}
    aging = {"0_30": 0, "31_60": 0, "61_90": 0, "over_90": 0}
    aging_advances: List[AdvanceState] = []
    for advance in advances:
        status = derive_advance_status(advance, now)
        if status == AdvanceStatus.CLOSED:
            continue
        open_by_employee[advance.employee_id] = open_by_employee.get(advance.employee_id, 0) + 1
        if status in AGING_STATUSES:
            aging_advances.append(advance)
            aging[_aging_bucket((now - advance.issued_date).days)] += 1

    surplus = [b for b in balances if b.balance > ZERO]
    deficit = [b for b in balances if b.balance < ZERO]

    def rank(rows: List[AccountBalance]) -> List[EmployeeBalanceRank]:
        return [
            EmployeeBalanceRank(
                employee_id=row.employee_id,
                employee_name=row.employee_name,
                balance=row.balance,
                rank=position,
                open_advances=open_by_employee.get(row.employee_id, 0),
                last_transaction_date=row.last_transaction_at,
            )
            for position, row in enumerate(rows[:top_n], start=1)
        ]

    top_surplus = sorted(surplus, key=lambda b: (-b.balance, b.employee_id))
    top_deficit = sorted(deficit, key=lambda b: (b.balance, b.employee_id))

    total_surplus = sum((b.balance for b in surplus), ZERO)
    total_deficit = sum((-b.balance for b in deficit), ZERO)

    if aging_advances:
        average_utilization = (
            sum((a.utilization_percentage for a in aging_advances), Decimal("0"))
            / len(aging_advances)
        ).quantize(MONEY_PLACES)
    else:
        average_utilization = ZERO

    return LedgerStatistics(
        total_employees=len(balances),
        total_surplus=total_surplus,
        total_deficit=total_deficit,
        net_balance=total_surplus - total_deficit,
        employees_in_surplus=len(surplus),
        employees_in_deficit=len(deficit),
        employees_zero_balance=len(balances) - len(surplus) - len(deficit),
        top_surplus_employees=rank(top_surplus),
        top_deficit_employees=rank(top_deficit),
        total_open_advances=len(aging_advances),
        total_advance_amount=sum((a.amount for a in aging_advances), ZERO),
        total_advance_utilization=sum((a.utilized_amount for a in aging_advances), ZERO),
        average_utilization_percentage=average_utilization,
        advances_0_30_days=aging["0_30"],
        advances_31_60_days=aging["31_60"],
        advances_61_90_days=aging["61_90"],
        advances_over_90_days=aging["over_90"],
    )
