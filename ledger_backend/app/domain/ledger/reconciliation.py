"""
Period reconciliation over a ledger snapshot.

Recomputes what the ledger should say from its own entries and compares it
with what is stored. Discrepancies are returned as findings; nothing is
corrected here.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from ledger_backend.app.models.ledger_enums import EntryType, Direction
from ledger_backend.app.domain.ledger.types import (
    ZERO, EntryState, LedgerSnapshot, ReconciliationFinding, ReconciliationSummary
)

logger = logging.getLogger(__name__)

# Finding kinds
RECONCILIATION_MISMATCH = "RECONCILIATION_MISMATCH"
RUNNING_BALANCE_DRIFT = "RUNNING_BALANCE_DRIFT"
BALANCE_POINTER_DRIFT = "BALANCE_POINTER_DRIFT"
ADVANCE_UTILIZATION_DRIFT = "ADVANCE_UTILIZATION_DRIFT"
ADVANCE_RETURN_DRIFT = "ADVANCE_RETURN_DRIFT"


def _in_range(entry: EntryState, date_from: Optional[datetime], date_to: Optional[datetime]) -> bool:
    if date_from is not None and entry.created_at < date_from:
        return False
    if date_to is not None and entry.created_at > date_to:
        return False
    return True


def _running_balance_findings(
    snapshot: LedgerSnapshot,
    date_from: Optional[datetime],
    date_to: Optional[datetime],
) -> List[ReconciliationFinding]:
    findings = []
    balance = snapshot.opening_balance
    for entry in snapshot.transactional_entries:
        if entry.counts:
            balance = balance + entry.signed_amount
        if not _in_range(entry, date_from, date_to):
            continue
        if entry.running_balance != balance:
            findings.append(ReconciliationFinding(
                kind=RUNNING_BALANCE_DRIFT,
                message=(
                    f"Entry {entry.sequence} stores running balance {entry.running_balance}, "
                    f"recomputed {balance}"
                ),
                expected=balance,
                actual=entry.running_balance,
                variance=entry.running_balance - balance,
                entry_id=entry.id,
                sequence=entry.sequence,
            ))
    return findings


def _advance_findings(snapshot: LedgerSnapshot) -> List[ReconciliationFinding]:
    drawn: Dict[int, Decimal] = {}
    returned: Dict[int, Decimal] = {}
    for entry in snapshot.transactional_entries:
        if not entry.counts or entry.related_advance_id is None:
            continue
        if entry.entry_type == EntryType.EXPENSE:
            drawn[entry.related_advance_id] = drawn.get(entry.related_advance_id, ZERO) + entry.amount
        elif entry.entry_type == EntryType.CASH_RETURN:
            returned[entry.related_advance_id] = returned.get(entry.related_advance_id, ZERO) + entry.amount

    findings = []
    for advance in snapshot.advances:
        expected = drawn.get(advance.id, ZERO)
        if advance.utilized_amount != expected:
            findings.append(ReconciliationFinding(
                kind=ADVANCE_UTILIZATION_DRIFT,
                message=(
                    f"Advance {advance.id} records utilization {advance.utilized_amount}, "
                    f"approved expenses total {expected}"
                ),
                expected=expected,
                actual=advance.utilized_amount,
                variance=advance.utilized_amount - expected,
                advance_id=advance.id,
            ))
        expected = returned.get(advance.id, ZERO)
        if advance.returned_amount != expected:
            findings.append(ReconciliationFinding(
                kind=ADVANCE_RETURN_DRIFT,
                message=(
                    f"Advance {advance.id} records returns {advance.returned_amount}, "
                    f"approved cash returns total {expected}"
                ),
                expected=expected,
                actual=advance.returned_amount,
                variance=advance.returned_amount - expected,
                advance_id=advance.id,
            ))
    return findings


def reconcile(
    snapshot: LedgerSnapshot,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> ReconciliationSummary:
    """
    Reconcile one employee's ledger over [date_from, date_to].

    expected_closing = opening balance at date_from + credits - debits of
    approved entries in range. actual_closing is the stored running balance
    of the last entry at or before date_to. Either bound may be None.
    """
    transactional = snapshot.transactional_entries

    before = [e for e in transactional if date_from is not None and e.created_at < date_from]
    opening = before[-1].running_balance if before else snapshot.opening_balance

    in_range = [e for e in transactional if _in_range(e, date_from, date_to)]
    credits = ZERO
    debits = ZERO
    by_type = {entry_type: ZERO for entry_type in EntryType}
    for entry in in_range:
        if not entry.counts:
            continue
        if entry.direction == Direction.CREDIT:
            credits += entry.amount
        else:
            debits += entry.amount
        by_type[entry.entry_type] += entry.amount

    expected = opening + credits - debits
    upto = [e for e in transactional if date_to is None or e.created_at <= date_to]
    actual = upto[-1].running_balance if upto else opening
    variance = actual - expected

    findings = []
    if variance != ZERO:
        findings.append(ReconciliationFinding(
            kind=RECONCILIATION_MISMATCH,
            message=f"Closing balance {actual} differs from expected {expected}",
            expected=expected,
            actual=actual,
            variance=variance,
        ))
    findings.extend(_running_balance_findings(snapshot, date_from, date_to))

    full_history = date_from is None and date_to is None
    if full_history and snapshot.pointer_balance is not None \
            and snapshot.pointer_balance != snapshot.current_balance:
        findings.append(ReconciliationFinding(
            kind=BALANCE_POINTER_DRIFT,
            message=(
                f"Account balance {snapshot.pointer_balance} differs from last running "
                f"balance {snapshot.current_balance}"
            ),
            expected=snapshot.current_balance,
            actual=snapshot.pointer_balance,
            variance=snapshot.pointer_balance - snapshot.current_balance,
        ))
    findings.extend(_advance_findings(snapshot))

    if findings:
        logger.warning(
            "Reconciliation for employee %s found %d discrepancies",
            snapshot.employee_id, len(findings)
        )

    return ReconciliationSummary(
        employee_id=snapshot.employee_id,
        period_start=date_from,
        period_end=date_to,
        opening_balance=opening,
        period_credits=credits,
        period_debits=debits,
        transaction_count=len(in_range),
        advances_issued=by_type[EntryType.ADVANCE_ISSUE],
        expenses_posted=by_type[EntryType.EXPENSE],
        cash_returns=by_type[EntryType.CASH_RETURN],
        reimbursements=by_type[EntryType.REIMBURSEMENT],
        expected_closing_balance=expected,
        actual_closing_balance=actual,
        variance=variance,
        is_balanced=variance == ZERO,
        findings=findings,
    )
