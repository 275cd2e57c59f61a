"""
Posting Engine (Domain Logic).

The validate-and-compute half of every ledger write. LedgerStore.append and
PreviewEngine.preview both call `post_draft` on a snapshot; only the store
persists the result.

Flow for a transactional draft:
1. Validate amount (positive, at most two decimal places)
2. Resolve direction from entry type
3. Validate the referenced advance, if any
4. Apply advance utilization (approved EXPENSE) or repayment (approved CASH_RETURN)
5. Create the advance state (ADVANCE_ISSUE only)
6. Append the entry with its running balance
"""

from datetime import datetime, time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, List, Optional

from ledger_backend.app.core.exceptions import (
    InvalidAmountError, OverUtilizationError, AdvanceClosedError,
    AdvanceNotFoundError, OpeningBalanceAlreadySetError, InvalidEntryStateError,
    LedgerEntryNotFoundError
)
from ledger_backend.app.models.ledger_enums import (
    EntryType, Direction, ApprovalStatus, AdvanceStatus, AdvancePurpose
)
from ledger_backend.app.domain.ledger.types import (
    MONEY_PLACES, ZERO, EntryDraft, EntryState, AdvanceState, LedgerSnapshot, Posting
)

# Numeric(12, 2) upper bound
MAX_MONEY = Decimal("9999999999.99")

_DIRECTIONS = {
    EntryType.ADVANCE_ISSUE: Direction.CREDIT,
    EntryType.REIMBURSEMENT: Direction.CREDIT,
    EntryType.EXPENSE: Direction.DEBIT,
    EntryType.CASH_RETURN: Direction.DEBIT,
}

# Entry types allowed to carry related_advance_id
_ADVANCE_LINKED_TYPES = (EntryType.EXPENSE, EntryType.CASH_RETURN)


def direction_for(entry_type: EntryType) -> Optional[Direction]:
    """CREDIT for issue/reimbursement, DEBIT for expense/cash-return, None for opening balance."""
    return _DIRECTIONS.get(entry_type)


def to_money(value: Any, allow_non_positive: bool = False) -> Decimal:
    """
    Coerce a caller-supplied amount to a two-place Decimal.

    Raises:
        InvalidAmountError: malformed, non-finite, sub-cent, out of range,
            or (unless allowed) not strictly positive.
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmountError(value, "Amount is required")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmountError(value, "Amount is not a valid decimal")
    if not amount.is_finite():
        raise InvalidAmountError(value, "Amount must be finite")
    # Range first: quantize raises InvalidOperation past the context precision
    if abs(amount) > MAX_MONEY:
        raise InvalidAmountError(value, "Amount is out of range")

    try:
        quantized = amount.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmountError(value, "Amount is out of range")
    if quantized != amount:
        raise InvalidAmountError(value, "Amount has more than two decimal places")
    if not allow_non_positive and quantized <= ZERO:
        raise InvalidAmountError(value, "Amount must be greater than zero")
    return quantized


def derive_advance_status(advance: AdvanceState, now: datetime) -> AdvanceStatus:
    """
    Status derivation, applied after every mutation and on every read.

    CLOSED is terminal. A fully drawn advance stays FULLY_UTILIZED even past
    its expiry; an advance with money left expires once `now` passes
    `expires_at`.
    """
    if advance.status == AdvanceStatus.CLOSED:
        return AdvanceStatus.CLOSED
    remaining = advance.remaining_balance
    if remaining <= ZERO:
        return AdvanceStatus.FULLY_UTILIZED
    if advance.expires_at is not None and now > advance.expires_at:
        return AdvanceStatus.EXPIRED
    if remaining == advance.amount:
        return AdvanceStatus.OPEN
    return AdvanceStatus.PARTIALLY_UTILIZED


def check_utilization(advance: AdvanceState, amount: Decimal, now: datetime) -> None:
    status = derive_advance_status(advance, now)
    if status in (AdvanceStatus.CLOSED, AdvanceStatus.EXPIRED):
        raise AdvanceClosedError(advance.id, status.value)
    if amount > advance.remaining_balance:
        raise OverUtilizationError(advance.id, amount, advance.remaining_balance)


def utilize(advance: AdvanceState, amount: Decimal, now: datetime) -> AdvanceState:
    """Draw `amount` from the advance. Nothing changes when a check fails."""
    check_utilization(advance, amount, now)
    advance.utilized_amount = advance.utilized_amount + amount
    advance.status = derive_advance_status(advance, now)
    return advance


def check_return(advance: AdvanceState, amount: Decimal, now: datetime) -> None:
    """Expired advances still take cash back; closed ones take nothing."""
    if advance.status == AdvanceStatus.CLOSED:
        raise AdvanceClosedError(advance.id, AdvanceStatus.CLOSED.value)
    if amount > advance.remaining_balance:
        raise OverUtilizationError(advance.id, amount, advance.remaining_balance)


def repay(advance: AdvanceState, amount: Decimal, now: datetime) -> AdvanceState:
    """Hand `amount` of the unspent advance back. Nothing changes when a check fails."""
    check_return(advance, amount, now)
    advance.returned_amount = advance.returned_amount + amount
    advance.status = derive_advance_status(advance, now)
    return advance


# Apply and check-only steps per linked entry type
_ADVANCE_EFFECTS = {
    EntryType.EXPENSE: (utilize, check_utilization),
    EntryType.CASH_RETURN: (repay, check_return),
}


def replay(snapshot: LedgerSnapshot) -> List[EntryState]:
    """
    Recompute every running balance in sequence order from the opening balance.

    Returns the entries whose stored running balance changed.
    """
    changed = []
    balance = snapshot.opening_balance
    snapshot.entries.sort(key=lambda e: e.sequence)
    for entry in snapshot.entries:
        if entry.is_genesis:
            expected = snapshot.opening_balance
        else:
            if entry.counts:
                balance = balance + entry.signed_amount
            expected = balance
        if entry.running_balance != expected:
            entry.running_balance = expected
            changed.append(entry)
    return changed


def post_draft(snapshot: LedgerSnapshot, draft: EntryDraft, now: datetime) -> Posting:
    """
    Apply a draft to the snapshot in place and describe the result.

    Callers that must not change their snapshot pass a clone.
    """
    if draft.entry_type == EntryType.OPENING_BALANCE:
        return _post_opening_balance(snapshot, draft, now)

    amount = to_money(draft.amount)
    direction = direction_for(draft.entry_type)

    if draft.approval_status == ApprovalStatus.REJECTED:
        raise InvalidEntryStateError("Entries cannot be posted as REJECTED")
    if draft.entry_type == EntryType.ADVANCE_ISSUE and draft.approval_status != ApprovalStatus.APPROVED:
        raise InvalidEntryStateError("Advances are issued as APPROVED entries")

    advance = None
    remaining_before = None
    if draft.related_advance_id is not None:
        if draft.entry_type not in _ADVANCE_LINKED_TYPES:
            raise InvalidEntryStateError(
                f"{draft.entry_type.value} entries cannot reference an advance",
                details={"advance_id": draft.related_advance_id}
            )
        advance = snapshot.find_advance(draft.related_advance_id)
        if advance is None:
            raise AdvanceNotFoundError(draft.related_advance_id)
        remaining_before = advance.remaining_balance

    utilized = None
    if advance is not None:
        apply, check = _ADVANCE_EFFECTS[draft.entry_type]
        if draft.approval_status == ApprovalStatus.APPROVED:
            utilized = apply(advance, amount, now)
        else:
            # Pending entries touch the advance when approved
            check(advance, amount, now)

    new_advance = None
    if draft.entry_type == EntryType.ADVANCE_ISSUE:
        if draft.expires_at is not None and draft.expires_at <= now:
            raise InvalidEntryStateError("Advance expiry must be in the future")
        new_advance = AdvanceState(
            id=None,
            amount=amount,
            utilized_amount=ZERO,
            status=AdvanceStatus.OPEN,
            purpose=draft.purpose or AdvancePurpose.REGULAR,
            issued_date=now,
            expires_at=draft.expires_at,
            employee_id=snapshot.employee_id,
        )
        snapshot.advances.append(new_advance)

    balance_before = snapshot.current_balance
    entry = EntryState(
        sequence=snapshot.next_sequence,
        entry_type=draft.entry_type,
        direction=direction,
        amount=amount,
        running_balance=balance_before,
        approval_status=draft.approval_status,
        created_at=now,
        related_advance_id=draft.related_advance_id,
    )
    if entry.counts:
        entry.running_balance = balance_before + entry.signed_amount
    snapshot.entries.append(entry)

    return Posting(
        entry=entry,
        balance_before=balance_before,
        balance_after=entry.running_balance,
        new_advance=new_advance,
        utilized_advance=utilized,
        advance_remaining_before=remaining_before,
    )


def _post_opening_balance(snapshot: LedgerSnapshot, draft: EntryDraft, now: datetime) -> Posting:
    if snapshot.opening_balance_set:
        raise OpeningBalanceAlreadySetError(snapshot.employee_id)

    amount = to_money(draft.amount, allow_non_positive=True)
    effective_date = draft.effective_date or now.date()
    balance_before = snapshot.current_balance

    snapshot.opening_balance = amount
    snapshot.opening_balance_set = True
    genesis = EntryState(
        sequence=0,
        entry_type=EntryType.OPENING_BALANCE,
        direction=None,
        amount=amount,
        running_balance=amount,
        approval_status=ApprovalStatus.APPROVED,
        created_at=datetime.combine(effective_date, time.min),
    )
    snapshot.entries.insert(0, genesis)
    rebalanced = [e for e in replay(snapshot) if e is not genesis]

    return Posting(
        entry=genesis,
        balance_before=balance_before,
        balance_after=snapshot.current_balance,
        rebalanced=rebalanced,
    )


def approve_entry(snapshot: LedgerSnapshot, entry_id: int, now: datetime) -> Posting:
    """
    Move a PENDING entry to APPROVED.

    A linked expense draws on its advance now and a linked cash return
    repays it, with the same checks as a direct post. Every later running
    balance is replayed.
    """
    entry = _pending_entry(snapshot, entry_id)
    balance_before = snapshot.current_balance

    utilized = None
    remaining_before = None
    if entry.related_advance_id is not None and entry.entry_type in _ADVANCE_LINKED_TYPES:
        advance = snapshot.find_advance(entry.related_advance_id)
        if advance is None:
            raise AdvanceNotFoundError(entry.related_advance_id)
        remaining_before = advance.remaining_balance
        apply, _ = _ADVANCE_EFFECTS[entry.entry_type]
        utilized = apply(advance, entry.amount, now)

    entry.approval_status = ApprovalStatus.APPROVED
    rebalanced = [e for e in replay(snapshot) if e is not entry]

    return Posting(
        entry=entry,
        balance_before=balance_before,
        balance_after=snapshot.current_balance,
        utilized_advance=utilized,
        advance_remaining_before=remaining_before,
        rebalanced=rebalanced,
    )


def reject_entry(snapshot: LedgerSnapshot, entry_id: int) -> Posting:
    """Move a PENDING entry to REJECTED. Balances are untouched."""
    entry = _pending_entry(snapshot, entry_id)
    entry.approval_status = ApprovalStatus.REJECTED
    balance = snapshot.current_balance
    return Posting(entry=entry, balance_before=balance, balance_after=balance)


def _pending_entry(snapshot: LedgerSnapshot, entry_id: int) -> EntryState:
    entry = snapshot.find_entry(entry_id)
    if entry is None:
        raise LedgerEntryNotFoundError(entry_id)
    if entry.approval_status != ApprovalStatus.PENDING:
        raise InvalidEntryStateError(
            f"Entry {entry_id} is {entry.approval_status.value}, expected PENDING",
            details={"entry_id": entry_id, "approval_status": entry.approval_status.value}
        )
    return entry


def close_advance(snapshot: LedgerSnapshot, advance_id: int) -> AdvanceState:
    advance = snapshot.find_advance(advance_id)
    if advance is None:
        raise AdvanceNotFoundError(advance_id)
    if advance.status == AdvanceStatus.CLOSED:
        raise AdvanceClosedError(advance_id, AdvanceStatus.CLOSED.value)
    advance.status = AdvanceStatus.CLOSED
    return advance
