"""
Advance lifecycle tests: issue, utilize, return, close, expire.
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from sqlalchemy import select

from ledger_backend.app.core.exceptions import (
    AdvanceClosedError, AdvanceNotFoundError, InvalidEntryStateError, OverUtilizationError,
    InvalidAmountError
)
from ledger_backend.app.models.audit_log import AuditLog
from ledger_backend.app.models.ledger_entry import LedgerEntry
from ledger_backend.app.domain.ledger.types import EntryDraft
from ledger_backend.app.models.ledger_enums import (
    EntryType, AdvanceStatus, AdvancePurpose, AdvanceReturnType
)
from ledger_backend.app.services.advance_tracker import AdvanceTracker
from ledger_backend.app.services.audit import AuditAction
from ledger_backend.app.services.balance_aggregator import BalanceAggregator
from ledger_backend.app.services.ledger_store import LedgerStore

NOW = datetime(2025, 3, 1, 9, 0, 0)


@pytest.mark.asyncio
async def test_issue_with_validity_days(db_session, employee, finance_user):
    advance = await AdvanceTracker.issue_advance(
        db_session, employee.id, "750.25", AdvancePurpose.REGULAR,
        actor_id=finance_user.id, validity_days=30,
        purpose_description="Laptop dock", now=NOW
    )
    assert advance.amount == Decimal("750.25")
    assert advance.expires_at == NOW + timedelta(days=30)
    assert advance.issued_by == finance_user.id
    assert advance.purpose_description == "Laptop dock"

    view = AdvanceTracker.view(advance, NOW + timedelta(days=3))
    assert view.status == AdvanceStatus.OPEN
    assert view.days_outstanding == 3
    assert view.is_expired is False

    result = await db_session.execute(select(AuditLog).where(AuditLog.action == AuditAction.ADVANCE_ISSUED))
    assert result.scalar_one().entity_id == advance.id


@pytest.mark.asyncio
async def test_issue_with_past_expiry_rejected(db_session, employee):
    with pytest.raises(InvalidEntryStateError):
        await AdvanceTracker.issue_advance(
            db_session, employee.id, "100", AdvancePurpose.PETTY_CASH,
            expires_at=NOW - timedelta(days=1), now=NOW
        )


@pytest.mark.asyncio
async def test_unknown_advance(db_session):
    with pytest.raises(AdvanceNotFoundError):
        await AdvanceTracker.get_advance(db_session, 31337)


@pytest.mark.asyncio
async def test_full_utilization(db_session, employee):
    advance = await AdvanceTracker.issue_advance(db_session, employee.id, "400", AdvancePurpose.TRAVEL, now=NOW)
    advance = await AdvanceTracker.apply_utilization(db_session, advance.id, "400", now=NOW)
    assert advance.status == AdvanceStatus.FULLY_UTILIZED
    assert advance.remaining_balance == Decimal("0.00")

    view = AdvanceTracker.view(advance, NOW)
    assert view.utilization_percentage == Decimal("100.00")


@pytest.mark.asyncio
async def test_return_posts_cash_return_and_closes(db_session, employee, finance_user):
    advance = await AdvanceTracker.issue_advance(db_session, employee.id, "1000", AdvancePurpose.TRAVEL, now=NOW)
    await AdvanceTracker.apply_utilization(db_session, advance.id, "350", now=NOW)

    advance = await AdvanceTracker.return_advance(
        db_session, advance.id, actor_id=finance_user.id, notes="Trip cut short", now=NOW
    )
    assert advance.status == AdvanceStatus.CLOSED
    assert advance.closed_at == NOW

    result = await db_session.execute(
        select(LedgerEntry).where(LedgerEntry.entry_type == EntryType.CASH_RETURN)
    )
    cash_return = result.scalar_one()
    assert cash_return.amount == Decimal("650.00")
    assert cash_return.related_advance_id == advance.id
    assert cash_return.running_balance == Decimal("0.00")

    account = await LedgerStore.get_account(db_session, employee.id)
    assert account.current_balance == Decimal("0.00")

    with pytest.raises(AdvanceClosedError):
        await AdvanceTracker.return_advance(db_session, advance.id, now=NOW)
    with pytest.raises(AdvanceClosedError):
        await AdvanceTracker.apply_utilization(db_session, advance.id, "1", now=NOW)


@pytest.mark.asyncio
async def test_return_of_fully_used_advance_posts_nothing(db_session, employee):
    advance = await AdvanceTracker.issue_advance(db_session, employee.id, "200", AdvancePurpose.EMERGENCY, now=NOW)
    await AdvanceTracker.apply_utilization(db_session, advance.id, "200", now=NOW)

    advance = await AdvanceTracker.return_advance(db_session, advance.id, now=NOW)
    assert advance.status == AdvanceStatus.CLOSED

    result = await db_session.execute(
        select(LedgerEntry).where(LedgerEntry.entry_type == EntryType.CASH_RETURN)
    )
    assert result.scalars().all() == []


@pytest.mark.asyncio
async def test_close_keeps_balance(db_session, employee):
    advance = await AdvanceTracker.issue_advance(db_session, employee.id, "500", AdvancePurpose.PROJECT, now=NOW)
    advance = await AdvanceTracker.close_advance(db_session, advance.id, notes="Written off", now=NOW)
    assert advance.status == AdvanceStatus.CLOSED
    assert advance.utilized_amount == Decimal("0.00")

    account = await LedgerStore.get_account(db_session, employee.id)
    assert account.current_balance == Decimal("500.00")

    with pytest.raises(AdvanceClosedError):
        await AdvanceTracker.close_advance(db_session, advance.id, now=NOW)


@pytest.mark.asyncio
async def test_expire_overdue_advances(db_session, employee, other_employee):
    overdue = await AdvanceTracker.issue_advance(
        db_session, employee.id, "300", AdvancePurpose.TRAVEL, validity_days=5, now=NOW
    )
    used_up = await AdvanceTracker.issue_advance(
        db_session, employee.id, "100", AdvancePurpose.TRAVEL, validity_days=5, now=NOW
    )
    await AdvanceTracker.apply_utilization(db_session, used_up.id, "100", now=NOW)
    current = await AdvanceTracker.issue_advance(
        db_session, other_employee.id, "300", AdvancePurpose.TRAVEL, validity_days=60, now=NOW
    )

    later = NOW + timedelta(days=10)
    expired = await AdvanceTracker.expire_overdue_advances(db_session, now=later)
    assert expired == [overdue.id]

    assert (await AdvanceTracker.get_advance(db_session, overdue.id)).status == AdvanceStatus.EXPIRED
    assert (await AdvanceTracker.get_advance(db_session, used_up.id)).status == AdvanceStatus.FULLY_UTILIZED
    assert (await AdvanceTracker.get_advance(db_session, current.id)).status == AdvanceStatus.OPEN

    # Second sweep finds nothing new
    assert await AdvanceTracker.expire_overdue_advances(db_session, now=later) == []


@pytest.mark.asyncio
async def test_list_advances_filters_on_derived_status(db_session, employee, other_employee):
    short = await AdvanceTracker.issue_advance(
        db_session, employee.id, "300", AdvancePurpose.TRAVEL, validity_days=5, now=NOW
    )
    partial = await AdvanceTracker.issue_advance(
        db_session, employee.id, "300", AdvancePurpose.PROJECT, now=NOW + timedelta(hours=1)
    )
    await AdvanceTracker.apply_utilization(db_session, partial.id, "100", now=NOW + timedelta(hours=2))
    await AdvanceTracker.issue_advance(
        db_session, other_employee.id, "50", AdvancePurpose.TRAVEL, now=NOW + timedelta(hours=3)
    )

    later = NOW + timedelta(days=10)
    advances, total = await AdvanceTracker.list_advances(db_session, status=AdvanceStatus.EXPIRED, now=later)
    assert total == 1 and advances[0].id == short.id

    advances, total = await AdvanceTracker.list_advances(db_session, status=AdvanceStatus.OPEN, now=later)
    assert total == 1 and advances[0].employee_id == other_employee.id

    advances, total = await AdvanceTracker.list_advances(
        db_session, employee_id=employee.id, purpose=AdvancePurpose.PROJECT, now=later
    )
    assert [a.id for a in advances] == [partial.id]

    advances, total = await AdvanceTracker.list_advances(db_session, now=later)
    assert total == 3
    # Newest first
    assert advances[0].employee_id == other_employee.id


@pytest.mark.asyncio
async def test_employee_advances_exclude_closed(db_session, employee):
    kept = await AdvanceTracker.issue_advance(db_session, employee.id, "80", AdvancePurpose.PETTY_CASH, now=NOW)
    closed = await AdvanceTracker.issue_advance(db_session, employee.id, "20", AdvancePurpose.PETTY_CASH, now=NOW)
    await AdvanceTracker.close_advance(db_session, closed.id, now=NOW)

    everything = await AdvanceTracker.get_employee_advances(db_session, employee.id)
    assert len(everything) == 2

    live = await AdvanceTracker.get_employee_advances(db_session, employee.id, include_closed=False)
    assert [a.id for a in live] == [kept.id]


@pytest.mark.asyncio
async def test_return_after_linked_cash_return_settles_only_the_rest(db_session, employee):
    advance = await AdvanceTracker.issue_advance(db_session, employee.id, "1000", AdvancePurpose.TRAVEL, now=NOW)
    await LedgerStore.append(
        db_session, employee.id,
        EntryDraft(entry_type=EntryType.CASH_RETURN, amount="400", related_advance_id=advance.id),
        now=NOW
    )
    advance = await AdvanceTracker.get_advance(db_session, advance.id)
    assert advance.returned_amount == Decimal("400.00")
    assert advance.remaining_balance == Decimal("600.00")

    advance = await AdvanceTracker.return_advance(db_session, advance.id, now=NOW)
    assert advance.status == AdvanceStatus.CLOSED
    assert advance.returned_amount == Decimal("1000.00")

    result = await db_session.execute(
        select(LedgerEntry.amount)
        .where(LedgerEntry.entry_type == EntryType.CASH_RETURN)
        .order_by(LedgerEntry.sequence)
    )
    assert result.scalars().all() == [Decimal("400.00"), Decimal("600.00")]

    summary = await BalanceAggregator.summarize(db_session, employee.id, now=NOW)
    assert summary.current_balance == Decimal("0.00")
    assert summary.total_debits == Decimal("1000.00")


@pytest.mark.asyncio
async def test_partial_return_keeps_advance_open(db_session, employee, finance_user):
    advance = await AdvanceTracker.issue_advance(db_session, employee.id, "1000", AdvancePurpose.TRAVEL, now=NOW)
    await AdvanceTracker.apply_utilization(db_session, advance.id, "200", now=NOW)

    advance = await AdvanceTracker.return_advance(
        db_session, advance.id, actor_id=finance_user.id,
        return_type=AdvanceReturnType.PARTIAL, return_amount="300", now=NOW
    )
    assert advance.status == AdvanceStatus.PARTIALLY_UTILIZED
    assert advance.closed_at is None
    assert advance.utilized_amount == Decimal("200.00")
    assert advance.returned_amount == Decimal("300.00")
    assert advance.remaining_balance == Decimal("500.00")

    account = await LedgerStore.get_account(db_session, employee.id)
    assert account.current_balance == Decimal("500.00")

    # Still open for spending
    advance = await AdvanceTracker.apply_utilization(db_session, advance.id, "500", now=NOW)
    assert advance.status == AdvanceStatus.FULLY_UTILIZED

    result = await db_session.execute(select(AuditLog).where(AuditLog.action == AuditAction.ADVANCE_RETURNED))
    event = result.scalar_one()
    assert event.meta_data["return_type"] == "partial"
    assert event.meta_data["returned_amount"] == "300.00"
    assert event.meta_data["advance_remaining"] == "500.00"


@pytest.mark.asyncio
async def test_return_larger_than_remaining_is_rejected(db_session, employee):
    advance = await AdvanceTracker.issue_advance(db_session, employee.id, "1000", AdvancePurpose.TRAVEL, now=NOW)
    await AdvanceTracker.apply_utilization(db_session, advance.id, "700", now=NOW)

    with pytest.raises(OverUtilizationError) as exc:
        await AdvanceTracker.return_advance(
            db_session, advance.id, return_type=AdvanceReturnType.PARTIAL, return_amount="301", now=NOW
        )
    assert exc.value.details["remaining_balance"] == "300.00"

    with pytest.raises(OverUtilizationError):
        await AdvanceTracker.return_advance(db_session, advance.id, return_amount="500", now=NOW)
    with pytest.raises(InvalidAmountError):
        await AdvanceTracker.return_advance(db_session, advance.id, return_amount="100", now=NOW)
    with pytest.raises(InvalidAmountError):
        await AdvanceTracker.return_advance(db_session, advance.id, return_type=AdvanceReturnType.PARTIAL, now=NOW)

    advance = await AdvanceTracker.get_advance(db_session, advance.id)
    assert advance.returned_amount == Decimal("0.00")
    assert advance.status == AdvanceStatus.PARTIALLY_UTILIZED
    account = await LedgerStore.get_account(db_session, employee.id)
    assert account.current_balance == Decimal("300.00")
