"""
Preview tests.

A preview must predict exactly what append would produce, and write nothing.
"""

import pytest
from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from sqlalchemy import select, func

from ledger_backend.app.core.exceptions import OverUtilizationError, EmployeeNotFoundError
from ledger_backend.app.domain.ledger.types import EntryDraft
from ledger_backend.app.models.ledger_entry import LedgerEntry
from ledger_backend.app.models.ledger_enums import EntryType, ApprovalStatus, AdvancePurpose
from ledger_backend.app.services.advance_tracker import AdvanceTracker
from ledger_backend.app.services.balance_aggregator import BalanceAggregator
from ledger_backend.app.services.ledger_store import LedgerStore
from ledger_backend.app.services.preview import PreviewEngine

NOW = datetime(2025, 3, 1, 9, 0, 0)


async def _entry_count(db):
    return await db.scalar(select(func.count(LedgerEntry.id)))


@pytest.mark.asyncio
async def test_preview_matches_append(db_session, employee):
    advance = await AdvanceTracker.issue_advance(db_session, employee.id, "15000", AdvancePurpose.TRAVEL, now=NOW)
    draft = EntryDraft(entry_type=EntryType.EXPENSE, amount="2500", related_advance_id=advance.id)

    preview = await PreviewEngine.preview(db_session, employee.id, draft, now=NOW)
    assert preview.current_balance == Decimal("15000.00")
    assert preview.new_balance == Decimal("12500.00")
    assert preview.balance_change == Decimal("-2500.00")
    assert preview.advance_remaining_before == Decimal("15000.00")
    assert preview.advance_remaining_after == Decimal("12500.00")
    assert preview.will_create_deficit is False
    assert preview.warnings == []

    await LedgerStore.append(db_session, employee.id, draft, now=NOW)
    actual = await BalanceAggregator.summarize(db_session, employee.id, now=NOW)
    assert preview.summary == actual


@pytest.mark.asyncio
async def test_preview_writes_nothing(db_session, employee):
    await LedgerStore.append(
        db_session, employee.id, EntryDraft(entry_type=EntryType.REIMBURSEMENT, amount="100"), now=NOW
    )
    account_before = await LedgerStore.get_account(db_session, employee.id)
    version_before = account_before.version

    await PreviewEngine.preview(
        db_session, employee.id, EntryDraft(entry_type=EntryType.EXPENSE, amount="30"), now=NOW
    )

    assert await _entry_count(db_session) == 1
    account = await LedgerStore.get_account(db_session, employee.id)
    assert account.version == version_before
    assert account.current_balance == Decimal("100.00")


@pytest.mark.asyncio
async def test_preview_warns_on_deficit(db_session, employee):
    await LedgerStore.append(
        db_session, employee.id, EntryDraft(entry_type=EntryType.REIMBURSEMENT, amount="100"), now=NOW
    )
    preview = await PreviewEngine.preview(
        db_session, employee.id, EntryDraft(entry_type=EntryType.EXPENSE, amount="250"), now=NOW
    )
    assert preview.will_create_deficit is True
    assert preview.deficit_amount == Decimal("150.00")
    assert preview.summary.is_in_deficit is True
    assert "create a deficit of 150.00" in preview.warnings[0]


@pytest.mark.asyncio
async def test_preview_of_pending_entry(db_session, employee):
    preview = await PreviewEngine.preview(
        db_session, employee.id,
        EntryDraft(entry_type=EntryType.EXPENSE, amount="40", approval_status=ApprovalStatus.PENDING),
        now=NOW
    )
    assert preview.new_balance == preview.current_balance == Decimal("0.00")
    assert preview.summary.pending_expenses == Decimal("40.00")
    assert any("PENDING" in w for w in preview.warnings)


@pytest.mark.asyncio
async def test_preview_new_advance(db_session, employee):
    preview = await PreviewEngine.preview(
        db_session, employee.id,
        EntryDraft(entry_type=EntryType.ADVANCE_ISSUE, amount="800", purpose=AdvancePurpose.PROJECT,
                   expires_at=NOW + timedelta(days=30)),
        now=NOW
    )
    assert preview.new_balance == Decimal("800.00")
    assert preview.summary.open_advance_count == 1
    assert preview.summary.open_advances[0].id is None
    assert preview.summary.total_open_advances == Decimal("800.00")


@pytest.mark.asyncio
async def test_preview_full_utilization_and_late_opening_balance(db_session, employee):
    advance = await AdvanceTracker.issue_advance(db_session, employee.id, "300", AdvancePurpose.TRAVEL, now=NOW)

    preview = await PreviewEngine.preview(
        db_session, employee.id,
        EntryDraft(entry_type=EntryType.EXPENSE, amount="300", related_advance_id=advance.id),
        now=NOW
    )
    assert f"Advance {advance.id} would be fully utilized" in preview.warnings

    preview = await PreviewEngine.preview(
        db_session, employee.id,
        EntryDraft(entry_type=EntryType.OPENING_BALANCE, amount="50", effective_date=date(2025, 1, 1)),
        now=NOW
    )
    assert preview.new_balance == Decimal("350.00")
    assert preview.summary.opening_balance == Decimal("50.00")
    assert any("recompute 1 existing" in w for w in preview.warnings)


@pytest.mark.asyncio
async def test_preview_raises_like_append(db_session, employee):
    advance = await AdvanceTracker.issue_advance(db_session, employee.id, "100", AdvancePurpose.TRAVEL, now=NOW)
    draft = EntryDraft(entry_type=EntryType.EXPENSE, amount="150", related_advance_id=advance.id)

    with pytest.raises(OverUtilizationError):
        await PreviewEngine.preview(db_session, employee.id, draft, now=NOW)
    with pytest.raises(OverUtilizationError):
        await LedgerStore.append(db_session, employee.id, draft, now=NOW)

    with pytest.raises(EmployeeNotFoundError):
        await PreviewEngine.preview(db_session, 999, draft, now=NOW)


@pytest.mark.asyncio
@pytest.mark.parametrize("make_draft", [
    lambda advance_id: EntryDraft(entry_type=EntryType.REIMBURSEMENT, amount="250", category="travel"),
    lambda advance_id: EntryDraft(entry_type=EntryType.CASH_RETURN, amount="400", related_advance_id=advance_id),
    lambda advance_id: EntryDraft(entry_type=EntryType.CASH_RETURN, amount="75"),
    lambda advance_id: EntryDraft(
        entry_type=EntryType.OPENING_BALANCE, amount="-120", effective_date=date(2025, 1, 1)
    ),
], ids=["reimbursement", "linked-cash-return", "cash-return", "opening-balance"])
async def test_preview_summary_matches_append_per_entry_type(db_session, employee, make_draft):
    advance = await AdvanceTracker.issue_advance(db_session, employee.id, "1000", AdvancePurpose.TRAVEL, now=NOW)
    draft = make_draft(advance.id)

    preview = await PreviewEngine.preview(db_session, employee.id, draft, now=NOW)
    await LedgerStore.append(db_session, employee.id, draft, now=NOW)
    actual = await BalanceAggregator.summarize(db_session, employee.id, now=NOW)

    assert preview.summary == actual
    assert preview.new_balance == actual.current_balance


@pytest.mark.asyncio
async def test_preview_summary_matches_append_for_advance_issue(db_session, employee):
    """Everything but the not-yet-assigned advance id matches."""
    await LedgerStore.append(
        db_session, employee.id, EntryDraft(entry_type=EntryType.REIMBURSEMENT, amount="100"), now=NOW
    )
    draft = EntryDraft(
        entry_type=EntryType.ADVANCE_ISSUE, amount="800", purpose=AdvancePurpose.PROJECT,
        expires_at=NOW + timedelta(days=30)
    )

    preview = await PreviewEngine.preview(db_session, employee.id, draft, now=NOW)
    await LedgerStore.append(db_session, employee.id, draft, now=NOW)
    actual = await BalanceAggregator.summarize(db_session, employee.id, now=NOW)

    assert preview.summary.open_advances[0].id is None
    assert actual.open_advances[0].id is not None
    without_ids = replace(actual, open_advances=[replace(a, id=None) for a in actual.open_advances])
    assert preview.summary == without_ids
