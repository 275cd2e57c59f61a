"""
Concurrency Tests.

Validates that concurrent writes to one ledger are serialized and that a
writer holding stale state is refused.
"""

import pytest
import asyncio
from datetime import datetime
from decimal import Decimal
from sqlalchemy import select

from ledger_backend.app.core.exceptions import ConcurrentModificationError
from ledger_backend.app.domain.ledger.posting import post_draft
from ledger_backend.app.domain.ledger.types import EntryDraft
from ledger_backend.app.models.ledger_entry import LedgerEntry
from ledger_backend.app.models.ledger_enums import EntryType, AdvancePurpose
from ledger_backend.app.services.advance_tracker import AdvanceTracker
from ledger_backend.app.services.ledger_locks import employee_write_lock
from ledger_backend.app.services.ledger_store import LedgerStore

NOW = datetime(2025, 3, 1, 9, 0, 0)


async def _append_in_own_session(session_factory, employee_id, draft):
    async with session_factory() as session:
        return await LedgerStore.append(session, employee_id, draft, now=NOW)


@pytest.mark.asyncio
async def test_concurrent_appends_are_serialized(db_session, session_factory, employee):
    """Ten simultaneous writers: unique sequences and a consistent final balance."""
    drafts = [EntryDraft(entry_type=EntryType.REIMBURSEMENT, amount="10") for _ in range(10)]
    rows = await asyncio.gather(*[_append_in_own_session(session_factory, employee.id, d) for d in drafts])

    assert sorted(r.sequence for r in rows) == list(range(1, 11))

    result = await db_session.execute(
        select(LedgerEntry).where(LedgerEntry.employee_id == employee.id).order_by(LedgerEntry.sequence)
    )
    entries = result.scalars().all()
    assert [e.running_balance for e in entries] == [Decimal(10 * i) for i in range(1, 11)]

    account = await LedgerStore.get_account(db_session, employee.id)
    assert account.current_balance == Decimal("100.00")
    assert account.version == 10


@pytest.mark.asyncio
async def test_concurrent_expenses_cannot_overdraw_advance(db_session, session_factory, employee):
    advance = await AdvanceTracker.issue_advance(db_session, employee.id, "100", AdvancePurpose.TRAVEL, now=NOW)
    drafts = [
        EntryDraft(entry_type=EntryType.EXPENSE, amount="60", related_advance_id=advance.id)
        for _ in range(2)
    ]
    results = await asyncio.gather(
        *[_append_in_own_session(session_factory, employee.id, d) for d in drafts],
        return_exceptions=True
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    advance = await AdvanceTracker.get_advance(db_session, advance.id)
    assert advance.utilized_amount == Decimal("60.00")


@pytest.mark.asyncio
async def test_writer_waits_for_lock(session_factory, employee):
    draft = EntryDraft(entry_type=EntryType.REIMBURSEMENT, amount="5")
    async with employee_write_lock(employee.id):
        task = asyncio.create_task(_append_in_own_session(session_factory, employee.id, draft))
        await asyncio.sleep(0.05)
        assert not task.done()
    row = await task
    assert row.sequence == 1


@pytest.mark.asyncio
async def test_stale_snapshot_is_refused(db_session, session_factory, employee):
    await LedgerStore.append(
        db_session, employee.id, EntryDraft(entry_type=EntryType.REIMBURSEMENT, amount="20"), now=NOW
    )
    stale = await LedgerStore.load_snapshot(db_session, employee.id)

    # Another writer moves the ledger on
    await _append_in_own_session(session_factory, employee.id, EntryDraft(entry_type=EntryType.EXPENSE, amount="5"))

    draft = EntryDraft(entry_type=EntryType.EXPENSE, amount="1")
    posting = post_draft(stale, draft, NOW)
    with pytest.raises(ConcurrentModificationError):
        await LedgerStore.persist(db_session, stale, posting, draft, None, NOW)
    await db_session.rollback()

    account = await LedgerStore.get_account(db_session, employee.id)
    assert account.current_balance == Decimal("15.00")
    assert account.version == 2
