"""
Preview Engine.

Dry-runs a draft entry on a clone of the employee's ledger through the
same posting and aggregation code the ledger store uses. Never writes.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ledger_backend.app.domain.ledger.aggregation import summarize
from ledger_backend.app.domain.ledger.posting import post_draft
from ledger_backend.app.domain.ledger.types import ZERO, EntryDraft, LedgerPreview
from ledger_backend.app.models.ledger_enums import EntryType, ApprovalStatus
from ledger_backend.app.services.ledger_store import LedgerStore


class PreviewEngine:

    @staticmethod
    async def preview(
        db: AsyncSession,
        employee_id: int,
        draft: EntryDraft,
        now: Optional[datetime] = None,
    ) -> LedgerPreview:
        """
        Simulate appending `draft` and return the resulting summary.

        Validation errors are raised exactly as append would raise them.
        """
        now = now or datetime.utcnow()
        await LedgerStore.get_employee(db, employee_id)
        snapshot = await LedgerStore.load_snapshot(db, employee_id)
        existing_entries = len(snapshot.transactional_entries)

        simulated = snapshot.clone()
        posting = post_draft(simulated, draft, now)
        summary = summarize(simulated, now)

        before = posting.balance_before
        after = posting.balance_after
        will_create_deficit = after < ZERO and after < before

        warnings = []
        if will_create_deficit:
            if before >= ZERO:
                warnings.append(f"This entry would create a deficit of {-after}")
            else:
                warnings.append(f"This entry would increase the deficit from {-before} to {-after}")
        if posting.entry.approval_status == ApprovalStatus.PENDING:
            warnings.append("Entry will be PENDING and will not affect the balance until approved")

        advance = posting.utilized_advance
        remaining_after = None
        if draft.related_advance_id is not None:
            linked = simulated.find_advance(draft.related_advance_id)
            remaining_after = linked.remaining_balance
            if advance is not None and remaining_after == ZERO:
                if draft.entry_type == EntryType.CASH_RETURN:
                    warnings.append(f"Advance {advance.id} would have nothing left to return")
                else:
                    warnings.append(f"Advance {advance.id} would be fully utilized")

        if draft.entry_type == EntryType.OPENING_BALANCE and existing_entries:
            warnings.append(
                f"Setting the opening balance will recompute {existing_entries} existing running balances"
            )

        return LedgerPreview(
            summary=summary,
            entry_type=posting.entry.entry_type,
            direction=posting.entry.direction,
            amount=posting.entry.amount,
            current_balance=before,
            new_balance=after,
            balance_change=after - before,
            will_create_deficit=will_create_deficit,
            deficit_amount=-after if after < ZERO else ZERO,
            warnings=warnings,
            linked_advance_id=draft.related_advance_id,
            advance_remaining_before=posting.advance_remaining_before,
            advance_remaining_after=remaining_after,
        )
