"""
Opening Balance Manager.

Sets the genesis balance of an employee ledger. Setting it after entries
exist replays every running balance in the same transaction and is
audited as OPENING_BALANCE_REPLAYED.
"""

from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_backend.app.domain.ledger.types import EntryDraft
from ledger_backend.app.models.ledger_enums import EntryType
from ledger_backend.app.models.opening_balance import OpeningBalance
from ledger_backend.app.services.ledger_store import LedgerStore


class OpeningBalanceManager:

    @staticmethod
    async def set_opening_balance(
        db: AsyncSession,
        employee_id: int,
        amount: Any,
        effective_date: Optional[date] = None,
        actor_id: Optional[int] = None,
        actor_username: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OpeningBalance:
        """
        Record the opening balance. Zero and negative amounts are allowed.

        Raises:
            OpeningBalanceAlreadySetError: one already exists for the employee
        """
        draft = EntryDraft(
            entry_type=EntryType.OPENING_BALANCE,
            amount=amount,
            description="Opening balance",
            notes=notes,
            effective_date=effective_date,
        )
        await LedgerStore.append(
            db, employee_id, draft,
            actor_id=actor_id, actor_username=actor_username, now=now
        )
        return await OpeningBalanceManager.get_opening_balance(db, employee_id)

    @staticmethod
    async def get_opening_balance(db: AsyncSession, employee_id: int) -> Optional[OpeningBalance]:
        result = await db.execute(
            select(OpeningBalance).where(OpeningBalance.employee_id == employee_id)
        )
        return result.scalar_one_or_none()
