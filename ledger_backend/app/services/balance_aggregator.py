"""
Balance Aggregator Service.

Read-only views over employee ledgers: the cached balance pointer, the
full balance summary and organization-wide statistics. Nothing here writes.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_backend.app.core.config import settings
from ledger_backend.app.domain.ledger.aggregation import summarize, compute_statistics
from ledger_backend.app.domain.ledger.types import (
    BalanceSummary, LedgerStatistics, AccountBalance
)
from ledger_backend.app.models.advance import Advance
from ledger_backend.app.models.employee import Employee
from ledger_backend.app.models.ledger_account import LedgerAccount
from ledger_backend.app.models.ledger_enums import AdvanceStatus
from ledger_backend.app.services.ledger_store import LedgerStore, advance_state


class BalanceAggregator:

    @staticmethod
    async def get_balance(db: AsyncSession, employee_id: int) -> LedgerAccount:
        """
        The balance pointer for an employee.

        An employee with no ledger activity yet gets an unsaved zero account.
        """
        await LedgerStore.get_employee(db, employee_id)
        account = await LedgerStore.get_account(db, employee_id)
        if account:
            return account
        return LedgerAccount(
            employee_id=employee_id,
            current_balance=Decimal("0.00"),
            opening_balance=Decimal("0.00"),
            opening_balance_set=False,
            entry_count=0,
            version=0,
            last_transaction_at=None,
        )

    @staticmethod
    async def summarize(
        db: AsyncSession,
        employee_id: int,
        now: Optional[datetime] = None,
    ) -> BalanceSummary:
        await LedgerStore.get_employee(db, employee_id)
        snapshot = await LedgerStore.load_snapshot(db, employee_id)
        return summarize(snapshot, now or datetime.utcnow())

    @staticmethod
    async def statistics(
        db: AsyncSession,
        now: Optional[datetime] = None,
        top_n: Optional[int] = None,
    ) -> LedgerStatistics:
        """Rollups across every employee that has a ledger account."""
        rows = await db.execute(
            select(LedgerAccount, Employee.full_name)
            .join(Employee, Employee.id == LedgerAccount.employee_id)
            .order_by(LedgerAccount.employee_id)
        )
        balances = [
            AccountBalance(
                employee_id=account.employee_id,
                employee_name=full_name,
                balance=Decimal(account.current_balance),
                last_transaction_at=account.last_transaction_at,
            )
            for account, full_name in rows.all()
        ]

        advances = await db.execute(
            select(Advance).where(Advance.status != AdvanceStatus.CLOSED).order_by(Advance.id)
        )
        return compute_statistics(
            balances,
            [advance_state(a) for a in advances.scalars().all()],
            now or datetime.utcnow(),
            top_n or settings.statistics_top_n,
        )
