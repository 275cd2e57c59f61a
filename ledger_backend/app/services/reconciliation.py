"""
Reconciliation Engine.

Diagnostic recomputation of an employee ledger over a date range.
Discrepancies come back as findings and are never corrected here.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ledger_backend.app.domain.ledger.reconciliation import reconcile
from ledger_backend.app.domain.ledger.types import ReconciliationSummary
from ledger_backend.app.services.ledger_store import LedgerStore


class ReconciliationEngine:

    @staticmethod
    async def reconcile(
        db: AsyncSession,
        employee_id: int,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> ReconciliationSummary:
        await LedgerStore.get_employee(db, employee_id)
        snapshot = await LedgerStore.load_snapshot(db, employee_id)
        return reconcile(snapshot, date_from, date_to)
