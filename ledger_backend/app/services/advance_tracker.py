"""
Advance Tracker Service.

Issues cash advances, draws expenses against them and manages their
lifecycle. Every change that touches money goes through the ledger store,
so an advance and its ledger entry always commit together.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, List, Optional, Tuple

from sqlalchemy import select, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_backend.app.core.config import settings
from ledger_backend.app.core.exceptions import (
    AdvanceNotFoundError, AdvanceClosedError, OverUtilizationError, InvalidAmountError
)
from ledger_backend.app.domain.ledger.posting import (
    post_draft, derive_advance_status, to_money, close_advance as close_advance_state
)
from ledger_backend.app.domain.ledger.types import EntryDraft
from ledger_backend.app.models.advance import Advance
from ledger_backend.app.models.ledger_enums import (
    EntryType, ApprovalStatus, AdvanceStatus, AdvancePurpose, AdvanceReturnType
)
from ledger_backend.app.services.audit import log_event, AuditAction, AuditEntity
from ledger_backend.app.services.ledger_locks import employee_write_lock
from ledger_backend.app.services.ledger_store import LedgerStore, advance_state

logger = logging.getLogger(__name__)

# Stored statuses an advance can still expire from
_LIVE_STATUSES = (AdvanceStatus.OPEN, AdvanceStatus.PARTIALLY_UTILIZED)


@dataclass
class AdvanceView:
    id: int
    employee_id: int
    amount: Decimal
    utilized_amount: Decimal
    returned_amount: Decimal
    remaining_balance: Decimal
    utilization_percentage: Decimal
    status: AdvanceStatus
    purpose: AdvancePurpose
    purpose_description: Optional[str]
    issued_date: datetime
    expires_at: Optional[datetime]
    closed_at: Optional[datetime]
    is_expired: bool
    days_outstanding: int
    issued_by: Optional[int]
    ledger_entry_id: Optional[int]
    notes: Optional[str]


class AdvanceTracker:

    @staticmethod
    def view(advance: Advance, now: Optional[datetime] = None) -> AdvanceView:
        """Read view of an advance with status derived at `now`."""
        now = now or datetime.utcnow()
        state = advance_state(advance)
        status = derive_advance_status(state, now)
        return AdvanceView(
            id=advance.id,
            employee_id=advance.employee_id,
            amount=state.amount,
            utilized_amount=state.utilized_amount,
            returned_amount=state.returned_amount,
            remaining_balance=state.remaining_balance,
            utilization_percentage=state.utilization_percentage,
            status=status,
            purpose=advance.purpose,
            purpose_description=advance.purpose_description,
            issued_date=advance.issued_date,
            expires_at=advance.expires_at,
            closed_at=advance.closed_at,
            is_expired=status == AdvanceStatus.EXPIRED,
            days_outstanding=max((now - advance.issued_date).days, 0),
            issued_by=advance.issued_by,
            ledger_entry_id=advance.ledger_entry_id,
            notes=advance.notes,
        )

    @staticmethod
    async def get_advance(db: AsyncSession, advance_id: int) -> Advance:
        result = await db.execute(
            select(Advance)
            .where(Advance.id == advance_id)
            .execution_options(populate_existing=True)
        )
        advance = result.scalar_one_or_none()
        if not advance:
            raise AdvanceNotFoundError(advance_id)
        return advance

    @staticmethod
    async def issue_advance(
        db: AsyncSession,
        employee_id: int,
        amount: Any,
        purpose: AdvancePurpose,
        actor_id: Optional[int] = None,
        actor_username: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        validity_days: Optional[int] = None,
        purpose_description: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Advance:
        """
        Issue an advance and its ADVANCE_ISSUE credit in one append.

        Without an explicit expiry, `validity_days` (or the configured
        default) sets one relative to now.
        """
        now = now or datetime.utcnow()
        if expires_at is None:
            days = validity_days or settings.advance_default_validity_days
            if days:
                expires_at = now + timedelta(days=days)

        draft = EntryDraft(
            entry_type=EntryType.ADVANCE_ISSUE,
            amount=amount,
            description=f"Advance issued ({purpose.value})",
            notes=notes,
            purpose=purpose,
            purpose_description=purpose_description,
            expires_at=expires_at,
        )
        entry = await LedgerStore.append(
            db, employee_id, draft,
            actor_id=actor_id, actor_username=actor_username, now=now
        )
        return await AdvanceTracker.get_advance(db, entry.related_advance_id)

    @staticmethod
    async def apply_utilization(
        db: AsyncSession,
        advance_id: int,
        expense_amount: Any,
        actor_id: Optional[int] = None,
        actor_username: Optional[str] = None,
        description: Optional[str] = None,
        category: Optional[str] = None,
        approval_status: ApprovalStatus = ApprovalStatus.APPROVED,
        now: Optional[datetime] = None,
    ) -> Advance:
        """
        Post an EXPENSE against an advance.

        Raises:
            OverUtilizationError: expense exceeds the remaining balance
            AdvanceClosedError: advance is CLOSED or EXPIRED
        """
        advance = await AdvanceTracker.get_advance(db, advance_id)
        draft = EntryDraft(
            entry_type=EntryType.EXPENSE,
            amount=expense_amount,
            related_advance_id=advance_id,
            description=description,
            category=category,
            approval_status=approval_status,
        )
        await LedgerStore.append(
            db, advance.employee_id, draft,
            actor_id=actor_id, actor_username=actor_username, now=now
        )
        return await AdvanceTracker.get_advance(db, advance_id)

    @staticmethod
    async def return_advance(
        db: AsyncSession,
        advance_id: int,
        actor_id: Optional[int] = None,
        actor_username: Optional[str] = None,
        notes: Optional[str] = None,
        return_type: AdvanceReturnType = AdvanceReturnType.FULL,
        return_amount: Any = None,
        now: Optional[datetime] = None,
    ) -> Advance:
        """
        Post a CASH_RETURN against an advance.

        FULL returns whatever is left and closes the advance; a fully
        utilized advance is closed without a ledger entry. PARTIAL returns
        `return_amount` and leaves the advance open with a smaller balance.

        Raises:
            OverUtilizationError: return exceeds the remaining balance
            InvalidAmountError: missing partial amount, or a full return
                amount that is not the remaining balance
            AdvanceClosedError: advance is CLOSED
        """
        now = now or datetime.utcnow()
        advance = await AdvanceTracker.get_advance(db, advance_id)
        employee_id = advance.employee_id
        closing = return_type == AdvanceReturnType.FULL

        async with employee_write_lock(employee_id):
            try:
                await LedgerStore.get_employee(db, employee_id)
                snapshot = await LedgerStore.load_snapshot(db, employee_id)
                state = snapshot.find_advance(advance_id)
                if derive_advance_status(state, now) == AdvanceStatus.CLOSED:
                    raise AdvanceClosedError(advance_id, AdvanceStatus.CLOSED.value)

                remaining = state.remaining_balance
                if closing:
                    returned = remaining
                    if return_amount is not None:
                        requested = to_money(return_amount)
                        if requested > remaining:
                            raise OverUtilizationError(advance_id, requested, remaining)
                        if requested != remaining:
                            raise InvalidAmountError(
                                return_amount, f"A full return must equal the remaining balance {remaining}"
                            )
                else:
                    returned = to_money(return_amount)

                posting = None
                if returned > 0:
                    draft = EntryDraft(
                        entry_type=EntryType.CASH_RETURN,
                        amount=returned,
                        related_advance_id=advance_id,
                        description=f"Return of advance {advance_id}",
                        notes=notes,
                    )
                    posting = post_draft(snapshot, draft, now)
                if closing:
                    close_advance_state(snapshot, advance_id)

                if posting is not None:
                    await LedgerStore.persist(db, snapshot, posting, draft, actor_id, now)
                else:
                    await LedgerStore.claim_version(db, snapshot, now)
                if closing:
                    await LedgerStore.write_advance(db, state, now, closed=True)

                await log_event(
                    db, AuditAction.ADVANCE_RETURNED,
                    actor_id=actor_id, actor_username=actor_username,
                    target_employee_id=employee_id,
                    entity_type=AuditEntity.ADVANCE, entity_id=advance_id,
                    metadata={
                        "return_type": return_type.value,
                        "returned_amount": str(returned),
                        "advance_remaining": str(state.remaining_balance),
                        "ledger_entry_id": posting.entry.id if posting else None,
                        "balance_after": str(snapshot.current_balance),
                    },
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        if closing:
            logger.info("Advance %s returned (%s) and closed", advance_id, returned)
        else:
            logger.info(
                "Advance %s partially returned (%s), %s left", advance_id, returned, state.remaining_balance
            )
        return await AdvanceTracker.get_advance(db, advance_id)

    @staticmethod
    async def close_advance(
        db: AsyncSession,
        advance_id: int,
        actor_id: Optional[int] = None,
        actor_username: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Advance:
        """
        Close an advance without touching the ledger balance.

        No further expenses can draw on it.
        """
        now = now or datetime.utcnow()
        advance = await AdvanceTracker.get_advance(db, advance_id)
        employee_id = advance.employee_id

        async with employee_write_lock(employee_id):
            try:
                snapshot = await LedgerStore.load_snapshot(db, employee_id)
                state = close_advance_state(snapshot, advance_id)

                await LedgerStore.claim_version(db, snapshot, now)
                await LedgerStore.write_advance(db, state, now, closed=True)

                await log_event(
                    db, AuditAction.ADVANCE_CLOSED,
                    actor_id=actor_id, actor_username=actor_username,
                    target_employee_id=employee_id,
                    entity_type=AuditEntity.ADVANCE, entity_id=advance_id,
                    metadata={
                        "remaining_balance": str(state.remaining_balance),
                        "notes": notes,
                    },
                )
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        logger.info("Advance %s closed with %s unused", advance_id, state.remaining_balance)
        return await AdvanceTracker.get_advance(db, advance_id)

    @staticmethod
    async def expire_overdue_advances(
        db: AsyncSession,
        actor_id: Optional[int] = None,
        actor_username: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[int]:
        """
        Persist EXPIRED on every advance past its expiry with money left.

        Runs one transaction per employee ledger. Returns the expired ids.
        """
        now = now or datetime.utcnow()
        result = await db.execute(
            select(Advance.employee_id)
            .where(
                Advance.status.in_(_LIVE_STATUSES),
                Advance.expires_at.is_not(None),
                Advance.expires_at < now
            )
            .distinct()
        )
        employee_ids = sorted(result.scalars().all())

        expired: List[int] = []
        for employee_id in employee_ids:
            async with employee_write_lock(employee_id):
                try:
                    snapshot = await LedgerStore.load_snapshot(db, employee_id)
                    changed = []
                    for state in snapshot.advances:
                        status = derive_advance_status(state, now)
                        if status == AdvanceStatus.EXPIRED and state.status != AdvanceStatus.EXPIRED:
                            state.status = status
                            changed.append(state)
                    if not changed:
                        continue

                    await LedgerStore.claim_version(db, snapshot, now)
                    for state in changed:
                        await LedgerStore.write_advance(db, state, now)
                    await log_event(
                        db, AuditAction.ADVANCES_EXPIRED,
                        actor_id=actor_id, actor_username=actor_username,
                        target_employee_id=employee_id,
                        entity_type=AuditEntity.ADVANCE,
                        metadata={"advance_ids": [s.id for s in changed]},
                    )
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
            expired.extend(s.id for s in changed)

        if expired:
            logger.info("Expired %d overdue advances", len(expired))
        return expired

    @staticmethod
    async def list_advances(
        db: AsyncSession,
        employee_id: Optional[int] = None,
        status: Optional[AdvanceStatus] = None,
        purpose: Optional[AdvancePurpose] = None,
        page: int = 1,
        page_size: int = 50,
        now: Optional[datetime] = None,
    ) -> Tuple[List[Advance], int]:
        """
        Filtered advances, newest first.

        The status filter matches the derived status, so an overdue advance
        not yet swept by expire_overdue_advances is listed as EXPIRED.
        """
        now = now or datetime.utcnow()
        conditions = []
        if employee_id is not None:
            conditions.append(Advance.employee_id == employee_id)
        if purpose is not None:
            conditions.append(Advance.purpose == purpose)

        overdue = and_(Advance.expires_at.is_not(None), Advance.expires_at < now)
        if status == AdvanceStatus.EXPIRED:
            conditions.append(or_(
                Advance.status == AdvanceStatus.EXPIRED,
                and_(Advance.status.in_(_LIVE_STATUSES), overdue)
            ))
        elif status in _LIVE_STATUSES:
            conditions.append(and_(Advance.status == status, ~overdue))
        elif status is not None:
            conditions.append(Advance.status == status)

        total = await db.scalar(select(func.count(Advance.id)).where(*conditions))
        result = await db.execute(
            select(Advance)
            .where(*conditions)
            .order_by(Advance.issued_date.desc(), Advance.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return result.scalars().all(), total or 0

    @staticmethod
    async def get_employee_advances(
        db: AsyncSession,
        employee_id: int,
        include_closed: bool = True,
    ) -> List[Advance]:
        await LedgerStore.get_employee(db, employee_id)
        query = select(Advance).where(Advance.employee_id == employee_id)
        if not include_closed:
            query = query.where(Advance.status != AdvanceStatus.CLOSED)
        result = await db.execute(query.order_by(Advance.issued_date.desc(), Advance.id.desc()))
        return result.scalars().all()

    @staticmethod
    def views(advances: List[Advance], now: Optional[datetime] = None) -> List[AdvanceView]:
        now = now or datetime.utcnow()
        return [AdvanceTracker.view(a, now) for a in advances]

