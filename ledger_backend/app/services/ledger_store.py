"""
Ledger Store Service.

The only writer of ledger entries and ledger account rows. Every write runs
validate-compute-persist for one employee as a single transaction:

1. Take the per-employee write lock
2. Check the employee exists and is active
3. Load a snapshot of the ledger
4. Run the posting engine on the snapshot
5. Claim the account version (compare-and-set)
6. Persist the entry, any advance change, replayed balances and the pointer
7. Record the audit event and commit

Any failure rolls the whole transaction back.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_backend.app.core.exceptions import (
    LedgerError, EmployeeNotFoundError, LedgerEntryNotFoundError, ConcurrentModificationError
)
from ledger_backend.app.domain.ledger.posting import (
    post_draft, approve_entry as approve_posting, reject_entry as reject_posting
)
from ledger_backend.app.domain.ledger.types import (
    MONEY_PLACES, EntryDraft, EntryState, AdvanceState, LedgerSnapshot, Posting
)
from ledger_backend.app.models.employee import Employee
from ledger_backend.app.models.ledger_account import LedgerAccount
from ledger_backend.app.models.ledger_entry import LedgerEntry
from ledger_backend.app.models.advance import Advance
from ledger_backend.app.models.opening_balance import OpeningBalance
from ledger_backend.app.models.ledger_enums import EntryType, ApprovalStatus
from ledger_backend.app.schemas.ledger import LedgerFilters
from ledger_backend.app.services.audit import log_event, AuditAction, AuditEntity
from ledger_backend.app.services.ledger_locks import employee_write_lock

logger = logging.getLogger(__name__)


def _money(value) -> Decimal:
    return Decimal(value).quantize(MONEY_PLACES)


def entry_state(row: LedgerEntry) -> EntryState:
    return EntryState(
        id=row.id,
        sequence=row.sequence,
        entry_type=row.entry_type,
        direction=row.direction,
        amount=_money(row.amount),
        running_balance=_money(row.running_balance),
        approval_status=row.approval_status,
        created_at=row.created_at,
        related_advance_id=row.related_advance_id,
    )


def advance_state(row: Advance) -> AdvanceState:
    return AdvanceState(
        id=row.id,
        employee_id=row.employee_id,
        amount=_money(row.amount),
        utilized_amount=_money(row.utilized_amount or 0),
        returned_amount=_money(row.returned_amount or 0),
        status=row.status,
        purpose=row.purpose,
        issued_date=row.issued_date,
        expires_at=row.expires_at,
    )


class LedgerStore:

    @staticmethod
    async def get_employee(db: AsyncSession, employee_id: int) -> Employee:
        """Fetch an active employee or raise EmployeeNotFoundError."""
        result = await db.execute(select(Employee).where(Employee.id == employee_id))
        employee = result.scalar_one_or_none()
        if not employee or not employee.is_active:
            raise EmployeeNotFoundError(employee_id)
        return employee

    @staticmethod
    async def get_account(db: AsyncSession, employee_id: int) -> Optional[LedgerAccount]:
        result = await db.execute(
            select(LedgerAccount)
            .where(LedgerAccount.employee_id == employee_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def load_snapshot(db: AsyncSession, employee_id: int) -> LedgerSnapshot:
        """
        Read one employee's ledger into a detached snapshot.

        Rows are re-read from the database even if the session already holds
        them, so the version reflects the latest commit.
        """
        account = await LedgerStore.get_account(db, employee_id)

        entries = await db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.employee_id == employee_id)
            .order_by(LedgerEntry.sequence)
            .execution_options(populate_existing=True)
        )
        advances = await db.execute(
            select(Advance)
            .where(Advance.employee_id == employee_id)
            .order_by(Advance.id)
            .execution_options(populate_existing=True)
        )

        snapshot = LedgerSnapshot(
            employee_id=employee_id,
            entries=[entry_state(row) for row in entries.scalars().all()],
            advances=[advance_state(row) for row in advances.scalars().all()],
        )
        if account:
            snapshot.opening_balance = _money(account.opening_balance)
            snapshot.opening_balance_set = account.opening_balance_set
            snapshot.version = account.version
            snapshot.pointer_balance = _money(account.current_balance)
        return snapshot

    # Persistence steps

    @staticmethod
    async def claim_version(db: AsyncSession, snapshot: LedgerSnapshot, now: datetime) -> None:
        """
        Bump the account version the snapshot was read at.

        Raises ConcurrentModificationError when another writer committed
        since the snapshot was taken.
        """
        if not snapshot.has_account:
            db.add(LedgerAccount(
                employee_id=snapshot.employee_id,
                current_balance=snapshot.opening_balance,
                opening_balance=snapshot.opening_balance,
                version=1,
                created_at=now,
                updated_at=now,
            ))
            try:
                await db.flush()
            except IntegrityError:
                raise ConcurrentModificationError(snapshot.employee_id, 0)
            return

        result = await db.execute(
            update(LedgerAccount)
            .where(
                LedgerAccount.employee_id == snapshot.employee_id,
                LedgerAccount.version == snapshot.version
            )
            .values(version=snapshot.version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "Version conflict on ledger of employee %s (expected v%s)",
                snapshot.employee_id, snapshot.version
            )
            raise ConcurrentModificationError(snapshot.employee_id, snapshot.version)

    @staticmethod
    async def write_account(db: AsyncSession, snapshot: LedgerSnapshot, now: datetime) -> None:
        transactional = snapshot.transactional_entries
        await db.execute(
            update(LedgerAccount)
            .where(LedgerAccount.employee_id == snapshot.employee_id)
            .values(
                current_balance=snapshot.current_balance,
                opening_balance=snapshot.opening_balance,
                opening_balance_set=snapshot.opening_balance_set,
                entry_count=len(transactional),
                last_transaction_at=transactional[-1].created_at if transactional else None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    async def write_advance(db: AsyncSession, state: AdvanceState, now: datetime,
                            closed: bool = False) -> None:
        values = dict(
            utilized_amount=state.utilized_amount,
            returned_amount=state.returned_amount,
            status=state.status,
            updated_at=now,
        )
        if closed:
            values["closed_at"] = now
        await db.execute(update(Advance).where(Advance.id == state.id).values(**values))

    @staticmethod
    async def write_running_balances(db: AsyncSession, entries: List[EntryState]) -> None:
        for entry in entries:
            await db.execute(
                update(LedgerEntry)
                .where(LedgerEntry.id == entry.id)
                .values(running_balance=entry.running_balance)
            )

    @staticmethod
    async def _insert_posting(
        db: AsyncSession,
        snapshot: LedgerSnapshot,
        posting: Posting,
        draft: EntryDraft,
        actor_id: Optional[int],
    ) -> LedgerEntry:
        state = posting.entry

        advance_row = None
        if posting.new_advance is not None:
            advance_row = Advance(
                employee_id=snapshot.employee_id,
                amount=posting.new_advance.amount,
                utilized_amount=posting.new_advance.utilized_amount,
                returned_amount=posting.new_advance.returned_amount,
                purpose=posting.new_advance.purpose,
                purpose_description=draft.purpose_description,
                status=posting.new_advance.status,
                issued_date=posting.new_advance.issued_date,
                expires_at=posting.new_advance.expires_at,
                issued_by=actor_id,
                notes=draft.notes,
                updated_at=state.created_at,
            )
            db.add(advance_row)
            await db.flush()
            posting.new_advance.id = advance_row.id
            state.related_advance_id = advance_row.id

        row = LedgerEntry(
            employee_id=snapshot.employee_id,
            sequence=state.sequence,
            entry_type=state.entry_type,
            direction=state.direction,
            amount=state.amount,
            running_balance=state.running_balance,
            related_advance_id=state.related_advance_id,
            related_entity_type=draft.related_entity_type,
            related_entity_id=draft.related_entity_id,
            category=draft.category,
            description=draft.description,
            notes=draft.notes,
            approval_status=state.approval_status,
            approved_by=actor_id if state.approval_status == ApprovalStatus.APPROVED else None,
            approved_at=state.created_at if state.approval_status == ApprovalStatus.APPROVED else None,
            created_at=state.created_at,
            created_by=actor_id,
        )
        db.add(row)

        if state.is_genesis:
            db.add(OpeningBalance(
                employee_id=snapshot.employee_id,
                amount=state.amount,
                effective_date=state.created_at.date(),
                created_by=actor_id,
                notes=draft.notes,
            ))

        await db.flush()
        state.id = row.id
        if advance_row is not None:
            advance_row.ledger_entry_id = row.id
        return row

    @staticmethod
    async def persist(
        db: AsyncSession,
        snapshot: LedgerSnapshot,
        posting: Posting,
        draft: EntryDraft,
        actor_id: Optional[int],
        now: datetime,
    ) -> LedgerEntry:
        """Write a computed posting. Does not commit."""
        await LedgerStore.claim_version(db, snapshot, now)
        try:
            row = await LedgerStore._insert_posting(db, snapshot, posting, draft, actor_id)
        except IntegrityError:
            # Sequence or opening balance already taken by another writer
            raise ConcurrentModificationError(snapshot.employee_id, snapshot.version)
        if posting.utilized_advance is not None:
            await LedgerStore.write_advance(db, posting.utilized_advance, now)
        await LedgerStore.write_running_balances(db, posting.rebalanced)
        await LedgerStore.write_account(db, snapshot, now)
        return row

    # Public operations

    @staticmethod
    async def append(
        db: AsyncSession,
        employee_id: int,
        draft: EntryDraft,
        actor_id: Optional[int] = None,
        actor_username: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LedgerEntry:
        """
        Append one entry to an employee ledger and commit.

        Raises:
            EmployeeNotFoundError, InvalidAmountError, OverUtilizationError,
            AdvanceClosedError, AdvanceNotFoundError, OpeningBalanceAlreadySetError,
            InvalidEntryStateError, ConcurrentModificationError
        """
        now = now or datetime.utcnow()
        async with employee_write_lock(employee_id):
            try:
                await LedgerStore.get_employee(db, employee_id)
                snapshot = await LedgerStore.load_snapshot(db, employee_id)
                had_entries = bool(snapshot.transactional_entries)
                posting = post_draft(snapshot, draft, now)
                row = await LedgerStore.persist(db, snapshot, posting, draft, actor_id, now)
                await LedgerStore._audit_posting(
                    db, snapshot, posting, actor_id, actor_username, had_entries
                )
                await db.commit()
            except LedgerError as exc:
                await db.rollback()
                logger.warning(
                    "Rejected %s for employee %s: %s", draft.entry_type.value, employee_id, exc.error_code
                )
                raise
            except Exception:
                await db.rollback()
                raise

        logger.info(
            "Posted %s of %s for employee %s (seq %s, balance %s)",
            row.entry_type.value, row.amount, employee_id, row.sequence, posting.balance_after
        )
        return row

    @staticmethod
    async def _audit_posting(
        db: AsyncSession,
        snapshot: LedgerSnapshot,
        posting: Posting,
        actor_id: Optional[int],
        actor_username: Optional[str],
        had_entries: bool,
    ) -> None:
        entry = posting.entry
        metadata = {
            "entry_type": entry.entry_type.value,
            "amount": str(entry.amount),
            "sequence": entry.sequence,
            "balance_before": str(posting.balance_before),
            "balance_after": str(posting.balance_after),
            "approval_status": entry.approval_status.value,
        }

        if entry.entry_type == EntryType.OPENING_BALANCE:
            await log_event(
                db, AuditAction.OPENING_BALANCE_SET,
                actor_id=actor_id, actor_username=actor_username,
                target_employee_id=snapshot.employee_id,
                entity_type=AuditEntity.OPENING_BALANCE, entity_id=snapshot.employee_id,
                metadata=metadata,
            )
            if had_entries:
                await log_event(
                    db, AuditAction.OPENING_BALANCE_REPLAYED,
                    actor_id=actor_id, actor_username=actor_username,
                    target_employee_id=snapshot.employee_id,
                    entity_type=AuditEntity.OPENING_BALANCE, entity_id=snapshot.employee_id,
                    metadata={
                        "opening_balance": str(snapshot.opening_balance),
                        "entries_rewritten": len(posting.rebalanced),
                        "balance_before": str(posting.balance_before),
                        "balance_after": str(posting.balance_after),
                    },
                )
                logger.warning(
                    "Opening balance for employee %s set after %d entries; %d running balances rewritten",
                    snapshot.employee_id, len(snapshot.transactional_entries), len(posting.rebalanced)
                )
            return

        if posting.new_advance is not None:
            metadata["advance_id"] = posting.new_advance.id
            await log_event(
                db, AuditAction.ADVANCE_ISSUED,
                actor_id=actor_id, actor_username=actor_username,
                target_employee_id=snapshot.employee_id,
                entity_type=AuditEntity.ADVANCE, entity_id=posting.new_advance.id,
                metadata=metadata,
            )
            return

        if posting.utilized_advance is not None:
            metadata["advance_id"] = posting.utilized_advance.id
            metadata["advance_remaining"] = str(posting.utilized_advance.remaining_balance)
        await log_event(
            db, AuditAction.LEDGER_ENTRY_POSTED,
            actor_id=actor_id, actor_username=actor_username,
            target_employee_id=snapshot.employee_id,
            entity_type=AuditEntity.LEDGER_ENTRY, entity_id=entry.id,
            metadata=metadata,
        )

    @staticmethod
    async def get_entry(db: AsyncSession, entry_id: int) -> LedgerEntry:
        result = await db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.id == entry_id)
            .execution_options(populate_existing=True)
        )
        entry = result.scalar_one_or_none()
        if not entry:
            raise LedgerEntryNotFoundError(entry_id)
        return entry

    @staticmethod
    async def approve_entry(
        db: AsyncSession,
        entry_id: int,
        actor_id: Optional[int] = None,
        actor_username: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LedgerEntry:
        """
        Approve a PENDING entry.

        The entry starts counting toward the balance; a linked expense draws
        on its advance in the same transaction.
        """
        now = now or datetime.utcnow()
        row = await LedgerStore.get_entry(db, entry_id)
        employee_id = row.employee_id

        async with employee_write_lock(employee_id):
            try:
                snapshot = await LedgerStore.load_snapshot(db, employee_id)
                posting = approve_posting(snapshot, entry_id, now)

                await LedgerStore.claim_version(db, snapshot, now)
                await db.execute(
                    update(LedgerEntry)
                    .where(LedgerEntry.id == entry_id)
                    .values(
                        approval_status=ApprovalStatus.APPROVED,
                        approved_by=actor_id,
                        approved_at=now,
                        running_balance=posting.entry.running_balance,
                    )
                )
                if posting.utilized_advance is not None:
                    await LedgerStore.write_advance(db, posting.utilized_advance, now)
                await LedgerStore.write_running_balances(db, posting.rebalanced)
                await LedgerStore.write_account(db, snapshot, now)

                await log_event(
                    db, AuditAction.LEDGER_ENTRY_APPROVED,
                    actor_id=actor_id, actor_username=actor_username,
                    target_employee_id=employee_id,
                    entity_type=AuditEntity.LEDGER_ENTRY, entity_id=entry_id,
                    metadata={
                        "amount": str(posting.entry.amount),
                        "balance_before": str(posting.balance_before),
                        "balance_after": str(posting.balance_after),
                        "entries_rewritten": len(posting.rebalanced),
                    },
                )
                await db.commit()
            except LedgerError as exc:
                await db.rollback()
                logger.warning("Approval of entry %s refused: %s", entry_id, exc.error_code)
                raise
            except Exception:
                await db.rollback()
                raise

        logger.info("Approved entry %s for employee %s (balance %s)", entry_id, employee_id, posting.balance_after)
        return await LedgerStore.get_entry(db, entry_id)

    @staticmethod
    async def reject_entry(
        db: AsyncSession,
        entry_id: int,
        actor_id: Optional[int] = None,
        actor_username: Optional[str] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LedgerEntry:
        """Reject a PENDING entry. Balances and advances are unchanged."""
        now = now or datetime.utcnow()
        row = await LedgerStore.get_entry(db, entry_id)
        employee_id = row.employee_id

        async with employee_write_lock(employee_id):
            try:
                snapshot = await LedgerStore.load_snapshot(db, employee_id)
                reject_posting(snapshot, entry_id)

                await LedgerStore.claim_version(db, snapshot, now)
                values = dict(
                    approval_status=ApprovalStatus.REJECTED,
                    approved_by=actor_id,
                    approved_at=now,
                )
                if reason:
                    values["notes"] = reason
                await db.execute(update(LedgerEntry).where(LedgerEntry.id == entry_id).values(**values))

                await log_event(
                    db, AuditAction.LEDGER_ENTRY_REJECTED,
                    actor_id=actor_id, actor_username=actor_username,
                    target_employee_id=employee_id,
                    entity_type=AuditEntity.LEDGER_ENTRY, entity_id=entry_id,
                    metadata={"reason": reason},
                )
                await db.commit()
            except LedgerError as exc:
                await db.rollback()
                logger.warning("Rejection of entry %s refused: %s", entry_id, exc.error_code)
                raise
            except Exception:
                await db.rollback()
                raise

        logger.info("Rejected entry %s for employee %s", entry_id, employee_id)
        return await LedgerStore.get_entry(db, entry_id)

    @staticmethod
    async def list_entries(db: AsyncSession, filters: LedgerFilters) -> Tuple[List[LedgerEntry], int]:
        """
        Filtered, paginated entries in (employee_id, sequence) order.

        Returns:
            (entries, total matching before pagination)
        """
        conditions = []
        if filters.employee_id is not None:
            conditions.append(LedgerEntry.employee_id == filters.employee_id)
        if filters.entry_types:
            conditions.append(LedgerEntry.entry_type.in_(filters.entry_types))
        if filters.direction is not None:
            conditions.append(LedgerEntry.direction == filters.direction)
        if filters.approval_status is not None:
            conditions.append(LedgerEntry.approval_status == filters.approval_status)
        if filters.date_from is not None:
            conditions.append(LedgerEntry.created_at >= filters.date_from)
        if filters.date_to is not None:
            conditions.append(LedgerEntry.created_at <= filters.date_to)
        if filters.min_amount is not None:
            conditions.append(LedgerEntry.amount >= filters.min_amount)
        if filters.max_amount is not None:
            conditions.append(LedgerEntry.amount <= filters.max_amount)
        if filters.category:
            conditions.append(LedgerEntry.category == filters.category)
        if filters.related_entity_type:
            conditions.append(LedgerEntry.related_entity_type == filters.related_entity_type)
        if filters.related_entity_id:
            conditions.append(LedgerEntry.related_entity_id == filters.related_entity_id)
        if filters.search:
            pattern = f"%{filters.search}%"
            conditions.append(or_(
                LedgerEntry.description.ilike(pattern),
                LedgerEntry.notes.ilike(pattern)
            ))

        total = await db.scalar(select(func.count(LedgerEntry.id)).where(*conditions))

        result = await db.execute(
            select(LedgerEntry)
            .where(*conditions)
            .order_by(LedgerEntry.employee_id, LedgerEntry.sequence)
            .offset((filters.page - 1) * filters.page_size)
            .limit(filters.page_size)
        )
        return result.scalars().all(), total or 0
