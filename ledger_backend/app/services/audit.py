"""
Audit trail for ledger mutations.

Audit rows are written inside the caller's transaction, so an event is
recorded if and only if the mutation it describes commits. Amounts in
`metadata` are stored as strings to keep JSON exact.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from ledger_backend.app.models.audit_log import AuditLog


class AuditAction:
    """Standardized audit action constants."""
    LEDGER_ENTRY_POSTED = "LEDGER_ENTRY_POSTED"
    LEDGER_ENTRY_APPROVED = "LEDGER_ENTRY_APPROVED"
    LEDGER_ENTRY_REJECTED = "LEDGER_ENTRY_REJECTED"

    ADVANCE_ISSUED = "ADVANCE_ISSUED"
    ADVANCE_RETURNED = "ADVANCE_RETURNED"
    ADVANCE_CLOSED = "ADVANCE_CLOSED"
    ADVANCES_EXPIRED = "ADVANCES_EXPIRED"

    OPENING_BALANCE_SET = "OPENING_BALANCE_SET"
    # Late opening balance rewrote historical running balances
    OPENING_BALANCE_REPLAYED = "OPENING_BALANCE_REPLAYED"


class AuditEntity:
    LEDGER_ENTRY = "ledger_entry"
    ADVANCE = "advance"
    OPENING_BALANCE = "opening_balance"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    actor_username: Optional[str] = None,
    target_employee_id: Optional[int] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Add an event to the audit log.

    The row is flushed, not committed; the caller's commit or rollback
    decides its fate.

    Args:
        action: One of the AuditAction constants
        actor_id: Employee who performed the action (None for system jobs)
        target_employee_id: Employee whose ledger was affected
        entity_type: One of the AuditEntity constants
        entity_id: ID of the affected record
        metadata: Amounts, balances and other context
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_username=actor_username,
        action=action,
        target_employee_id=target_employee_id,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_data=metadata,
    )
    db.add(audit_log)
    await db.flush()
    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    target_employee_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """Audit events, most recent first."""
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))
    if target_employee_id is not None:
        query = query.where(AuditLog.target_employee_id == target_employee_id)
    if action:
        query = query.where(AuditLog.action == action)

    result = await db.execute(query.limit(limit))
    return list(result.scalars().all())
