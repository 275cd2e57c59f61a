"""
Audit Log Database Model.

Tracks ledger mutations and admin actions for compliance.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from ledger_backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for tracking ledger events.

    Events logged:
    - LEDGER_ENTRY_POSTED / LEDGER_ENTRY_APPROVED / LEDGER_ENTRY_REJECTED
    - ADVANCE_ISSUED / ADVANCE_RETURNED / ADVANCE_CLOSED / ADVANCES_EXPIRED
    - OPENING_BALANCE_SET
    - OPENING_BALANCE_REPLAYED (history rewrite after a late opening balance)
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Whose ledger was affected
    target_employee_id = Column(Integer, index=True, nullable=True)

    # Which record was affected
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(Integer, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_username}, employee={self.target_employee_id})>"
