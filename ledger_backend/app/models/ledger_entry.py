"""
Ledger Entry database model.

Immutable, ordered bookkeeping facts for one employee.
"""

from datetime import datetime
from sqlalchemy import (
    Column, Integer, Numeric, ForeignKey, DateTime, Enum, String, Text,
    UniqueConstraint, CheckConstraint, Index
)
from ledger_backend.app.db.session import Base
from ledger_backend.app.models.ledger_enums import EntryType, Direction, ApprovalStatus


class LedgerEntry(Base):
    """
    Ledger Entry model.

    Entries are ordered by `sequence` within an employee ledger. Sequence 0
    is reserved for the OPENING_BALANCE genesis row, which carries the signed
    opening value and no direction. `running_balance` is derived by the
    posting engine and never set by callers.

    Amount, direction and type never change after insert. Only
    `running_balance` (replay) and the approval fields are rewritten.
    """
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    employee_id = Column(Integer, ForeignKey('employees.id'), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)

    # Entry details
    entry_type = Column(Enum(EntryType), nullable=False, index=True)
    direction = Column(Enum(Direction), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    running_balance = Column(Numeric(12, 2), nullable=False)

    # Linkage
    related_advance_id = Column(Integer, ForeignKey('advances.id'), nullable=True, index=True)
    related_entity_type = Column(String(50), nullable=True)
    related_entity_id = Column(String(64), nullable=True)
    category = Column(String(100), nullable=True)

    description = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    # Approval
    approval_status = Column(Enum(ApprovalStatus), default=ApprovalStatus.APPROVED, nullable=False, index=True)
    approved_by = Column(Integer, nullable=True)
    approved_at = Column(DateTime, nullable=True)

    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    created_by = Column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint('employee_id', 'sequence', name='uq_ledger_entries_employee_sequence'),
        CheckConstraint(
            "amount > 0 OR entry_type = 'OPENING_BALANCE'",
            name='ck_ledger_entries_positive_amount'
        ),
        Index('ix_ledger_entries_employee_created', 'employee_id', 'created_at'),
    )

    def __repr__(self):
        return (
            f"<LedgerEntry(id={self.id}, employee={self.employee_id}, seq={self.sequence}, "
            f"type='{self.entry_type.value}', amount={self.amount}, balance={self.running_balance})>"
        )
