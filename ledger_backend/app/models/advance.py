"""
Advance database model.

Cash advances issued against an employee ledger and their utilization.
"""

from datetime import datetime
from decimal import Decimal
from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime, Enum, Text, CheckConstraint
from ledger_backend.app.db.session import Base
from ledger_backend.app.models.ledger_enums import AdvanceStatus, AdvancePurpose


class Advance(Base):
    """
    Advance model.

    Created together with its ADVANCE_ISSUE ledger entry. `utilized_amount`
    grows only through approved EXPENSE entries that reference the advance,
    `returned_amount` only through approved CASH_RETURN entries that do.
    Never deleted; ends as FULLY_UTILIZED, EXPIRED or CLOSED.
    """
    __tablename__ = "advances"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    employee_id = Column(Integer, ForeignKey('employees.id'), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    utilized_amount = Column(Numeric(12, 2), nullable=False, default=0)
    returned_amount = Column(Numeric(12, 2), nullable=False, default=0)

    purpose = Column(Enum(AdvancePurpose), nullable=False)
    purpose_description = Column(Text, nullable=True)
    status = Column(Enum(AdvanceStatus), default=AdvanceStatus.OPEN, nullable=False, index=True)

    issued_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=True, index=True)
    closed_at = Column(DateTime, nullable=True)

    issued_by = Column(Integer, nullable=True)
    ledger_entry_id = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_advances_positive_amount'),
        CheckConstraint(
            'utilized_amount >= 0 AND returned_amount >= 0 AND utilized_amount + returned_amount <= amount',
            name='ck_advances_valid_utilization'
        ),
    )

    @property
    def remaining_balance(self) -> Decimal:
        return Decimal(self.amount) - Decimal(self.utilized_amount or 0) - Decimal(self.returned_amount or 0)

    def __repr__(self):
        return f"<Advance(id={self.id}, employee={self.employee_id}, amount={self.amount}, status='{self.status.value}')>"
