"""
Opening Balance database model.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime, Date, Text
from ledger_backend.app.db.session import Base


class OpeningBalance(Base):
    """
    Genesis balance of an employee ledger. At most one per employee.

    Positive amount: the organization owes the employee at ledger start.
    """
    __tablename__ = "opening_balances"

    employee_id = Column(Integer, ForeignKey('employees.id'), primary_key=True)
    amount = Column(Numeric(12, 2), nullable=False)
    effective_date = Column(Date, nullable=False)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    notes = Column(Text, nullable=True)

    def __repr__(self):
        return f"<OpeningBalance(employee_id={self.employee_id}, amount={self.amount})>"
