"""
Ledger Account database model.

One row per employee holding the cached current balance and the
optimistic-concurrency version of that employee's ledger.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime, Boolean
from ledger_backend.app.db.session import Base


class LedgerAccount(Base):
    """
    Balance pointer for an employee ledger.

    Mutated only by the ledger store. Every write bumps `version`;
    a write whose expected version no longer matches is rejected.
    """
    __tablename__ = "ledger_accounts"

    employee_id = Column(Integer, ForeignKey('employees.id'), primary_key=True)

    current_balance = Column(Numeric(12, 2), nullable=False, default=0)
    opening_balance = Column(Numeric(12, 2), nullable=False, default=0)
    opening_balance_set = Column(Boolean, nullable=False, default=False)

    entry_count = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)

    last_transaction_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<LedgerAccount(employee_id={self.employee_id}, balance={self.current_balance}, v={self.version})>"
