"""
Employee database model.

Local directory of the people who own ledgers. Rows are provisioned
by the identity service; the ledger only reads them.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum
from sqlalchemy.sql import func
from ledger_backend.app.db.session import Base
from ledger_backend.app.models.enums import EmployeeRole


class Employee(Base):
    """
    Employee model.

    A ledger write for an unknown or inactive employee is rejected
    with EmployeeNotFound.
    """
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(150), nullable=False)
    role = Column(Enum(EmployeeRole), default=EmployeeRole.EMPLOYEE, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Employee(id={self.id}, email='{self.email}', role='{self.role.value}')>"
