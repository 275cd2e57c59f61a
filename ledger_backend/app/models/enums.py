"""
Employee roles enumeration.

Defines the role types carried in identity-service tokens.
"""

import enum


class EmployeeRole(str, enum.Enum):
    """
    Employee role enumeration.

    Roles:
        ADMIN: System-level access, including opening balances
        FINANCE: Issues advances and posts ledger entries
        MANAGER: Approves pending entries and reviews ledgers
        EMPLOYEE: Reads their own ledger (default role)
    """
    ADMIN = "ADMIN"
    FINANCE = "FINANCE"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"
