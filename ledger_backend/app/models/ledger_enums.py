"""
Ledger enumerations.
"""

import enum


class EntryType(str, enum.Enum):
    """Ledger entry type enumeration."""
    ADVANCE_ISSUE = "ADVANCE_ISSUE"  # CR - company hands an advance to the employee
    EXPENSE = "EXPENSE"  # DR - employee spends
    CASH_RETURN = "CASH_RETURN"  # DR - employee returns unused cash
    REIMBURSEMENT = "REIMBURSEMENT"  # CR - company reimburses the employee
    OPENING_BALANCE = "OPENING_BALANCE"  # Genesis row, neither CR nor DR


class Direction(str, enum.Enum):
    """Effect of an entry on the employee's balance."""
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class ApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AdvanceStatus(str, enum.Enum):
    """Advance lifecycle status."""
    OPEN = "OPEN"
    PARTIALLY_UTILIZED = "PARTIALLY_UTILIZED"
    FULLY_UTILIZED = "FULLY_UTILIZED"
    EXPIRED = "EXPIRED"
    CLOSED = "CLOSED"


class AdvancePurpose(str, enum.Enum):
    TRAVEL = "TRAVEL"
    PROJECT = "PROJECT"
    EMERGENCY = "EMERGENCY"
    REGULAR = "REGULAR"
    PETTY_CASH = "PETTY_CASH"


class AdvanceReturnType(str, enum.Enum):
    FULL = "full"  # Return the remaining balance and close the advance
    PARTIAL = "partial"  # Return part of it; the advance stays open
