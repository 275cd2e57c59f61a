"""
Security guards for role-based and ledger-ownership access control.
"""

from typing import List, Optional
from fastapi import Depends, HTTPException, status
from ledger_backend.app.models.enums import EmployeeRole
from ledger_backend.app.core.dependencies import get_current_user

# Roles allowed to read every employee's ledger
LEDGER_READ_ROLES = [EmployeeRole.MANAGER, EmployeeRole.FINANCE, EmployeeRole.ADMIN]

# Roles allowed to move money
FINANCE_ROLES = [EmployeeRole.FINANCE, EmployeeRole.ADMIN]


def require_role(allowed_roles: List[EmployeeRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/advances/issue")
        async def issue(current_user: dict = Depends(require_role(FINANCE_ROLES))):
            ...

    Raises:
        HTTPException 403 if the caller's directory role is not in allowed_roles
    """
    allowed = {role.value for role in allowed_roles}

    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        if current_user["role"] not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join(r.value for r in allowed_roles)}"
            )
        return current_user

    return role_checker


def require_admin(current_user: dict = Depends(get_current_user)) -> dict:
    """
    Dependency for admin-only endpoints.
    """
    if current_user.get("role") != EmployeeRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )

    return current_user


def can_access_ledger(employee_id: int, current_user: dict) -> bool:
    """
    Employees see only their own ledger; MANAGER, FINANCE and ADMIN see all.
    """
    role = current_user.get("role")
    if role in [r.value for r in LEDGER_READ_ROLES]:
        return True
    return current_user.get("user_id") == employee_id


class LedgerAccessGuard:
    """
    Ownership guard for per-employee ledger data.

    Usage:
        ledger_guard = LedgerAccessGuard()

        @router.get("/ledger/summary/{employee_id}")
        async def summary(employee_id: int, current_user: dict = Depends(get_current_user)):
            ledger_guard.enforce(employee_id, current_user)
            ...
    """

    def enforce(self, employee_id: int, current_user: dict, resource_name: str = "ledger"):
        """
        Raises:
            HTTPException 403 if the caller may not read this employee's data
        """
        if not can_access_ledger(employee_id, current_user):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. You do not have permission to access this {resource_name}."
            )

    def filter_by_access(self, current_user: dict) -> Optional[int]:
        """
        Employee id to restrict list queries to, or None for unrestricted roles.
        """
        if current_user.get("role") in [r.value for r in LEDGER_READ_ROLES]:
            return None
        return current_user.get("user_id")
