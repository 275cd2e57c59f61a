"""
Request authentication for ledger endpoints.

Bearer tokens come from the identity service. Each request is checked
against the revocation lists and the employee directory, and the
directory's role wins over the role baked into the token.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from ledger_backend.app.core.jwt import decode_access_token
from ledger_backend.app.core.token_revocation import is_token_revoked, are_user_tokens_revoked
from ledger_backend.app.db.session import get_db
from ledger_backend.app.models.employee import Employee

security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    Resolve the calling employee.

    Checks, in order:
    1. JWT signature, expiry and required claims
    2. Revocation of this token, then of every token of the employee
    3. Employee exists and is active in the directory

    Returns:
        Token claims (sub, user_id, role) with `role` taken from the directory

    Raises:
        HTTPException: 401 if authentication fails, 403 for an inactive employee
    """
    token = credentials.credentials

    payload = decode_access_token(token)
    if payload is None:
        raise _unauthorized("Could not validate credentials")
    employee_id = payload["user_id"]

    if await is_token_revoked(token):
        raise _unauthorized("Token has been revoked")
    if await are_user_tokens_revoked(employee_id):
        raise _unauthorized("User access has been revoked")

    employee = await db.scalar(select(Employee).where(Employee.id == employee_id))
    if employee is None:
        raise _unauthorized("User not found")
    if not employee.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    # Role changes apply before the old token expires
    return {**payload, "role": employee.role.value}
