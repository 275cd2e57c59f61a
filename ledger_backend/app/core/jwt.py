"""
JWT token utilities.

Tokens are issued by the identity service. The ledger only verifies them;
`create_access_token` exists for local tooling and tests.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, ExpiredSignatureError, jwt
from ledger_backend.app.core.config import settings
from ledger_backend.app.models.enums import EmployeeRole

logger = logging.getLogger("ledger.auth")

# Claims every identity-service token carries
REQUIRED_CLAIMS = ("sub", "user_id", "role")


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Mint a token in the identity service's format.

    Example payload:
        {"sub": "finance@example.com", "user_id": 123, "role": "FINANCE"}
    """
    claims = dict(data)
    lifetime = expires_delta if expires_delta is not None else timedelta(
        minutes=settings.access_token_expire_minutes
    )
    claims["exp"] = datetime.utcnow() + lifetime
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify signature and expiry, then check the ledger's required claims.

    Returns:
        The claims dict, or None when the token is unusable for any reason
        (bad signature, expired, missing claim, unknown role).
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except ExpiredSignatureError:
        logger.info("Rejected expired token")
        return None
    except JWTError as e:
        logger.info("Rejected malformed token: %s", e)
        return None

    missing = [claim for claim in REQUIRED_CLAIMS if not payload.get(claim)]
    if missing:
        logger.info("Rejected token missing claims %s", missing)
        return None

    try:
        EmployeeRole(payload["role"])
    except ValueError:
        logger.info("Rejected token with unknown role %s", payload["role"])
        return None

    return payload
