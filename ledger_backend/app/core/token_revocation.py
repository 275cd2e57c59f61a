"""
Token revocation checks backed by Redis.

The identity service writes two kinds of revocation: a single token
(logout) and every token of one employee (offboarding, password reset).
The ledger reads both on each request. An unreachable Redis fails open so
that a cache outage does not freeze payouts; signature and expiry checks
still apply.
"""

import logging
import ledger_backend.app.core.redis_client as redis_client_module

logger = logging.getLogger("ledger.auth")

# Redis key prefixes shared with the identity service
TOKEN_BLACKLIST_PREFIX = "blacklist:token:"
USER_TOKENS_PREFIX = "user:tokens:"


def token_key(token: str) -> str:
    return f"{TOKEN_BLACKLIST_PREFIX}{token}"


def employee_revocation_key(employee_id: int) -> str:
    return f"{USER_TOKENS_PREFIX}{employee_id}:revoked"


async def _is_flagged(key: str, what: str) -> bool:
    try:
        return await redis_client_module.redis_client.exists(key) > 0
    except Exception as e:
        logger.warning("Revocation lookup for %s failed, allowing request: %s", what, e)
        return False


async def is_token_revoked(token: str) -> bool:
    """True when this exact token was revoked."""
    return await _is_flagged(token_key(token), "token")


async def are_user_tokens_revoked(employee_id: int) -> bool:
    """True when every token of the employee was revoked."""
    return await _is_flagged(employee_revocation_key(employee_id), f"employee {employee_id}")
