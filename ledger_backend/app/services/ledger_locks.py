"""
Per-employee write locks.

Serializes validate-compute-persist for one employee ledger inside this
process. Writers in other processes are caught by the account version
check in the ledger store.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

_locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)


def get_employee_lock(employee_id: int) -> asyncio.Lock:
    return _locks[employee_id]


@asynccontextmanager
async def employee_write_lock(employee_id: int) -> AsyncIterator[None]:
    """
    Hold the write lock for one employee ledger.

    Writes to different employees never wait on each other.
    """
    lock = get_employee_lock(employee_id)
    async with lock:
        yield


def reset_locks() -> None:
    """Drop every lock. Locks are bound to the event loop that first awaits them."""
    _locks.clear()
