"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from ledger_backend.app.api.v1.endpoints import ledger, advances

router = APIRouter()

# Employee ledger: entries, balances, preview, reconciliation, statistics
router.include_router(ledger.router)

# Cash advances
router.include_router(advances.router)
