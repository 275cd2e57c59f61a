"""
Advance Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from ledger_backend.app.models.ledger_enums import AdvanceStatus, AdvancePurpose, AdvanceReturnType


class AdvanceIssueRequest(BaseModel):
    """Schema for issuing a cash advance."""
    employee_id: int
    amount: Decimal
    purpose: AdvancePurpose
    purpose_description: Optional[str] = None
    expires_at: Optional[datetime] = None
    validity_days: Optional[int] = Field(None, ge=1)
    notes: Optional[str] = None


class AdvanceActionRequest(BaseModel):
    notes: Optional[str] = None


class AdvanceReturnRequest(AdvanceActionRequest):
    """Full returns settle the remaining balance; partial ones need `return_amount`."""
    return_type: AdvanceReturnType = AdvanceReturnType.FULL
    return_amount: Optional[Decimal] = None


class AdvanceResponse(BaseModel):
    """Schema for displaying an advance with its derived fields."""
    id: int
    employee_id: int
    amount: Decimal
    utilized_amount: Decimal
    returned_amount: Decimal
    remaining_balance: Decimal
    utilization_percentage: Decimal
    status: AdvanceStatus
    purpose: AdvancePurpose
    purpose_description: Optional[str]
    issued_date: datetime
    expires_at: Optional[datetime]
    closed_at: Optional[datetime]
    is_expired: bool
    days_outstanding: int
    issued_by: Optional[int]
    ledger_entry_id: Optional[int]
    notes: Optional[str]

    class Config:
        from_attributes = True


class AdvanceListResponse(BaseModel):
    items: List[AdvanceResponse]
    total: int


class ExpireOverdueResponse(BaseModel):
    expired_count: int
    advance_ids: List[int]
