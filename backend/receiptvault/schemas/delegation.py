"""Pydantic schemas for approval delegations."""
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class DelegationIn(BaseModel):
    delegate_to_id: uuid.UUID
    start_date: datetime
    end_date: datetime
    max_amount: Decimal | None = Field(default=None, gt=0)
    categories: list[str] | None = None
    reason: str | None = None
    # ADMIN only: delegate on behalf of another user
    delegator_id: uuid.UUID | None = None


class DelegationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    company_id: uuid.UUID
    delegator_id: uuid.UUID
    delegate_to_id: uuid.UUID
    start_date: datetime
    end_date: datetime
    max_amount: Decimal | None
    categories: list[str] | None
    reason: str | None
    status: str
    revoked_at: datetime | None
    created_at: datetime
