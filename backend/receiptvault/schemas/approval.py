"""Pydantic schemas for approval workflow API endpoints."""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# ─── Approval request output ───

class ApprovalRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    receipt_id: uuid.UUID
    user_id: uuid.UUID
    company_id: uuid.UUID
    rule_id: uuid.UUID
    status: str
    current_approvers: list[uuid.UUID]
    requested_amount: Decimal
    category: str | None
    vendor: str | None
    reason: str | None
    priority: str
    escalation_level: int
    due_date: datetime | None
    submitted_at: datetime
    approved_at: datetime | None
    rejected_at: datetime | None
    approved_by: uuid.UUID | None
    rejected_by: uuid.UUID | None
    comments: str | None


class ApprovalActionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    request_id: uuid.UUID
    user_id: uuid.UUID | None
    action: str
    comments: str | None
    on_behalf_of: uuid.UUID | None
    timestamp: datetime


class ApprovalDetailOut(ApprovalRequestOut):
    actions: list[ApprovalActionOut] = Field(default_factory=list)


# ─── Submission ───

class SubmissionIn(BaseModel):
    receipt_id: uuid.UUID
    reason: str | None = None
    requested_approver_id: uuid.UUID | None = None
    priority: Literal["high", "normal", "low"] = "normal"


class SubmissionOut(BaseModel):
    requires_approval: bool
    auto_approved: bool = False
    rule_id: uuid.UUID | None = None
    request: ApprovalRequestOut | None = None


# ─── Decisions ───

class DecisionIn(BaseModel):
    action: Literal["approve", "reject", "request_info"]
    comments: str | None = None


class EscalateIn(BaseModel):
    comments: str | None = None


class BulkDecisionIn(BaseModel):
    request_ids: list[uuid.UUID] = Field(min_length=1)
    action: Literal["approve", "reject"]
    comments: str | None = None


class BulkFailure(BaseModel):
    id: uuid.UUID
    error: str
    message: str | None = None


class BulkDecisionResult(BaseModel):
    successful: list[uuid.UUID] = Field(default_factory=list)
    failed: list[BulkFailure] = Field(default_factory=list)


# ─── Listings ───

class ApprovalListResponse(BaseModel):
    items: list[ApprovalRequestOut]
    total: int


class ApprovalHistoryResponse(BaseModel):
    items: list[ApprovalRequestOut]
    total: int
    page: int
    limit: int


class ApprovalStats(BaseModel):
    total_pending: int
    total_escalated: int
    total_approved: int
    total_rejected: int
    total_auto_approved: int
    approval_rate: float
    average_approval_hours: float | None
