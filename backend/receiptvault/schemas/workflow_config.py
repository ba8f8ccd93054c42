"""Pydantic schemas for per-company workflow configuration."""
import uuid
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ApprovalLevel(BaseModel):
    threshold: Decimal = Field(ge=0)
    required_approvers: int = Field(default=1, ge=1)
    approver_roles: list[str] = Field(default_factory=list)

    @field_validator("approver_roles")
    @classmethod
    def _upper_roles(cls, v: list[str]) -> list[str]:
        return [r.strip().upper() for r in v if r.strip()]


class ConfigNotifications(BaseModel):
    email_enabled: bool = True
    slack_enabled: bool = False
    reminder_after_hours: int = Field(default=24, gt=0)


class WorkflowConfigOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    company_id: uuid.UUID
    auto_approval_threshold: Decimal
    require_approval_above: Decimal
    default_approvers: list[uuid.UUID]
    approval_levels: list[ApprovalLevel]
    notifications: ConfigNotifications

    @field_validator("approval_levels")
    @classmethod
    def _sorted_levels(cls, v: list[ApprovalLevel]) -> list[ApprovalLevel]:
        return sorted(v, key=lambda level: level.threshold)


class WorkflowConfigUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    auto_approval_threshold: Decimal | None = Field(default=None, ge=0)
    require_approval_above: Decimal | None = Field(default=None, ge=0)
    default_approvers: list[uuid.UUID] | None = None
    approval_levels: list[ApprovalLevel] | None = None
    notifications: ConfigNotifications | None = None
