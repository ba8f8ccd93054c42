"""Pydantic schemas for approval rules.

Rule conditions are a structured predicate: each condition kind is an
explicit optional field, and an unset field means "no constraint on that
dimension".
"""
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from receiptvault.models.user import ROLES


def _dedupe(values: list) -> list:
    seen = set()
    out = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out


# ─── Conditions ───

class RuleConditions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount_threshold: Decimal | None = Field(default=None, ge=0)  # inclusive lower bound
    categories: list[str] | None = None
    vendors: list[str] | None = None
    user_roles: list[str] | None = None
    time_window: int | None = Field(default=None, gt=0)  # hours until the request is due

    @field_validator("categories", "vendors", mode="before")
    @classmethod
    def _strip_names(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            v = v.split(",")
        if not isinstance(v, list):
            raise ValueError("must be a list of strings")
        cleaned = [str(item).strip() for item in v if str(item).strip()]
        return _dedupe(cleaned) or None

    @field_validator("user_roles", mode="before")
    @classmethod
    def _parse_roles(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            v = v.split(",")
        if not isinstance(v, list) or not all(isinstance(r, str) for r in v):
            raise ValueError("user_roles must be a list of role names")
        roles = [r.strip().upper() for r in v if r.strip()]
        unknown = sorted(set(roles) - set(ROLES))
        if unknown:
            raise ValueError(f"unknown roles: {', '.join(unknown)}")
        return _dedupe(roles) or None


# ─── Actions ───

class RuleNotifications(BaseModel):
    model_config = ConfigDict(extra="forbid")

    on_submission: bool = True
    on_approval: bool = True
    on_rejection: bool = True
    reminder_interval: int | None = Field(default=None, gt=0)  # hours


class RuleActions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    requires_approval: bool = True
    auto_approve: bool = False
    approvers: list[uuid.UUID] = Field(default_factory=list)  # tier 0, ordered set
    escalation_chain: list[uuid.UUID] = Field(default_factory=list)  # tiers 1..N
    notifications: RuleNotifications = Field(default_factory=RuleNotifications)

    @field_validator("approvers")
    @classmethod
    def _unique_approvers(cls, v: list[uuid.UUID]) -> list[uuid.UUID]:
        return _dedupe(v)


# ─── Rule DTOs ───

class ApprovalRuleIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    priority: int = 100
    is_active: bool = True
    conditions: RuleConditions = Field(default_factory=RuleConditions)
    actions: RuleActions = Field(default_factory=RuleActions)


class ApprovalRuleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    priority: int | None = None
    is_active: bool | None = None
    conditions: RuleConditions | None = None
    actions: RuleActions | None = None


class ApprovalRuleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    company_id: uuid.UUID
    name: str
    description: str | None
    is_active: bool
    priority: int
    conditions: RuleConditions
    actions: RuleActions
    created_by: uuid.UUID | None
    created_at: datetime
    updated_at: datetime


class ApprovalRequirement(BaseModel):
    requires_approval: bool
    auto_approve: bool = False
    rule: ApprovalRuleOut | None = None
