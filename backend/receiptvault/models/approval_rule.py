import uuid

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from receiptvault.db.base import Base, TimestampMixin, UUIDMixin


class ApprovalRule(Base, UUIDMixin, TimestampMixin):
    """Tenant approval policy. Never hard-deleted; disabled via is_active=False.

    ``conditions`` and ``actions`` hold the JSON form of
    schemas.approval_rule.RuleConditions / RuleActions.
    """

    __tablename__ = "approval_rules"
    __table_args__ = (
        Index("ix_approval_rules_company_priority", "company_id", "priority", "created_at"),
    )

    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    conditions: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    actions: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
