import uuid
from decimal import Decimal

from sqlalchemy import JSON, Numeric, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from receiptvault.db.base import Base, TimestampMixin, UUIDMixin


class WorkflowConfig(Base, UUIDMixin, TimestampMixin):
    """Per-company approval defaults. One row per company (unique company_id)."""

    __tablename__ = "workflow_configs"

    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    auto_approval_threshold: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    require_approval_above: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    default_approvers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    approval_levels: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    notifications: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
