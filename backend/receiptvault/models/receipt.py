import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from receiptvault.db.base import Base, TimestampMixin, UUIDMixin

APPROVAL_STATUSES = ("pending_approval", "approved", "rejected")


class Receipt(Base, UUIDMixin, TimestampMixin):
    """Receipt row as seen by the approval engine.

    Amount/category/vendor come from OCR + categorization upstream.
    ``approval_status`` is a denormalized projection of the workflow state.
    """

    __tablename__ = "receipts"

    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    vendor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approval_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
