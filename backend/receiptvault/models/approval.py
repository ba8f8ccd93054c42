import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from receiptvault.db.base import Base, TimestampMixin, UUIDMixin, utcnow

REQUEST_STATUSES = ("pending", "approved", "rejected", "escalated", "auto_approved")
# Statuses in which a request still awaits a human decision. "escalated"
# behaves like "pending" at a higher tier.
ACTIONABLE_STATUSES = ("pending", "escalated")
TERMINAL_STATUSES = ("approved", "rejected", "auto_approved")

ACTION_TYPES = ("approve", "reject", "request_info", "escalate")

PRIORITIES = ("high", "normal", "low")

_OPEN_REQUEST = text("status IN ('pending', 'escalated')")


class ApprovalRequest(Base, UUIDMixin, TimestampMixin):
    """Approval lifecycle of one submitted receipt."""

    __tablename__ = "approval_requests"
    __table_args__ = (
        # At most one open request per receipt
        Index(
            "uq_approval_requests_open_receipt",
            "receipt_id",
            unique=True,
            postgresql_where=_OPEN_REQUEST,
            sqlite_where=_OPEN_REQUEST,
        ),
    )

    receipt_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("receipts.id"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    rule_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("approval_rules.id"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", index=True
    )  # pending, approved, rejected, escalated, auto_approved
    current_approvers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)  # user id strings

    # Snapshot of the receipt at submission time
    requested_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    vendor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="normal")  # high, normal, low

    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    last_reminded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    rejected_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    actions: Mapped[list["ApprovalAction"]] = relationship(
        "ApprovalAction",
        back_populates="request",
        order_by="ApprovalAction.timestamp",
    )


class ApprovalAction(Base, UUIDMixin):
    """Append-only record of one decision event. Never updated or deleted."""

    __tablename__ = "approval_actions"

    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("approval_requests.id"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True  # null = system (overdue sweep)
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False)  # approve, reject, request_info, escalate
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    on_behalf_of: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)  # delegator, when acting as delegate
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    request: Mapped["ApprovalRequest"] = relationship("ApprovalRequest", back_populates="actions")
