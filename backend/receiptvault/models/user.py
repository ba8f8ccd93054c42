import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from receiptvault.db.base import Base, TimestampMixin, UUIDMixin

ROLES = ("EMPLOYEE", "MANAGER", "APPROVER", "ADMIN", "AUDITOR")


class User(Base, UUIDMixin, TimestampMixin):
    """Directory projection of a company member (owned by the identity service)."""

    __tablename__ = "users"

    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)  # soft delete
