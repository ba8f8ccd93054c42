"""Narrow contract with the receipt store: snapshot read + approval status write-back."""
import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from receiptvault.core.errors import NotFound
from receiptvault.models.receipt import Receipt


@dataclass(frozen=True)
class ReceiptSnapshot:
    id: uuid.UUID
    company_id: uuid.UUID
    user_id: uuid.UUID
    amount: Decimal
    category: str | None
    vendor: str | None


def get_snapshot(db: Session, receipt_id: uuid.UUID, company_id: uuid.UUID) -> ReceiptSnapshot:
    receipt = db.execute(
        select(Receipt).where(
            Receipt.id == receipt_id,
            Receipt.company_id == company_id,
            Receipt.deleted_at.is_(None),
        )
    ).scalars().first()
    if receipt is None:
        raise NotFound(f"Receipt {receipt_id} not found.")
    return ReceiptSnapshot(
        id=receipt.id,
        company_id=receipt.company_id,
        user_id=receipt.user_id,
        amount=Decimal(receipt.amount),
        category=receipt.category,
        vendor=receipt.vendor,
    )


def set_approval_status(db: Session, receipt_id: uuid.UUID, approval_status: str) -> None:
    """Write the coarse approval projection. Joins the caller's transaction."""
    db.execute(
        update(Receipt)
        .where(Receipt.id == receipt_id)
        .values(approval_status=approval_status)
    )
