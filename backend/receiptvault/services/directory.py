"""User/role directory lookups used for rule matching and approver resolution."""
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from receiptvault.models.user import User


def get_user_role(db: Session, company_id: uuid.UUID, user_id: uuid.UUID) -> str | None:
    """Return the user's role within the company, or None if not a member."""
    return db.execute(
        select(User.role).where(
            User.id == user_id,
            User.company_id == company_id,
            User.deleted_at.is_(None),
        )
    ).scalar_one_or_none()


def list_user_ids_with_roles(db: Session, company_id: uuid.UUID, roles: list[str]) -> list[uuid.UUID]:
    """Active company members holding any of ``roles``, oldest account first."""
    if not roles:
        return []
    stmt = (
        select(User.id)
        .where(
            User.company_id == company_id,
            User.role.in_(roles),
            User.is_active.is_(True),
            User.deleted_at.is_(None),
        )
        .order_by(User.created_at.asc())
    )
    return list(db.execute(stmt).scalars().all())


def is_active_member(db: Session, company_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    return db.execute(
        select(User.id).where(
            User.id == user_id,
            User.company_id == company_id,
            User.is_active.is_(True),
            User.deleted_at.is_(None),
        )
    ).first() is not None
