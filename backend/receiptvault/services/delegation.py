"""Approval delegation: time-bounded, constrained transfer of approval authority.

A delegation only ever adds authority. The delegator keeps their own right
to act on the requests they are assigned.
"""
import logging
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from receiptvault.core.errors import NotFound, Unauthorized, ValidationError
from receiptvault.db.base import as_utc, utcnow
from receiptvault.db.session import store_errors
from receiptvault.models.delegation import ApprovalDelegation
from receiptvault.schemas.delegation import DelegationIn, DelegationOut
from receiptvault.services import audit as audit_svc
from receiptvault.services import directory

logger = logging.getLogger(__name__)


# ─── Create / revoke ───

def create_delegation(
    db: Session,
    company_id: uuid.UUID,
    delegator_id: uuid.UUID,
    body: DelegationIn | dict,
    actor_id: uuid.UUID | None = None,
) -> ApprovalDelegation:
    if not isinstance(body, DelegationIn):
        try:
            body = DelegationIn.model_validate(body)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid delegation: {exc.errors()[0]['msg']}") from exc

    start, end = as_utc(body.start_date), as_utc(body.end_date)
    if end <= start:
        raise ValidationError("Delegation end_date must be after start_date.")
    if end <= utcnow():
        raise ValidationError("Delegation end_date is already in the past.")
    if body.delegate_to_id == delegator_id:
        raise ValidationError("Cannot delegate approval authority to yourself.")
    if directory.get_user_role(db, company_id, delegator_id) is None:
        raise NotFound(f"Delegator {delegator_id} is not a member of this company.")
    if directory.get_user_role(db, company_id, body.delegate_to_id) is None:
        raise ValidationError(f"Delegate {body.delegate_to_id} is not a member of this company.")

    categories = [c.strip() for c in body.categories if c.strip()] if body.categories else None
    delegation = ApprovalDelegation(
        company_id=company_id,
        delegator_id=delegator_id,
        delegate_to_id=body.delegate_to_id,
        start_date=start,
        end_date=end,
        max_amount=body.max_amount,
        categories=categories or None,
        reason=body.reason,
        status="active",
    )
    with store_errors(db, "create_delegation"):
        db.add(delegation)
        db.flush()
        audit_svc.log(
            db=db,
            action="delegation.created",
            entity_type="delegation",
            entity_id=delegation.id,
            company_id=company_id,
            actor_id=actor_id or delegator_id,
            after=DelegationOut.model_validate(delegation).model_dump(mode="json"),
        )
        db.commit()

    logger.info(
        "Delegation created: %s -> %s (company=%s, until=%s)",
        delegator_id, body.delegate_to_id, company_id, end.isoformat(),
    )
    return delegation


def get_delegation(db: Session, delegation_id: uuid.UUID, company_id: uuid.UUID) -> ApprovalDelegation:
    with store_errors(db, "get_delegation"):
        delegation = db.execute(
            select(ApprovalDelegation).where(
                ApprovalDelegation.id == delegation_id,
                ApprovalDelegation.company_id == company_id,
            )
        ).scalars().first()
    if delegation is None:
        raise NotFound(f"Delegation {delegation_id} not found.")
    return delegation


def revoke_delegation(
    db: Session,
    delegation_id: uuid.UUID,
    company_id: uuid.UUID,
    actor_id: uuid.UUID,
    is_admin: bool = False,
) -> ApprovalDelegation:
    delegation = get_delegation(db, delegation_id, company_id)
    if not is_admin and delegation.delegator_id != actor_id:
        raise Unauthorized("Only the delegator or an admin can revoke this delegation.")
    if delegation.status != "active":
        raise ValidationError(f"Delegation is already {delegation.status}.")

    with store_errors(db, "revoke_delegation"):
        delegation.status = "revoked"
        delegation.revoked_at = utcnow()
        audit_svc.log(
            db=db,
            action="delegation.revoked",
            entity_type="delegation",
            entity_id=delegation.id,
            company_id=company_id,
            actor_id=actor_id,
        )
        db.commit()
    return delegation


def list_delegations(
    db: Session,
    company_id: uuid.UUID,
    user_id: uuid.UUID | None = None,
    active_only: bool = True,
) -> list[ApprovalDelegation]:
    """Delegations in the company, optionally those given or received by ``user_id``."""
    stmt = select(ApprovalDelegation).where(ApprovalDelegation.company_id == company_id)
    if user_id is not None:
        stmt = stmt.where(
            (ApprovalDelegation.delegator_id == user_id)
            | (ApprovalDelegation.delegate_to_id == user_id)
        )
    if active_only:
        stmt = stmt.where(ApprovalDelegation.status == "active")
    stmt = stmt.order_by(ApprovalDelegation.start_date.desc())
    with store_errors(db, "list_delegations"):
        return list(db.execute(stmt).scalars().all())


def expire_delegations(db: Session, now: datetime | None = None) -> int:
    """Mark active delegations past their end_date as expired. Returns the count."""
    now = now or utcnow()
    with store_errors(db, "expire_delegations"):
        result = db.execute(
            update(ApprovalDelegation)
            .where(
                ApprovalDelegation.status == "active",
                ApprovalDelegation.end_date < now,
            )
            .values(status="expired", updated_at=now)
        )
        db.commit()
    return result.rowcount or 0


# ─── Authority resolution ───

def delegation_covers(delegation: ApprovalDelegation, request, now: datetime) -> bool:
    """True when the delegation is in force at ``now`` and the request fits its constraints."""
    if delegation.status != "active":
        return False
    if delegation.company_id != request.company_id:
        return False
    if not (as_utc(delegation.start_date) <= now <= as_utc(delegation.end_date)):
        return False
    if delegation.max_amount is not None and Decimal(request.requested_amount) > Decimal(delegation.max_amount):
        return False
    if delegation.categories:
        category = (request.category or "").strip().casefold()
        if category not in {c.casefold() for c in delegation.categories}:
            return False
    return True


def find_covering_delegation(
    db: Session,
    request,
    actor_id: uuid.UUID,
    now: datetime | None = None,
) -> ApprovalDelegation | None:
    approver_ids = [uuid.UUID(str(a)) for a in (request.current_approvers or [])]
    if not approver_ids:
        return None
    now = as_utc(now) if now else utcnow()
    with store_errors(db, "find_covering_delegation"):
        candidates = db.execute(
            select(ApprovalDelegation).where(
                ApprovalDelegation.delegate_to_id == actor_id,
                ApprovalDelegation.company_id == request.company_id,
                ApprovalDelegation.delegator_id.in_(approver_ids),
                ApprovalDelegation.status == "active",
            )
        ).scalars().all()
    for delegation in candidates:
        if delegation_covers(delegation, request, now):
            return delegation
    return None


def resolve_authority(
    db: Session,
    request,
    actor_id: uuid.UUID,
    now: datetime | None = None,
) -> tuple[bool, uuid.UUID | None]:
    """Return (authorized, on_behalf_of).

    ``on_behalf_of`` is the delegator when authority comes from a delegation,
    None when the actor is a current approver in their own right.
    """
    if str(actor_id) in {str(a) for a in (request.current_approvers or [])}:
        return True, None
    delegation = find_covering_delegation(db, request, actor_id, now)
    if delegation is not None:
        return True, delegation.delegator_id
    return False, None


def delegators_for(db: Session, delegate_id: uuid.UUID, company_id: uuid.UUID, now: datetime | None = None) -> list[ApprovalDelegation]:
    """Delegations currently in force that name ``delegate_id`` as the delegate."""
    now = as_utc(now) if now else utcnow()
    with store_errors(db, "delegators_for"):
        rows = db.execute(
            select(ApprovalDelegation).where(
                ApprovalDelegation.delegate_to_id == delegate_id,
                ApprovalDelegation.company_id == company_id,
                ApprovalDelegation.status == "active",
                ApprovalDelegation.start_date <= now,
                ApprovalDelegation.end_date >= now,
            )
        ).scalars().all()
    return list(rows)
