"""Approval rule persistence with a read-through Redis cache.

Rule lists are cached per company (active-only and full list separately)
under a version counter that every write bumps. Entries are never updated
in place.
"""
import logging
import uuid

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from receiptvault.core import cache
from receiptvault.core.config import settings
from receiptvault.core.errors import NotFound, ValidationError
from receiptvault.db.session import store_errors
from receiptvault.models.approval_rule import ApprovalRule
from receiptvault.schemas.approval_rule import ApprovalRuleIn, ApprovalRuleOut, ApprovalRuleUpdate
from receiptvault.services import audit as audit_svc

logger = logging.getLogger(__name__)


def invalidate(company_id: uuid.UUID) -> None:
    """Retire every cached rule list of the company.

    Lists are keyed by a per-company version counter. Bumping it orphans any
    list a concurrent reader fills from a snapshot taken before the write.
    """
    cache.bump_version(cache.rules_version_key(company_id))


# ─── Reads ───

def list_rules(db: Session, company_id: uuid.UUID, active_only: bool = False) -> list[ApprovalRuleOut]:
    """Return the company's rules ordered by priority, then creation time (both ascending)."""
    version = cache.get_version(cache.rules_version_key(company_id))
    key = cache.rules_key(company_id, active_only, version) if version is not None else None
    cached = cache.get_json(key) if key else None
    if cached is not None:
        try:
            return [ApprovalRuleOut.model_validate(item) for item in cached]
        except PydanticValidationError:
            logger.warning("Stale rule cache shape for company %s; reloading.", company_id)
            cache.delete(key)

    stmt = select(ApprovalRule).where(ApprovalRule.company_id == company_id)
    if active_only:
        stmt = stmt.where(ApprovalRule.is_active.is_(True))
    stmt = stmt.order_by(
        ApprovalRule.priority.asc(),
        ApprovalRule.created_at.asc(),
        ApprovalRule.id.asc(),
    )
    with store_errors(db, "list_rules"):
        rows = db.execute(stmt).scalars().all()

    rules = [ApprovalRuleOut.model_validate(row) for row in rows]
    if key:
        cache.set_json(
            key,
            [rule.model_dump(mode="json") for rule in rules],
            settings.RULE_CACHE_TTL_SECONDS,
        )
    return rules


def get_rule(db: Session, rule_id: uuid.UUID, company_id: uuid.UUID | None = None) -> ApprovalRule:
    stmt = select(ApprovalRule).where(ApprovalRule.id == rule_id)
    if company_id is not None:
        stmt = stmt.where(ApprovalRule.company_id == company_id)
    with store_errors(db, "get_rule"):
        rule = db.execute(stmt).scalars().first()
    if rule is None:
        raise NotFound(f"Approval rule {rule_id} not found.")
    return rule


def get_rule_out(db: Session, rule_id: uuid.UUID) -> ApprovalRuleOut:
    return ApprovalRuleOut.model_validate(get_rule(db, rule_id))


# ─── Writes ───

def _coerce(schema, body):
    if isinstance(body, schema):
        return body
    try:
        return schema.model_validate(body)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid approval rule: {exc.errors()[0]['msg']}") from exc


def create_rule(
    db: Session,
    company_id: uuid.UUID,
    body: ApprovalRuleIn | dict,
    created_by: uuid.UUID | None = None,
) -> ApprovalRule:
    body = _coerce(ApprovalRuleIn, body)
    rule = ApprovalRule(
        company_id=company_id,
        name=body.name,
        description=body.description,
        is_active=body.is_active,
        priority=body.priority,
        conditions=body.conditions.model_dump(mode="json", exclude_none=True),
        actions=body.actions.model_dump(mode="json"),
        created_by=created_by,
    )
    with store_errors(db, "create_rule"):
        db.add(rule)
        db.flush()
        audit_svc.log(
            db=db,
            action="approval_rule.created",
            entity_type="approval_rule",
            entity_id=rule.id,
            company_id=company_id,
            actor_id=created_by,
            after=body.model_dump(mode="json"),
        )
        db.commit()

    invalidate(company_id)
    logger.info("Approval rule created: rule=%s company=%s priority=%s", rule.id, company_id, rule.priority)
    return rule


def update_rule(
    db: Session,
    rule_id: uuid.UUID,
    company_id: uuid.UUID,
    body: ApprovalRuleUpdate | dict,
    actor_id: uuid.UUID | None = None,
) -> ApprovalRule:
    body = _coerce(ApprovalRuleUpdate, body)
    rule = get_rule(db, rule_id, company_id)
    before = ApprovalRuleOut.model_validate(rule).model_dump(mode="json")

    for field, value in body.model_dump(exclude_unset=True).items():
        if field == "conditions":
            value = body.conditions.model_dump(mode="json", exclude_none=True) if body.conditions else {}
        elif field == "actions":
            if body.actions is None:
                raise ValidationError("Rule actions cannot be cleared.")
            value = body.actions.model_dump(mode="json")
        elif value is None and field in ("name", "priority", "is_active"):
            raise ValidationError(f"Rule field '{field}' cannot be null.")
        setattr(rule, field, value)

    with store_errors(db, "update_rule"):
        db.flush()
        audit_svc.log(
            db=db,
            action="approval_rule.updated",
            entity_type="approval_rule",
            entity_id=rule.id,
            company_id=company_id,
            actor_id=actor_id,
            before=before,
            after=ApprovalRuleOut.model_validate(rule).model_dump(mode="json"),
        )
        db.commit()

    invalidate(company_id)
    return rule


def disable_rule(
    db: Session,
    rule_id: uuid.UUID,
    company_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
) -> ApprovalRule:
    """Soft-disable a rule. Rules are never deleted while requests reference them."""
    return update_rule(db, rule_id, company_id, ApprovalRuleUpdate(is_active=False), actor_id)
