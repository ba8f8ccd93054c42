"""Per-company workflow configuration.

``get_config`` is get-or-create: cache, then store, then materialize the
default and persist it once. Concurrent first reads race on the unique
``company_id`` constraint; the loser re-reads the winner's row.
"""
import logging
import uuid
from decimal import Decimal

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from receiptvault.core import cache
from receiptvault.core.config import settings
from receiptvault.core.errors import ValidationError
from receiptvault.db.session import store_errors
from receiptvault.models.workflow_config import WorkflowConfig
from receiptvault.schemas.workflow_config import (
    ApprovalLevel,
    ConfigNotifications,
    WorkflowConfigOut,
    WorkflowConfigUpdate,
)
from receiptvault.services import audit as audit_svc

logger = logging.getLogger(__name__)

DEFAULT_AUTO_APPROVAL_THRESHOLD = Decimal("50")
DEFAULT_REQUIRE_APPROVAL_ABOVE = Decimal("100")
DEFAULT_APPROVAL_LEVELS = [
    {"threshold": Decimal("100"), "required_approvers": 1, "approver_roles": ["APPROVER", "ADMIN"]},
    {"threshold": Decimal("1000"), "required_approvers": 2, "approver_roles": ["ADMIN"]},
]


def default_config(company_id: uuid.UUID) -> WorkflowConfigOut:
    return WorkflowConfigOut(
        company_id=company_id,
        auto_approval_threshold=DEFAULT_AUTO_APPROVAL_THRESHOLD,
        require_approval_above=DEFAULT_REQUIRE_APPROVAL_ABOVE,
        default_approvers=[],
        approval_levels=[ApprovalLevel(**level) for level in DEFAULT_APPROVAL_LEVELS],
        notifications=ConfigNotifications(),
    )


def _row_values(config: WorkflowConfigOut) -> dict:
    data = config.model_dump(mode="json")
    return {
        "auto_approval_threshold": config.auto_approval_threshold,
        "require_approval_above": config.require_approval_above,
        "default_approvers": data["default_approvers"],
        "approval_levels": data["approval_levels"],
        "notifications": data["notifications"],
    }


def _load_row(db: Session, company_id: uuid.UUID) -> WorkflowConfig | None:
    with store_errors(db, "load_workflow_config"):
        return db.execute(
            select(WorkflowConfig).where(WorkflowConfig.company_id == company_id)
        ).scalars().first()


def get_config(db: Session, company_id: uuid.UUID) -> WorkflowConfigOut:
    key = cache.workflow_config_key(company_id)
    cached = cache.get_json(key)
    if cached is not None:
        try:
            return WorkflowConfigOut.model_validate(cached)
        except PydanticValidationError:
            cache.delete(key)

    row = _load_row(db, company_id)
    if row is None:
        config = default_config(company_id)
        with store_errors(db, "create_default_workflow_config"):
            try:
                db.add(WorkflowConfig(company_id=company_id, **_row_values(config)))
                db.commit()
                logger.info("Materialized default workflow config for company %s", company_id)
            except IntegrityError:
                # Another worker created it first; theirs is authoritative.
                db.rollback()
                row = _load_row(db, company_id)
                config = WorkflowConfigOut.model_validate(row)
    else:
        config = WorkflowConfigOut.model_validate(row)

    cache.set_json(key, config.model_dump(mode="json"), settings.WORKFLOW_CONFIG_CACHE_TTL_SECONDS)
    return config


def update_config(
    db: Session,
    company_id: uuid.UUID,
    updates: WorkflowConfigUpdate | dict,
    actor_id: uuid.UUID | None = None,
) -> WorkflowConfigOut:
    """Merge ``updates`` onto the current config and persist it in one transaction.

    On any failure the previous config stays authoritative.
    """
    if not isinstance(updates, WorkflowConfigUpdate):
        try:
            updates = WorkflowConfigUpdate.model_validate(updates)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid workflow config: {exc.errors()[0]['msg']}") from exc

    # Read from the store, not the cache, so the merge base is authoritative.
    cache.delete(cache.workflow_config_key(company_id))
    current = get_config(db, company_id)
    merged_data = current.model_dump()
    merged_data.update(updates.model_dump(exclude_unset=True, exclude_none=True))
    try:
        merged = WorkflowConfigOut.model_validate(merged_data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid workflow config: {exc.errors()[0]['msg']}") from exc

    if merged.require_approval_above < merged.auto_approval_threshold:
        raise ValidationError("require_approval_above must be >= auto_approval_threshold.")

    row = _load_row(db, company_id)
    with store_errors(db, "update_workflow_config"):
        for field, value in _row_values(merged).items():
            setattr(row, field, value)
        audit_svc.log(
            db=db,
            action="workflow_config.updated",
            entity_type="workflow_config",
            entity_id=row.id,
            company_id=company_id,
            actor_id=actor_id,
            before=current.model_dump(mode="json"),
            after=merged.model_dump(mode="json"),
        )
        db.commit()

    cache.delete(cache.workflow_config_key(company_id))
    logger.info("Workflow config updated for company %s", company_id)
    return merged


def resolve_level(config: WorkflowConfigOut, amount: Decimal) -> ApprovalLevel | None:
    """Highest approval level whose threshold the amount reaches."""
    matched = None
    for level in config.approval_levels:
        if amount >= level.threshold:
            matched = level
    return matched
