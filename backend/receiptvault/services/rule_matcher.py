"""Approval rule matching.

``first_match`` is a pure function over a rule snapshot; ``match`` feeds it
the company's cached active rules. A rule matches when every condition it
specifies holds. Conditions it leaves unset impose no constraint.
"""
import logging
import uuid
from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy.orm import Session

from receiptvault.db.base import as_utc
from receiptvault.schemas.approval_rule import ApprovalRuleOut, RuleConditions
from receiptvault.services import rule_store

logger = logging.getLogger(__name__)


def _to_decimal(amount) -> Decimal:
    return amount if isinstance(amount, Decimal) else Decimal(str(amount))


def conditions_hold(
    conditions: RuleConditions,
    amount: Decimal,
    category: str | None,
    vendor: str | None = None,
    submitter_role: str | None = None,
) -> bool:
    if conditions.amount_threshold is not None and amount < conditions.amount_threshold:
        return False

    if conditions.categories:
        allowed = {c.casefold() for c in conditions.categories}
        if category is None or category.strip().casefold() not in allowed:
            return False

    # Vendor is only constrained once OCR has produced one.
    if conditions.vendors and vendor:
        allowed = {v.casefold() for v in conditions.vendors}
        if vendor.strip().casefold() not in allowed:
            return False

    if conditions.user_roles:
        if submitter_role is None or submitter_role.upper() not in conditions.user_roles:
            return False

    return True


def first_match(
    rules: Iterable[ApprovalRuleOut],
    amount,
    category: str | None,
    vendor: str | None = None,
    submitter_role: str | None = None,
) -> ApprovalRuleOut | None:
    """Return the first active rule (priority asc, then created_at asc) whose conditions all hold."""
    amount = _to_decimal(amount)
    ordered = sorted(rules, key=lambda r: (r.priority, as_utc(r.created_at)))
    for rule in ordered:
        if not rule.is_active:
            continue
        if conditions_hold(rule.conditions, amount, category, vendor, submitter_role):
            return rule
    return None


def match(
    db: Session,
    company_id: uuid.UUID,
    amount,
    category: str | None,
    vendor: str | None = None,
    submitter_role: str | None = None,
) -> ApprovalRuleOut | None:
    """Match a submission against the company's active rules.

    None means no rule applies, which callers treat as "no approval
    required". That is distinct from a matched rule with
    ``requires_approval=False``.
    """
    rules = rule_store.list_rules(db, company_id, active_only=True)
    rule = first_match(rules, amount, category, vendor, submitter_role)
    logger.debug(
        "Rule match: company=%s amount=%s category=%s -> %s",
        company_id, amount, category, rule.id if rule else None,
    )
    return rule
