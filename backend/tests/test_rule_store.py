"""Tests for rule persistence and its Redis read-through cache."""
import json
import uuid

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError

from receiptvault.core import cache
from receiptvault.core.errors import InfrastructureError, NotFound, ValidationError
from receiptvault.models.approval_rule import ApprovalRule
from receiptvault.models.audit import AuditLog
from receiptvault.services import rule_store

from conftest import BrokenRedis


def test_rules_listed_by_priority_then_creation(db, company_id, make_rule):
    make_rule(priority=50, name="b")
    make_rule(priority=10, name="a")
    make_rule(priority=50, name="c")

    names = [r.name for r in rule_store.list_rules(db, company_id)]
    assert names == ["a", "b", "c"]


def test_active_only_excludes_disabled_rules(db, company_id, make_rule):
    make_rule(name="on")
    off = make_rule(name="off")
    rule_store.disable_rule(db, off.id, company_id)

    assert [r.name for r in rule_store.list_rules(db, company_id, active_only=True)] == ["on"]
    assert len(rule_store.list_rules(db, company_id)) == 2


def _cached_key(company_id, active_only):
    return cache.rules_key(company_id, active_only, cache.get_version(cache.rules_version_key(company_id)))


def test_list_is_served_from_cache_until_invalidated(db, company_id, make_rule, fake_redis):
    rule = make_rule(name="original")
    rule_store.list_rules(db, company_id, active_only=True)
    assert _cached_key(company_id, True) in fake_redis.store

    # Bypass the service so the cache is not invalidated
    db.execute(update(ApprovalRule).where(ApprovalRule.id == rule.id).values(name="renamed"))
    db.commit()
    db.expire_all()
    assert rule_store.list_rules(db, company_id, active_only=True)[0].name == "original"

    rule_store.invalidate(company_id)
    assert rule_store.list_rules(db, company_id, active_only=True)[0].name == "renamed"


def test_writes_retire_both_cached_lists(db, company_id, make_rule, fake_redis):
    rule = make_rule(name="first")
    rule_store.list_rules(db, company_id, active_only=True)
    rule_store.list_rules(db, company_id, active_only=False)
    before = cache.get_version(cache.rules_version_key(company_id))

    rule_store.update_rule(db, rule.id, company_id, {"priority": 5})

    assert cache.get_version(cache.rules_version_key(company_id)) == before + 1
    assert _cached_key(company_id, True) not in fake_redis.store
    assert _cached_key(company_id, False) not in fake_redis.store
    assert rule_store.list_rules(db, company_id)[0].priority == 5


def test_list_filled_from_stale_read_is_not_served_after_write(db, company_id, make_rule, monkeypatch):
    make_rule(name="existing")
    real_set_json = cache.set_json
    raced = []

    def write_lands_before_fill(key, value, ttl_seconds):
        if not raced:
            raced.append(key)
            rule_store.create_rule(db, company_id, {"name": "added-mid-read"})
        real_set_json(key, value, ttl_seconds)

    monkeypatch.setattr(cache, "set_json", write_lands_before_fill)
    assert [r.name for r in rule_store.list_rules(db, company_id)] == ["existing"]

    names = [r.name for r in rule_store.list_rules(db, company_id)]
    assert names == ["existing", "added-mid-read"]


def test_corrupt_cache_entry_is_discarded(db, company_id, make_rule, fake_redis):
    make_rule(name="real")
    fake_redis.store[_cached_key(company_id, False)] = json.dumps([{"bogus": True}])

    assert [r.name for r in rule_store.list_rules(db, company_id)] == ["real"]


def test_cache_outage_falls_back_to_store(db, company_id, make_rule):
    make_rule(name="still-here")
    cache._client = BrokenRedis()

    assert [r.name for r in rule_store.list_rules(db, company_id)] == ["still-here"]
    # Writes succeed too; invalidation failure is only logged
    rule_store.create_rule(db, company_id, {"name": "another"})
    assert len(rule_store.list_rules(db, company_id)) == 2


def test_create_and_update_are_audited(db, company_id, make_user):
    admin = make_user("ADMIN")
    rule = rule_store.create_rule(db, company_id, {"name": "audited"}, created_by=admin.id)
    rule_store.update_rule(db, rule.id, company_id, {"description": "now described"}, actor_id=admin.id)

    actions = db.execute(
        select(AuditLog.action).where(AuditLog.entity_id == rule.id).order_by(AuditLog.created_at)
    ).scalars().all()
    assert actions == ["approval_rule.created", "approval_rule.updated"]


def test_rule_is_scoped_to_company(db, company_id, make_rule):
    rule = make_rule(name="mine")
    with pytest.raises(NotFound):
        rule_store.get_rule(db, rule.id, uuid.uuid4())


def test_invalid_rule_body_raises_validation_error(db, company_id):
    with pytest.raises(ValidationError):
        rule_store.create_rule(db, company_id, {"name": "bad", "conditions": {"user_roles": ["WIZARD"]}})


def test_update_cannot_clear_required_fields(db, company_id, make_rule):
    rule = make_rule(name="keep")
    with pytest.raises(ValidationError):
        rule_store.update_rule(db, rule.id, company_id, {"name": None})


def test_store_outage_surfaces_as_infrastructure_error(db, company_id, monkeypatch):
    def down(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection reset"))

    monkeypatch.setattr(db, "execute", down)
    with pytest.raises(InfrastructureError):
        rule_store.get_rule(db, uuid.uuid4(), company_id)
