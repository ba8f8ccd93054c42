"""Shared fixtures: throwaway SQLite store, in-memory cache, recording notifier.

Environment overrides must be set before any receiptvault import so the
settings singleton and the engine pick them up.
"""
import os
import tempfile
import uuid
from decimal import Decimal

_DB_PATH = os.path.join(tempfile.gettempdir(), f"receiptvault-tests-{os.getpid()}.db")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_PATH}"
os.environ["APP_ENV"] = "test"
os.environ["CACHE_ENABLED"] = "true"
os.environ["NOTIFIER_BACKEND"] = "log"
os.environ["SENTRY_DSN"] = ""

import pytest  # noqa: E402
import redis  # noqa: E402

import receiptvault.models  # noqa: E402,F401
from receiptvault.core import cache  # noqa: E402
from receiptvault.db.base import Base  # noqa: E402
from receiptvault.db.session import SessionLocal, engine  # noqa: E402
from receiptvault.models.receipt import Receipt  # noqa: E402
from receiptvault.models.user import User  # noqa: E402
from receiptvault.services import notifications  # noqa: E402
from receiptvault.services import rule_store  # noqa: E402


# ─── Fakes ───

class FakeRedis:
    """Dict-backed stand-in for the handful of redis.Redis calls the cache uses."""

    def __init__(self):
        self.store: dict[str, str] = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self.store[key] = value
        return True

    def incr(self, key):
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value)
        return value

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed


class BrokenRedis:
    """Every call fails the way an unreachable Redis does."""

    def get(self, key):
        raise redis.ConnectionError("connection refused")

    def set(self, key, value, ex=None):
        raise redis.ConnectionError("connection refused")

    def delete(self, *keys):
        raise redis.ConnectionError("connection refused")

    def incr(self, key):
        raise redis.ConnectionError("connection refused")


class RecordingNotifier:
    def __init__(self):
        self.sent: list[tuple[list[str], str, dict]] = []

    def notify(self, recipients, event_type, summary):
        self.sent.append((recipients, event_type, summary))

    def events(self) -> list[str]:
        return [event for _, event, _ in self.sent]


# ─── Autouse plumbing ───

@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(autouse=True)
def fake_redis():
    fake = FakeRedis()
    cache._client = fake
    yield fake
    cache._client = None


@pytest.fixture(autouse=True)
def notifier():
    recorder = RecordingNotifier()
    notifications.set_notifier(recorder)
    yield recorder
    notifications.set_notifier(None)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def company_id():
    return uuid.uuid4()


# ─── Factories ───

@pytest.fixture
def make_user(db, company_id):
    def _make(role="EMPLOYEE", company=None, name=None):
        uid = uuid.uuid4()
        user = User(
            id=uid,
            company_id=company or company_id,
            email=f"{uid.hex[:12]}@example.com",
            name=name or role.title(),
            role=role,
            is_active=True,
        )
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def make_receipt(db, company_id):
    def _make(user, amount, category="Meals", vendor="Cafe Nero", company=None):
        receipt = Receipt(
            company_id=company or company_id,
            user_id=user.id,
            amount=Decimal(str(amount)),
            currency="USD",
            category=category,
            vendor=vendor,
        )
        db.add(receipt)
        db.commit()
        return receipt
    return _make


@pytest.fixture
def make_rule(db, company_id):
    def _make(priority=100, conditions=None, company=None, name="Rule", is_active=True, **actions):
        return rule_store.create_rule(
            db,
            company or company_id,
            {
                "name": name,
                "priority": priority,
                "is_active": is_active,
                "conditions": conditions or {},
                "actions": actions,
            },
        )
    return _make


@pytest.fixture
def open_request(db, company_id, make_user, make_receipt, make_rule):
    """Factory for a pending request assigned to ``approvers``."""
    from receiptvault.services import approval as approval_svc

    def _make(approvers, amount=500, category="Meals", submitter=None, conditions=None, **rule_actions):
        submitter = submitter or make_user("EMPLOYEE")
        receipt = make_receipt(submitter, amount, category=category)
        rule = make_rule(conditions=conditions, approvers=[str(a.id) for a in approvers], **rule_actions)
        return approval_svc.create_request(
            db,
            receipt_id=receipt.id,
            user_id=submitter.id,
            company_id=company_id,
            rule=rule,
            amount=receipt.amount,
            category=receipt.category,
            vendor=receipt.vendor,
        )
    return _make
