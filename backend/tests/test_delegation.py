"""Tests for approval delegation: coverage constraints, lifecycle, listings."""
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from receiptvault.core.errors import NotFound, Unauthorized, ValidationError
from receiptvault.db.base import utcnow
from receiptvault.models.delegation import ApprovalDelegation
from receiptvault.services import approval as approval_svc
from receiptvault.services import delegation as delegation_svc


# ─── Helpers ───

@pytest.fixture
def pair(make_user):
    return make_user("APPROVER", name="Delegator"), make_user("APPROVER", name="Delegate")


def _delegate(db, company_id, delegator, delegate, **overrides):
    body = {
        "delegate_to_id": str(delegate.id),
        "start_date": (utcnow() - timedelta(hours=1)).isoformat(),
        "end_date": (utcnow() + timedelta(days=7)).isoformat(),
        "reason": "vacation",
    }
    body.update(overrides)
    return delegation_svc.create_delegation(db, company_id, delegator.id, body)


# ─── Coverage ───

def test_delegate_acts_on_behalf_of_delegator(db, company_id, pair, open_request):
    delegator, delegate = pair
    _delegate(db, company_id, delegator, delegate, max_amount="500")
    request = open_request([delegator], amount=500)

    decided = approval_svc.decide(db, request.id, delegate.id, "approve")

    assert decided.status == "approved"
    assert decided.approved_by == delegate.id
    action = approval_svc.list_actions(db, request.id)[0]
    assert action.user_id == delegate.id
    assert action.on_behalf_of == delegator.id


def test_amount_above_delegation_limit_is_unauthorized(db, company_id, pair, open_request):
    delegator, delegate = pair
    _delegate(db, company_id, delegator, delegate, max_amount="500")
    request = open_request([delegator], amount=600)

    with pytest.raises(Unauthorized):
        approval_svc.decide(db, request.id, delegate.id, "approve")
    assert approval_svc.get_request(db, request.id).status == "pending"


def test_delegation_not_yet_started_grants_nothing(db, company_id, pair, open_request):
    delegator, delegate = pair
    _delegate(
        db, company_id, delegator, delegate,
        start_date=(utcnow() + timedelta(days=1)).isoformat(),
    )
    request = open_request([delegator])

    with pytest.raises(Unauthorized):
        approval_svc.decide(db, request.id, delegate.id, "approve")


def test_delegation_category_restriction(db, company_id, pair, open_request):
    delegator, delegate = pair
    _delegate(db, company_id, delegator, delegate, categories=["Travel"])
    meals = open_request([delegator], category="Meals")
    travel = open_request([delegator], category="Travel")

    with pytest.raises(Unauthorized):
        approval_svc.decide(db, meals.id, delegate.id, "approve")
    assert approval_svc.decide(db, travel.id, delegate.id, "approve").status == "approved"


def test_delegation_category_ignores_case(db, company_id, pair, open_request):
    delegator, delegate = pair
    _delegate(db, company_id, delegator, delegate, categories=["travel"])
    request = open_request([delegator], category="Travel")

    assert approval_svc.decide(db, request.id, delegate.id, "approve").status == "approved"


def test_delegation_only_covers_requests_assigned_to_delegator(db, company_id, pair, make_user, open_request):
    delegator, delegate = pair
    _delegate(db, company_id, delegator, delegate)
    request = open_request([make_user("APPROVER")])

    with pytest.raises(Unauthorized):
        approval_svc.decide(db, request.id, delegate.id, "approve")


def test_delegator_keeps_own_authority(db, company_id, pair, open_request):
    delegator, delegate = pair
    _delegate(db, company_id, delegator, delegate)
    request = open_request([delegator])

    action_owner = approval_svc.decide(db, request.id, delegator.id, "approve")
    assert action_owner.approved_by == delegator.id
    assert approval_svc.list_actions(db, request.id)[0].on_behalf_of is None


def test_delegate_sees_covered_requests_in_pending_list(db, company_id, pair, open_request):
    delegator, delegate = pair
    _delegate(db, company_id, delegator, delegate, max_amount="500")
    covered = open_request([delegator], amount=400)
    open_request([delegator], amount=900)

    items = approval_svc.list_pending_for_approver(db, delegate.id, company_id)
    assert [r.id for r in items] == [covered.id]


# ─── Lifecycle ───

def test_invalid_windows_rejected(db, company_id, pair):
    delegator, delegate = pair
    with pytest.raises(ValidationError):
        _delegate(
            db, company_id, delegator, delegate,
            start_date=utcnow().isoformat(),
            end_date=(utcnow() - timedelta(days=1)).isoformat(),
        )
    with pytest.raises(ValidationError):
        _delegate(db, company_id, delegator, delegator)


def test_delegate_must_belong_to_company(db, company_id, pair, make_user):
    delegator, _ = pair
    stranger = make_user("APPROVER", company=uuid.uuid4())
    with pytest.raises(ValidationError):
        _delegate(db, company_id, delegator, stranger)


def test_only_delegator_or_admin_revokes(db, company_id, pair, make_user, open_request):
    delegator, delegate = pair
    delegation = _delegate(db, company_id, delegator, delegate)

    with pytest.raises(Unauthorized):
        delegation_svc.revoke_delegation(db, delegation.id, company_id, actor_id=delegate.id)

    revoked = delegation_svc.revoke_delegation(db, delegation.id, company_id, actor_id=delegator.id)
    assert revoked.status == "revoked"
    assert revoked.revoked_at is not None

    request = open_request([delegator])
    with pytest.raises(Unauthorized):
        approval_svc.decide(db, request.id, delegate.id, "approve")

    with pytest.raises(ValidationError):
        delegation_svc.revoke_delegation(db, delegation.id, company_id, actor_id=make_user("ADMIN").id, is_admin=True)


def test_revoke_unknown_delegation(db, company_id, pair):
    with pytest.raises(NotFound):
        delegation_svc.revoke_delegation(db, uuid.uuid4(), company_id, actor_id=pair[0].id)


def test_expire_flips_elapsed_delegations(db, company_id, pair):
    delegator, delegate = pair
    live = _delegate(db, company_id, delegator, delegate)
    stale = ApprovalDelegation(
        company_id=company_id,
        delegator_id=delegator.id,
        delegate_to_id=delegate.id,
        start_date=utcnow() - timedelta(days=10),
        end_date=utcnow() - timedelta(days=3),
        status="active",
    )
    db.add(stale)
    db.commit()

    assert delegation_svc.expire_delegations(db) == 1

    statuses = dict(db.execute(select(ApprovalDelegation.id, ApprovalDelegation.status)).all())
    assert statuses == {live.id: "active", stale.id: "expired"}


def test_list_delegations_for_user(db, company_id, pair, make_user):
    delegator, delegate = pair
    _delegate(db, company_id, delegator, delegate)
    bystander = make_user("APPROVER")

    assert len(delegation_svc.list_delegations(db, company_id, user_id=delegate.id)) == 1
    assert delegation_svc.list_delegations(db, company_id, user_id=bystander.id) == []
