"""
Gym Access Platform
Tests — subscription freeze/unfreeze and the expired-subscription sync.
"""

from datetime import timedelta

import pytest

from gymaccess.core.exceptions import ConflictError, NotFoundError, ValidationError
from gymaccess.models import db
from gymaccess.models.audit import AuditLog
from gymaccess.models.identity import (
    ENTITLEMENT_ACTIVE,
    ENTITLEMENT_CANCELED,
    ENTITLEMENT_EXPIRED,
    ENTITLEMENT_FROZEN,
    Identity,
)
from gymaccess.services.subscription_service import (
    freeze_entitlement,
    sync_expired_subscriptions,
    unfreeze_entitlement,
    validate_subscription_transition,
)
from gymaccess.utils.helpers import as_utc

from conftest import FIXED_NOW, auth_headers


class TestTransitions:
    @pytest.mark.parametrize("old,new,ok", [
        (ENTITLEMENT_ACTIVE, ENTITLEMENT_FROZEN, True),
        (ENTITLEMENT_ACTIVE, ENTITLEMENT_EXPIRED, True),
        (ENTITLEMENT_FROZEN, ENTITLEMENT_ACTIVE, True),
        (ENTITLEMENT_FROZEN, ENTITLEMENT_EXPIRED, False),
        (ENTITLEMENT_EXPIRED, ENTITLEMENT_ACTIVE, False),
        (ENTITLEMENT_CANCELED, ENTITLEMENT_FROZEN, False),
    ])
    def test_allowed(self, old, new, ok):
        assert validate_subscription_transition(old, new) is ok


class TestFreeze:
    def test_freeze_keeps_remaining_days(self, tenant, make_identity, make_entitlement):
        ent = make_entitlement(make_identity(tenant), expires_at=FIXED_NOW + timedelta(days=9, hours=3))
        freeze_entitlement(tenant.id, ent.id, actor="7")
        assert ent.status == ENTITLEMENT_FROZEN
        # partial days round up
        assert ent.frozen_days_left == 10
        log = AuditLog.query.filter_by(action="subscription.frozen").one()
        assert log.actor == "7"

    def test_frozen_cannot_freeze_again(self, tenant, make_identity, make_entitlement):
        ent = make_entitlement(make_identity(tenant), status=ENTITLEMENT_FROZEN)
        with pytest.raises(ConflictError):
            freeze_entitlement(tenant.id, ent.id)

    def test_lapsed_cannot_freeze(self, tenant, make_identity, make_entitlement):
        ent = make_entitlement(make_identity(tenant), expires_at=FIXED_NOW - timedelta(hours=1))
        with pytest.raises(ValidationError):
            freeze_entitlement(tenant.id, ent.id)

    def test_other_tenant_not_found(self, make_tenant, make_identity, make_entitlement):
        owner, other = make_tenant(), make_tenant()
        ent = make_entitlement(make_identity(owner))
        with pytest.raises(NotFoundError):
            freeze_entitlement(other.id, ent.id)

    def test_unfreeze_restores_days_from_now(self, clock, tenant, make_identity, make_entitlement):
        ent = make_entitlement(make_identity(tenant), expires_at=FIXED_NOW + timedelta(days=5))
        freeze_entitlement(tenant.id, ent.id)
        later = clock.advance(days=20)
        unfreeze_entitlement(tenant.id, ent.id)
        assert ent.status == ENTITLEMENT_ACTIVE
        assert ent.frozen_days_left is None
        assert as_utc(ent.expires_at) == later + timedelta(days=5)

    def test_unfreeze_active_conflict(self, tenant, make_identity, make_entitlement):
        ent = make_entitlement(make_identity(tenant))
        with pytest.raises(ConflictError):
            unfreeze_entitlement(tenant.id, ent.id)


class TestExpiredSync:
    def test_lapsed_active_marked_expired(self, tenant, make_identity, make_entitlement):
        lapsed = make_entitlement(make_identity(tenant), expires_at=FIXED_NOW - timedelta(days=1))
        current = make_entitlement(make_identity(tenant, name="Other"))

        result = sync_expired_subscriptions()
        assert result == {"expired": 1, "streaks_protected": 1}
        assert lapsed.status == ENTITLEMENT_EXPIRED
        assert current.status == ENTITLEMENT_ACTIVE
        assert AuditLog.query.filter_by(action="subscription.sync_expired").count() == 1

    def test_owner_streak_protected(self, make_tenant, make_identity, make_entitlement):
        tenant = make_tenant(rewards_config={"streak_freeze_days": 3})
        identity = make_identity(tenant, current_streak=8)
        lapsed_at = FIXED_NOW - timedelta(days=1)
        make_entitlement(identity, expires_at=lapsed_at)

        sync_expired_subscriptions()
        assert as_utc(db.session.get(Identity, identity.id).streak_freeze_until) == lapsed_at + timedelta(days=3)

    def test_later_freeze_not_shortened(self, tenant, make_identity, make_entitlement):
        far = FIXED_NOW + timedelta(days=60)
        identity = make_identity(tenant, streak_freeze_until=far)
        make_entitlement(identity, expires_at=FIXED_NOW - timedelta(days=1))

        result = sync_expired_subscriptions()
        assert result["streaks_protected"] == 0
        assert as_utc(db.session.get(Identity, identity.id).streak_freeze_until) == far

    def test_scoped_to_tenant(self, make_tenant, make_identity, make_entitlement):
        a, b = make_tenant(), make_tenant()
        make_entitlement(make_identity(a), expires_at=FIXED_NOW - timedelta(days=1))
        make_entitlement(make_identity(b), expires_at=FIXED_NOW - timedelta(days=1))
        assert sync_expired_subscriptions(tenant_id=a.id)["expired"] == 1
        assert sync_expired_subscriptions()["expired"] == 1

    def test_nothing_to_do(self, member):
        assert sync_expired_subscriptions() == {"expired": 0, "streaks_protected": 0}


class TestSubscriptionApi:
    def test_freeze_and_unfreeze(self, client, tenant, member):
        ent = member.entitlements.first()
        headers = auth_headers(tenant)

        res = client.post(f"/api/v1/subscriptions/{ent.id}/freeze", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["status"] == "frozen"
        assert res.get_json()["frozen_days_left"] == 30

        assert client.post(f"/api/v1/subscriptions/{ent.id}/freeze", headers=headers).status_code == 409

        res = client.post(f"/api/v1/subscriptions/{ent.id}/unfreeze", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["status"] == "active"
        assert res.get_json()["expires_at"].endswith("+00:00")

    def test_unknown_subscription_404(self, client, tenant):
        res = client.post("/api/v1/subscriptions/999/freeze", headers=auth_headers(tenant))
        assert res.status_code == 404
