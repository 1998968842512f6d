"""
Gym Access Platform
Tests — check-in endpoint end to end.

Covers:
    1. Streak credit, closed-day and freeze exceptions, rewards
    2. QR payloads, capability gates, tenant and identity resolution
    3. Entitlement refusals and the grace freeze they leave behind
    4. Anti-passback, staff entries, gamification switched off
    5. Notifications, concurrent updates, corrupt stored settings
"""

from datetime import date, time, timedelta

import pytest
from sqlalchemy import text

from gymaccess.models import db
from gymaccess.models.entry import EntryRecord
from gymaccess.models.identity import ENTITLEMENT_EXPIRED, ROLE_STAFF, Identity
from gymaccess.models.tenant import TIER_BASIC, TENANT_STATUS_SUSPENDED
from gymaccess.services import checkin_service
from gymaccess.utils.helpers import as_utc

from conftest import FIXED_NOW, auth_headers

TODAY = FIXED_NOW.date()
YESTERDAY = TODAY - timedelta(days=1)


def _checkin(client, tenant, **body):
    headers = auth_headers(tenant, roles=("staff",)) if tenant is not None else {}
    return client.post("/api/v1/checkin", json=body, headers=headers)


def _streaker(member, streak, last_credit, **kw):
    member.current_streak = streak
    member.last_streak_credit_date = last_credit
    for key, value in kw.items():
        setattr(member, key, value)
    db.session.commit()
    return member


def _entries(identity):
    return EntryRecord.query.filter_by(identity_id=identity.id).count()


# ═════════════════════════════════════════════════════════════════════════
# Streak scenarios
# ═════════════════════════════════════════════════════════════════════════


class TestStreakCredit:
    def test_first_entry_starts_streak(self, client, tenant, member):
        res = _checkin(client, tenant, identity_id=member.id)
        assert res.status_code == 200
        assert res.get_json() == {
            "credited": True, "new_streak": 1, "reward_unlocked": False, "reward_label": None,
        }
        assert member.last_streak_credit_date == TODAY

    def test_consecutive_day_increments(self, client, tenant, member):
        _streaker(member, 5, YESTERDAY)
        res = _checkin(client, tenant, identity_id=member.id)
        body = res.get_json()
        assert body["new_streak"] == 6
        assert body["credited"] is True

    def test_unexcused_gap_restarts(self, client, tenant, member):
        _streaker(member, 5, TODAY - timedelta(days=4))
        body = _checkin(client, tenant, identity_id=member.id).get_json()
        assert body["new_streak"] == 1
        assert body["credited"] is True

    def test_gap_of_closed_days_keeps_streak(self, client, make_tenant, make_identity, make_entitlement):
        # Sat 7th → Wed 11th; Sun, Mon, Tue are closed
        tenant = make_tenant(opening_config={"closed_weekdays": [0, 1, 2]})
        member = make_identity(tenant)
        make_entitlement(member)
        _streaker(member, 5, date(2026, 3, 7))

        body = _checkin(client, tenant, identity_id=member.id).get_json()
        assert body["new_streak"] == 5
        assert body["credited"] is False
        assert member.last_streak_credit_date == TODAY

    def test_freeze_keeps_streak_and_is_consumed(self, client, tenant, member):
        _streaker(member, 9, TODAY - timedelta(days=6),
                  streak_freeze_until=FIXED_NOW + timedelta(days=1))
        body = _checkin(client, tenant, identity_id=member.id).get_json()
        assert body["new_streak"] == 9
        assert body["credited"] is False
        assert member.streak_freeze_until is None

    def test_second_entry_same_day_not_credited(self, client, clock, tenant, member):
        _checkin(client, tenant, identity_id=member.id)
        clock.advance(hours=3)
        body = _checkin(client, tenant, identity_id=member.id).get_json()
        assert body["credited"] is False
        assert body["new_streak"] == 1
        assert _entries(member) == 2

    def test_calendar_day_follows_tenant_zone(self, client, clock, make_tenant, make_identity, make_entitlement):
        # 03:00 UTC on the 12th is still the 11th in Bogotá
        tenant = make_tenant(time_zone="America/Bogota")
        member = make_identity(tenant)
        make_entitlement(member)
        _streaker(member, 2, date(2026, 3, 10))
        clock.advance(hours=12)
        body = _checkin(client, tenant, identity_id=member.id).get_json()
        assert body["new_streak"] == 3
        assert member.last_streak_credit_date == date(2026, 3, 11)


class TestRewards:
    @pytest.fixture()
    def reward_tenant(self, make_tenant):
        return make_tenant(rewards_config={"streak_rewards": [
            {"days": 7, "label": "Free shake"},
            {"days": 30, "label": "Free month"},
        ]})

    def test_reaching_threshold_unlocks(self, client, reward_tenant, make_identity, make_entitlement):
        member = make_identity(reward_tenant)
        make_entitlement(member)
        _streaker(member, 6, YESTERDAY)
        body = _checkin(client, reward_tenant, identity_id=member.id).get_json()
        assert body["new_streak"] == 7
        assert body["reward_unlocked"] is True
        assert body["reward_label"] == "Free shake"

    def test_past_threshold_no_reward(self, client, reward_tenant, make_identity, make_entitlement):
        member = make_identity(reward_tenant)
        make_entitlement(member)
        _streaker(member, 7, YESTERDAY)
        body = _checkin(client, reward_tenant, identity_id=member.id).get_json()
        assert body["new_streak"] == 8
        assert body["reward_unlocked"] is False
        assert body["reward_label"] is None

    def test_legacy_numeric_keys(self, client, make_tenant, make_identity, make_entitlement):
        tenant = make_tenant(rewards_config={"3": "Water bottle", "points_per_visit": 10})
        member = make_identity(tenant)
        make_entitlement(member)
        _streaker(member, 2, YESTERDAY)
        body = _checkin(client, tenant, identity_id=member.id).get_json()
        assert body["reward_label"] == "Water bottle"


# ═════════════════════════════════════════════════════════════════════════
# Resolution & gates
# ═════════════════════════════════════════════════════════════════════════


class TestResolution:
    @pytest.mark.parametrize("code", ["GYM_QR_tok-ada", "tok-ada", "  GYM_QR_tok-ada "])
    def test_qr_code_forms(self, client, tenant, member, code):
        res = _checkin(client, tenant, code=code)
        assert res.status_code == 200
        entry = EntryRecord.query.filter_by(identity_id=member.id).one()
        assert entry.access_method == "qr"

    def test_unknown_code_404(self, client, tenant, member):
        res = _checkin(client, tenant, code="GYM_QR_nope")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_IDENTITY_NOT_FOUND"

    def test_printed_payload_resolves(self, client, tenant, member):
        assert member.qr_payload == "GYM_QR_tok-ada"
        assert _checkin(client, tenant, code=member.qr_payload).status_code == 200

    def test_soft_deleted_identity_404(self, client, tenant, member):
        member.soft_delete()
        db.session.commit()
        assert _checkin(client, tenant, identity_id=member.id).status_code == 404

    def test_identity_from_other_tenant_404(self, client, make_tenant, member):
        other = make_tenant()
        res = _checkin(client, other, identity_id=member.id)
        assert res.status_code == 404

    def test_missing_body_400(self, client, tenant):
        res = _checkin(client, tenant)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_token_without_tenant_401(self, client, member):
        res = client.post("/api/v1/checkin", json={"identity_id": member.id},
                          headers=auth_headers(None, roles=("staff",)))
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_TENANT_CONTEXT"

    def test_unknown_tenant_401(self, client, member):
        res = client.post("/api/v1/checkin", json={"identity_id": member.id},
                          headers=auth_headers(None, roles=("staff",), tenant_id=9999))
        assert res.status_code == 401

    def test_suspended_tenant_401(self, client, tenant, member):
        tenant.status = TENANT_STATUS_SUSPENDED
        db.session.commit()
        assert _checkin(client, tenant, identity_id=member.id).status_code == 401

    def test_unknown_access_method_422(self, client, tenant, member):
        res = _checkin(client, tenant, identity_id=member.id, access_method="nfc")
        assert res.status_code == 422

    def test_qr_disabled_on_basic_tier(self, client, make_tenant, make_identity, make_entitlement):
        tenant = make_tenant(subscription_tier=TIER_BASIC)
        member = make_identity(tenant, qr_token="tok-basic")
        make_entitlement(member)
        res = _checkin(client, tenant, code="GYM_QR_tok-basic")
        assert res.status_code == 403
        body = res.get_json()
        assert body["code"] == "ERR_CAPABILITY_DISABLED"
        assert body["details"] == {"capability": "qr_access"}
        assert _entries(member) == 0

    def test_manual_allowed_on_basic_tier(self, client, make_tenant, make_identity, make_entitlement):
        tenant = make_tenant(subscription_tier=TIER_BASIC)
        member = make_identity(tenant)
        make_entitlement(member)
        body = _checkin(client, tenant, identity_id=member.id).get_json()
        # gamification is off on basic
        assert body == {"credited": False, "new_streak": 0, "reward_unlocked": False, "reward_label": None}
        assert _entries(member) == 1

    def test_override_disables_qr(self, client, make_tenant, make_identity, make_entitlement):
        tenant = make_tenant(modules_config={"qr_access": False})
        member = make_identity(tenant, qr_token="tok-x")
        make_entitlement(member)
        assert _checkin(client, tenant, code="tok-x").status_code == 403


# ═════════════════════════════════════════════════════════════════════════
# Entitlement refusals
# ═════════════════════════════════════════════════════════════════════════


class TestEntitlement:
    def test_no_entitlement_403(self, client, tenant, make_identity):
        identity = make_identity(tenant)
        res = _checkin(client, tenant, identity_id=identity.id)
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_NO_ACTIVE_ENTITLEMENT"
        assert _entries(identity) == 0

    def test_lapse_sets_grace_freeze(self, client, tenant, make_identity, make_entitlement):
        identity = make_identity(tenant, current_streak=4, last_streak_credit_date=YESTERDAY)
        lapsed_at = FIXED_NOW - timedelta(days=2)
        make_entitlement(identity, expires_at=lapsed_at, status=ENTITLEMENT_EXPIRED)

        assert _checkin(client, tenant, identity_id=identity.id).status_code == 403
        db.session.refresh(identity)
        assert as_utc(identity.streak_freeze_until) == lapsed_at + timedelta(days=7)
        assert identity.current_streak == 4

    def test_old_lapse_sets_no_freeze(self, client, tenant, make_identity, make_entitlement):
        identity = make_identity(tenant, current_streak=4, last_streak_credit_date=YESTERDAY)
        make_entitlement(identity, expires_at=FIXED_NOW - timedelta(days=30), status=ENTITLEMENT_EXPIRED)
        _checkin(client, tenant, identity_id=identity.id)
        db.session.refresh(identity)
        assert identity.streak_freeze_until is None

    def test_zero_streak_gets_no_freeze(self, client, tenant, make_identity):
        identity = make_identity(tenant)
        _checkin(client, tenant, identity_id=identity.id)
        db.session.refresh(identity)
        assert identity.streak_freeze_until is None

    def test_outside_window_403(self, client, tenant, make_identity, make_entitlement):
        identity = make_identity(tenant)
        make_entitlement(identity, window=(time(6), time(10)))
        res = _checkin(client, tenant, identity_id=identity.id)
        assert res.status_code == 403
        body = res.get_json()
        assert body["code"] == "ERR_OUTSIDE_ALLOWED_WINDOW"
        assert body["details"] == {"allowed_start_time": "06:00", "allowed_end_time": "10:00"}


# ═════════════════════════════════════════════════════════════════════════
# Anti-passback & staff
# ═════════════════════════════════════════════════════════════════════════


class TestAntiPassback:
    def test_replay_within_cooldown_409(self, client, clock, tenant, member):
        assert _checkin(client, tenant, identity_id=member.id).status_code == 200
        clock.advance(minutes=30)
        res = _checkin(client, tenant, identity_id=member.id)
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_REPLAY_BLOCKED"
        assert body["details"]["retry_after_seconds"] == 5400
        assert res.headers["Retry-After"] == "5400"
        assert _entries(member) == 1

    def test_allowed_after_cooldown(self, client, clock, tenant, member):
        _checkin(client, tenant, identity_id=member.id)
        clock.advance(hours=2)
        assert _checkin(client, tenant, identity_id=member.id).status_code == 200
        assert _entries(member) == 2

    def test_persisted_entry_blocks_when_store_empty(self, app, client, clock, tenant, member):
        _checkin(client, tenant, identity_id=member.id)
        app.extensions["replay_store"].clear()
        clock.advance(minutes=10)
        assert _checkin(client, tenant, identity_id=member.id).status_code == 409

    def test_qr_and_manual_share_cooldown(self, client, clock, tenant, member):
        _checkin(client, tenant, code="GYM_QR_tok-ada")
        clock.advance(minutes=5)
        assert _checkin(client, tenant, identity_id=member.id).status_code == 409


class TestStaff:
    def test_staff_needs_no_entitlement(self, client, tenant, make_identity, notifications):
        staff = make_identity(tenant, name="Sam Staff", role=ROLE_STAFF)
        res = _checkin(client, tenant, identity_id=staff.id)
        assert res.status_code == 200
        assert res.get_json() == {
            "credited": False, "new_streak": 0, "reward_unlocked": False, "reward_label": None,
        }
        assert _entries(staff) == 1
        assert notifications.calls == []

    def test_staff_replay_blocked_from_entry_log(self, app, client, clock, tenant, make_identity):
        staff = make_identity(tenant, role=ROLE_STAFF)
        _checkin(client, tenant, identity_id=staff.id)
        app.extensions["replay_store"].clear()
        clock.advance(minutes=30)
        assert _checkin(client, tenant, identity_id=staff.id).status_code == 409


class TestGamificationOff:
    def test_entry_recorded_without_streak(self, client, make_tenant, make_identity, make_entitlement):
        tenant = make_tenant(modules_config={"gamification": False})
        member = make_identity(tenant, current_streak=3, last_streak_credit_date=YESTERDAY)
        make_entitlement(member)
        body = _checkin(client, tenant, identity_id=member.id).get_json()
        assert body["credited"] is False
        assert body["new_streak"] == 3
        assert member.last_streak_credit_date == YESTERDAY
        assert _entries(member) == 1


# ═════════════════════════════════════════════════════════════════════════
# Notifications
# ═════════════════════════════════════════════════════════════════════════


class _ExplodingDispatcher:
    def notify_checkin(self, **kwargs):
        raise RuntimeError("webhook down")


class TestNotifications:
    def test_admitted_entry_notifies(self, client, tenant, member, notifications):
        _checkin(client, tenant, identity_id=member.id)
        assert notifications.calls == [{
            "tenant_id": tenant.id, "identity_id": member.id, "new_streak": 1, "reward_label": None,
        }]

    def test_refused_entry_does_not_notify(self, client, tenant, make_identity, notifications):
        identity = make_identity(tenant)
        _checkin(client, tenant, identity_id=identity.id)
        assert notifications.calls == []

    def test_dispatch_failure_does_not_fail_checkin(self, app, client, tenant, member, monkeypatch):
        monkeypatch.setitem(app.extensions, "notification_dispatcher", _ExplodingDispatcher())
        res = _checkin(client, tenant, identity_id=member.id)
        assert res.status_code == 200
        assert _entries(member) == 1


# ═════════════════════════════════════════════════════════════════════════
# Concurrent updates
# ═════════════════════════════════════════════════════════════════════════


def _racing_loader(monkeypatch, *, races=1, before_rerun=None):
    """Simulate a competing writer bumping the identity row after each read."""
    real = checkin_service.load_identity
    calls = {"n": 0}

    def _load(*args, **kwargs):
        identity = real(*args, **kwargs)
        calls["n"] += 1
        if calls["n"] <= races:
            db.session.execute(
                text("UPDATE identities SET version = version + 1 WHERE id = :id"),
                {"id": identity.id},
            )
        elif before_rerun:
            before_rerun(identity)
        return identity

    monkeypatch.setattr(checkin_service, "load_identity", _load)
    return calls


class TestConcurrency:
    def test_lost_race_is_rerun_once(self, client, tenant, member, monkeypatch):
        calls = _racing_loader(monkeypatch, races=1)
        res = _checkin(client, tenant, identity_id=member.id)
        assert res.status_code == 200
        assert res.get_json()["new_streak"] == 1
        assert calls["n"] == 2
        assert _entries(member) == 1

    def test_losing_twice_is_internal_failure(self, client, tenant, member, monkeypatch):
        _racing_loader(monkeypatch, races=2)
        res = _checkin(client, tenant, identity_id=member.id)
        assert res.status_code == 500
        assert res.get_json()["code"] == "ERR_INTERNAL"
        assert _entries(member) == 0

    def test_rerun_sees_competing_entry(self, app, client, tenant, member, monkeypatch):
        store = app.extensions["replay_store"]

        def _competitor_entered(identity):
            store.remember(identity.tenant_id, identity.id, FIXED_NOW, 7200)

        _racing_loader(monkeypatch, races=1, before_rerun=_competitor_entered)
        res = _checkin(client, tenant, identity_id=member.id)
        assert res.status_code == 409
        assert _entries(member) == 0
        assert db.session.get(Identity, member.id).current_streak == 0


# ═════════════════════════════════════════════════════════════════════════
# Corrupt stored settings
# ═════════════════════════════════════════════════════════════════════════


class TestCorruptSettings:
    def test_invalid_rewards_blob_is_internal_failure(self, client, make_tenant, make_identity, make_entitlement):
        tenant = make_tenant(rewards_config={"streak_rewards": [{"days": 7, "label": "A"},
                                                                {"days": 7, "label": "B"}]})
        member = make_identity(tenant)
        make_entitlement(member)
        res = _checkin(client, tenant, identity_id=member.id)
        assert res.status_code == 500
        assert res.get_json() == {"error": "Failed to process check-in", "code": "ERR_INTERNAL"}
        assert _entries(member) == 0

    def test_invalid_opening_blob_is_internal_failure(self, client, make_tenant, make_identity, make_entitlement):
        tenant = make_tenant(opening_config={"closed_weekdays": [9]})
        member = make_identity(tenant)
        make_entitlement(member)
        assert _checkin(client, tenant, identity_id=member.id).status_code == 500
