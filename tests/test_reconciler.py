"""
Gym Access Platform
Tests — nightly streak reconciliation.

Covers:
    1. Lapsed streaks reset, kept streaks untouched
    2. Closed days, freezes and tenant reactivation excuse a gap
    3. Tenant eligibility and per-tenant failure isolation
    4. The sweep agrees with what a live check-in would decide
"""

from datetime import date, timedelta

import pytest

from gymaccess.models import db
from gymaccess.models.identity import ROLE_STAFF, Identity
from gymaccess.models.tenant import TIER_BASIC, TENANT_STATUS_SUSPENDED
from gymaccess.services.reconciler import run_streak_reconciliation
from gymaccess.services.streak import StreakContext, StreakState, transition

from conftest import FIXED_NOW

TODAY = FIXED_NOW.date()  # Wednesday


def _streak(make_identity, tenant, streak, last_credit, **kw):
    return make_identity(tenant, current_streak=streak, last_streak_credit_date=last_credit, **kw)


def _reload(identity):
    return db.session.get(Identity, identity.id)


class TestReset:
    def test_lapsed_streak_reset(self, tenant, make_identity):
        lapsed = _streak(make_identity, tenant, 6, TODAY - timedelta(days=2))
        [summary] = run_streak_reconciliation(FIXED_NOW)
        assert summary == {
            "tenant_id": tenant.id,
            "tenant_name": tenant.name,
            "reset_count": 1,
            "identity_ids": [lapsed.id],
        }
        assert _reload(lapsed).current_streak == 0

    @pytest.mark.parametrize("days_ago", [0, 1])
    def test_recent_credit_kept(self, tenant, make_identity, days_ago):
        kept = _streak(make_identity, tenant, 6, TODAY - timedelta(days=days_ago))
        [summary] = run_streak_reconciliation(FIXED_NOW)
        assert summary["reset_count"] == 0
        assert _reload(kept).current_streak == 6

    def test_staff_ignored(self, tenant, make_identity):
        staff = _streak(make_identity, tenant, 3, TODAY - timedelta(days=5), role=ROLE_STAFF)
        run_streak_reconciliation(FIXED_NOW)
        assert _reload(staff).current_streak == 3

    def test_last_credit_date_kept(self, tenant, make_identity):
        lapsed = _streak(make_identity, tenant, 6, TODAY - timedelta(days=3))
        run_streak_reconciliation(FIXED_NOW)
        assert _reload(lapsed).last_streak_credit_date == TODAY - timedelta(days=3)

    def test_idempotent(self, tenant, make_identity):
        _streak(make_identity, tenant, 6, TODAY - timedelta(days=3))
        run_streak_reconciliation(FIXED_NOW)
        [summary] = run_streak_reconciliation(FIXED_NOW)
        assert summary["reset_count"] == 0


class TestExcusedGaps:
    def test_closed_days_keep_streak(self, make_tenant, make_identity):
        # Sat → Wed with Sun, Mon, Tue closed
        tenant = make_tenant(opening_config={"closed_weekdays": [0, 1, 2]})
        kept = _streak(make_identity, tenant, 4, date(2026, 3, 7))
        run_streak_reconciliation(FIXED_NOW)
        assert _reload(kept).current_streak == 4

    def test_closed_holiday_keeps_streak(self, make_tenant, make_identity):
        tenant = make_tenant(opening_config={"closed_dates": ["03-10"]})
        kept = _streak(make_identity, tenant, 4, date(2026, 3, 9))
        run_streak_reconciliation(FIXED_NOW)
        assert _reload(kept).current_streak == 4

    def test_partially_closed_gap_resets(self, make_tenant, make_identity):
        tenant = make_tenant(opening_config={"closed_weekdays": [0]})
        lapsed = _streak(make_identity, tenant, 4, date(2026, 3, 7))
        run_streak_reconciliation(FIXED_NOW)
        assert _reload(lapsed).current_streak == 0

    def test_active_freeze_keeps_streak(self, tenant, make_identity):
        kept = _streak(make_identity, tenant, 4, TODAY - timedelta(days=5),
                       streak_freeze_until=FIXED_NOW + timedelta(hours=1))
        run_streak_reconciliation(FIXED_NOW)
        assert _reload(kept).current_streak == 4

    def test_expired_freeze_resets(self, tenant, make_identity):
        lapsed = _streak(make_identity, tenant, 4, TODAY - timedelta(days=5),
                         streak_freeze_until=FIXED_NOW - timedelta(hours=1))
        run_streak_reconciliation(FIXED_NOW)
        assert _reload(lapsed).current_streak == 0

    def test_recent_reactivation_keeps_streaks(self, make_tenant, make_identity):
        tenant = make_tenant(last_reactivated_at=FIXED_NOW - timedelta(days=3))
        kept = _streak(make_identity, tenant, 4, TODAY - timedelta(days=10))
        run_streak_reconciliation(FIXED_NOW)
        assert _reload(kept).current_streak == 4

    def test_old_reactivation_does_not_excuse(self, make_tenant, make_identity):
        tenant = make_tenant(last_reactivated_at=FIXED_NOW - timedelta(days=8))
        lapsed = _streak(make_identity, tenant, 4, TODAY - timedelta(days=10))
        run_streak_reconciliation(FIXED_NOW)
        assert _reload(lapsed).current_streak == 0


class TestEligibility:
    def test_basic_tier_skipped(self, make_tenant, make_identity):
        tenant = make_tenant(subscription_tier=TIER_BASIC)
        kept = _streak(make_identity, tenant, 4, TODAY - timedelta(days=5))
        assert run_streak_reconciliation(FIXED_NOW) == []
        assert _reload(kept).current_streak == 4

    def test_gamification_override_skipped(self, make_tenant, make_identity):
        tenant = make_tenant(modules_config={"gamification": False})
        _streak(make_identity, tenant, 4, TODAY - timedelta(days=5))
        assert run_streak_reconciliation(FIXED_NOW) == []

    def test_suspended_tenant_skipped(self, make_tenant, make_identity):
        tenant = make_tenant(status=TENANT_STATUS_SUSPENDED)
        _streak(make_identity, tenant, 4, TODAY - timedelta(days=5))
        assert run_streak_reconciliation(FIXED_NOW) == []

    def test_failing_tenant_does_not_stop_others(self, make_tenant, make_identity):
        broken = make_tenant(opening_config={"closed_weekdays": ["funday"]})
        healthy = make_tenant()
        _streak(make_identity, broken, 4, TODAY - timedelta(days=5))
        lapsed = _streak(make_identity, healthy, 4, TODAY - timedelta(days=5))

        summaries = run_streak_reconciliation(FIXED_NOW)
        by_tenant = {s["tenant_id"]: s for s in summaries}
        assert "error" in by_tenant[broken.id]
        assert by_tenant[healthy.id]["reset_count"] == 1
        assert _reload(lapsed).current_streak == 0

    def test_local_day_used(self, make_tenant, make_identity):
        # 03:00 UTC on the 12th is still the 11th in Bogotá, so the 10th is yesterday
        tenant = make_tenant(time_zone="America/Bogota")
        kept = _streak(make_identity, tenant, 4, date(2026, 3, 10))
        run_streak_reconciliation(FIXED_NOW + timedelta(hours=12))
        assert _reload(kept).current_streak == 4


class TestAgreesWithLiveCheckin:
    @pytest.mark.parametrize("last_credit,freeze_hours,opening", [
        (date(2026, 3, 7), None, {"closed_weekdays": [0, 1, 2]}),
        (date(2026, 3, 7), None, {"closed_weekdays": [0, 1]}),
        (date(2026, 3, 6), 2, {}),
        (date(2026, 3, 6), -2, {}),
        (date(2026, 3, 9), None, {"closed_dates": ["03-10"]}),
        (date(2026, 3, 9), None, {}),
    ])
    def test_same_verdict(self, make_tenant, make_identity, last_credit, freeze_hours, opening):
        tenant = make_tenant(opening_config=opening)
        freeze = FIXED_NOW + timedelta(hours=freeze_hours) if freeze_hours is not None else None
        identity = _streak(make_identity, tenant, 5, last_credit, streak_freeze_until=freeze)

        live = transition(
            StreakState(5, last_credit, freeze), FIXED_NOW,
            StreakContext.for_tenant(tenant, reactivation_grace_days=7),
        )
        run_streak_reconciliation(FIXED_NOW)

        swept_kept = _reload(identity).current_streak == 5
        live_kept = live.new_streak == 5 and not live.credited
        assert swept_kept == live_kept
