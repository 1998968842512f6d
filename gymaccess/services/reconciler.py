"""
Streak Reconciler — nightly sweep that breaks streaks nobody kept alive.

For every active tenant with gamification enabled, members whose last
credited day is before yesterday (tenant-local) and whose streak is still
positive are reset to 0, unless ``evaluate_streak_exceptions`` excuses the
gap. That is the same function the live check-in uses, so a member the
sweep leaves alone is treated the same way at their next check-in.

A tenant that fails is logged and skipped; the others still run.
"""

import logging
from datetime import timedelta

from flask import current_app

from gymaccess.models import db
from gymaccess.models.identity import ROLE_MEMBER, Identity
from gymaccess.models.tenant import TENANT_STATUS_ACTIVE, Tenant
from gymaccess.services.feature_resolver import CAP_GAMIFICATION, tenant_capabilities
from gymaccess.services.streak import StreakContext, evaluate_streak_exceptions
from gymaccess.utils.helpers import utcnow

logger = logging.getLogger(__name__)


def _eligible_tenants():
    tenants = (
        Tenant.query
        .filter(Tenant.status == TENANT_STATUS_ACTIVE, Tenant.deleted_at.is_(None))
        .order_by(Tenant.id)
        .all()
    )
    return [t for t in tenants if tenant_capabilities(t).get(CAP_GAMIFICATION)]


def reconcile_tenant(tenant, now, reactivation_grace_days):
    """Reset lapsed streaks for one tenant and commit. Returns the summary dict."""
    ctx = StreakContext.for_tenant(tenant, reactivation_grace_days=reactivation_grace_days)
    today = ctx.today(now)
    yesterday = today - timedelta(days=1)

    candidates = (
        Identity.query
        .filter(
            Identity.tenant_id == tenant.id,
            Identity.deleted_at.is_(None),
            Identity.role == ROLE_MEMBER,
            Identity.current_streak > 0,
            Identity.last_streak_credit_date.isnot(None),
            Identity.last_streak_credit_date < yesterday,
        )
        .with_for_update()
        .all()
    )

    reset_ids = []
    for identity in candidates:
        exceptions = evaluate_streak_exceptions(
            identity.last_streak_credit_date, identity.streak_freeze_until, today, now, ctx,
        )
        if exceptions.any:
            logger.debug("Streak kept for identity %s: %s", identity.id, exceptions.to_dict(),
                         extra={"tenant_id": tenant.id, "identity_id": identity.id})
            continue
        identity.current_streak = 0
        reset_ids.append(identity.id)

    db.session.commit()
    return {
        "tenant_id": tenant.id,
        "tenant_name": tenant.name,
        "reset_count": len(reset_ids),
        "identity_ids": reset_ids,
    }


def run_streak_reconciliation(now=None):
    """Sweep every eligible tenant once.

    Returns:
        list of ``{tenant_id, tenant_name, reset_count, identity_ids}``
        (plus ``error`` for a tenant that failed).
    """
    now = now or utcnow()
    grace_days = current_app.config["TENANT_REACTIVATION_GRACE_DAYS"]
    summaries = []
    for tenant in _eligible_tenants():
        tenant_id, tenant_name = tenant.id, tenant.name
        try:
            summary = reconcile_tenant(tenant, now, grace_days)
        except Exception as exc:
            db.session.rollback()
            logger.exception("Streak reconciliation failed for tenant %s", tenant_id,
                             extra={"tenant_id": tenant_id})
            summaries.append({
                "tenant_id": tenant_id,
                "tenant_name": tenant_name,
                "reset_count": 0,
                "identity_ids": [],
                "error": str(exc),
            })
            continue
        if summary["reset_count"]:
            logger.info("Reset %d streak(s) for tenant %s", summary["reset_count"], tenant_id,
                        extra={"tenant_id": tenant_id})
        summaries.append(summary)
    return summaries
