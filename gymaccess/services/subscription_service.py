"""
Subscription Service — freeze, unfreeze and the expired-subscription sync.

    freeze     active → frozen, remembers the whole days left
    unfreeze   frozen → active, expires_at = now + frozen_days_left
    sync       active but past expires_at → expired, and the owner's streak
               is protected for ``streak_freeze_days`` after the lapse

All three are audited.
"""

import logging
import math
from datetime import timedelta

from flask import current_app

from gymaccess.core.exceptions import ConflictError, NotFoundError, ValidationError
from gymaccess.models import db
from gymaccess.models.audit import write_audit
from gymaccess.models.identity import (
    ENTITLEMENT_ACTIVE,
    ENTITLEMENT_EXPIRED,
    ENTITLEMENT_FROZEN,
    Entitlement,
    Identity,
)
from gymaccess.models.tenant import Tenant
from gymaccess.services.tenant_settings import RewardSchedule
from gymaccess.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

SUBSCRIPTION_TRANSITIONS = {
    ENTITLEMENT_ACTIVE: [ENTITLEMENT_FROZEN, ENTITLEMENT_EXPIRED],
    ENTITLEMENT_FROZEN: [ENTITLEMENT_ACTIVE],
}


def validate_subscription_transition(old_status, new_status):
    return new_status in SUBSCRIPTION_TRANSITIONS.get(old_status, [])


def get_entitlement(tenant_id, entitlement_id):
    ent = Entitlement.query.filter_by(tenant_id=tenant_id, id=entitlement_id).first()
    if ent is None:
        raise NotFoundError(resource="Entitlement", resource_id=entitlement_id, tenant_id=tenant_id)
    return ent


def _require_transition(ent, new_status):
    if not validate_subscription_transition(ent.status, new_status):
        raise ConflictError(
            f"Subscription cannot go from {ent.status} to {new_status}",
            details={"status": ent.status},
        )


def freeze_entitlement(tenant_id, entitlement_id, actor="system", now=None):
    now = now or utcnow()
    ent = get_entitlement(tenant_id, entitlement_id)
    _require_transition(ent, ENTITLEMENT_FROZEN)

    remaining = as_utc(ent.expires_at) - as_utc(now)
    if remaining.total_seconds() <= 0:
        raise ValidationError("Subscription has already expired",
                              details={"expires_at": as_utc(ent.expires_at).isoformat()})
    days_left = math.ceil(remaining.total_seconds() / 86400)

    ent.status = ENTITLEMENT_FROZEN
    ent.frozen_days_left = days_left
    write_audit(tenant_id=tenant_id, entity_type="entitlement", entity_id=ent.id,
                action="subscription.frozen", actor=actor,
                details={"frozen_days_left": days_left})
    db.session.commit()
    logger.info("Subscription %s frozen with %d day(s) left", ent.id, days_left,
                extra={"tenant_id": tenant_id, "identity_id": ent.identity_id})
    return ent


def unfreeze_entitlement(tenant_id, entitlement_id, actor="system", now=None):
    now = now or utcnow()
    ent = get_entitlement(tenant_id, entitlement_id)
    _require_transition(ent, ENTITLEMENT_ACTIVE)

    days = ent.frozen_days_left or 0
    ent.status = ENTITLEMENT_ACTIVE
    ent.expires_at = as_utc(now) + timedelta(days=days)
    ent.frozen_days_left = None
    write_audit(tenant_id=tenant_id, entity_type="entitlement", entity_id=ent.id,
                action="subscription.unfrozen", actor=actor,
                details={"restored_days": days, "expires_at": ent.expires_at.isoformat()})
    db.session.commit()
    logger.info("Subscription %s unfrozen, expires %s", ent.id, ent.expires_at.isoformat(),
                extra={"tenant_id": tenant_id, "identity_id": ent.identity_id})
    return ent


def _freeze_days_for(tenant):
    default = current_app.config["DEFAULT_STREAK_FREEZE_DAYS"]
    try:
        return RewardSchedule.from_config(tenant.rewards_config, default_freeze_days=default).streak_freeze_days
    except ValidationError:
        logger.warning("Invalid rewards config, using default freeze days", extra={"tenant_id": tenant.id})
        return default


def sync_expired_subscriptions(now=None, tenant_id=None):
    """Mark lapsed active entitlements expired and protect their owners' streaks.

    Returns:
        {"expired": n, "streaks_protected": m}
    """
    now = as_utc(now or utcnow())
    q = Entitlement.query.filter(
        Entitlement.status == ENTITLEMENT_ACTIVE,
        Entitlement.expires_at <= now,
    )
    if tenant_id is not None:
        q = q.filter(Entitlement.tenant_id == tenant_id)

    results = {"expired": 0, "streaks_protected": 0}
    freeze_days_cache = {}
    for ent in q.order_by(Entitlement.expires_at).all():
        ent.status = ENTITLEMENT_EXPIRED
        results["expired"] += 1

        if ent.tenant_id not in freeze_days_cache:
            freeze_days_cache[ent.tenant_id] = _freeze_days_for(db.session.get(Tenant, ent.tenant_id))
        freeze_until = as_utc(ent.expires_at) + timedelta(days=freeze_days_cache[ent.tenant_id])

        identity = db.session.get(Identity, ent.identity_id)
        current = as_utc(identity.streak_freeze_until) if identity else None
        if identity is not None and (current is None or freeze_until > current):
            identity.streak_freeze_until = freeze_until
            results["streaks_protected"] += 1

        write_audit(tenant_id=ent.tenant_id, entity_type="entitlement", entity_id=ent.id,
                    action="subscription.sync_expired", actor="system",
                    details={"expires_at": as_utc(ent.expires_at).isoformat(),
                             "streak_freeze_until": freeze_until.isoformat()})
    db.session.commit()
    logger.info("Expired subscription sync: %s", results)
    return results
