"""
Tenant Settings Service — validated writes to the tenant's JSON settings.

Every write parses the incoming blob into ``RewardSchedule`` /
``ClosedCalendar`` (or checks capability overrides) first and stores the
normalised form, so readers never meet a malformed blob. Each write, plus
suspend and reactivate, leaves an audit row.
"""

import logging

from flask import current_app

from gymaccess.core.exceptions import ConflictError, NotFoundError, ValidationError
from gymaccess.models import db
from gymaccess.models.audit import write_audit
from gymaccess.models.identity import Identity
from gymaccess.models.tenant import TENANT_STATUS_ACTIVE, TENANT_STATUS_SUSPENDED, Tenant
from gymaccess.services.feature_resolver import CAPABILITY_KEYS, tenant_capabilities
from gymaccess.services.reward_evaluator import reward_progress
from gymaccess.services.tenant_settings import ClosedCalendar, RewardSchedule
from gymaccess.utils.helpers import utcnow

logger = logging.getLogger(__name__)


def get_tenant(tenant_id):
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None or tenant.deleted_at is not None:
        raise NotFoundError(resource="Tenant", resource_id=tenant_id)
    return tenant


def capabilities_view(tenant):
    return {
        "tenant_id": tenant.id,
        "subscription_tier": tenant.subscription_tier,
        "capabilities": tenant_capabilities(tenant),
    }


def _audit_config(tenant, section, before, after, actor):
    write_audit(
        tenant_id=tenant.id,
        entity_type="tenant",
        entity_id=tenant.id,
        action="tenant.config_updated",
        actor=actor,
        details={"section": section, "before": before, "after": after},
    )


def update_rewards_config(tenant, data, actor="system"):
    """Replace the reward schedule. Legacy numeric-key blobs are normalised."""
    schedule = RewardSchedule.from_config(
        data, default_freeze_days=current_app.config["DEFAULT_STREAK_FREEZE_DAYS"],
    )
    before = tenant.rewards_config or {}
    tenant.rewards_config = schedule.to_config()
    _audit_config(tenant, "rewards", before, tenant.rewards_config, actor)
    db.session.commit()
    logger.info("Rewards config updated (%d milestones)", len(schedule.milestones),
                extra={"tenant_id": tenant.id})
    return tenant.rewards_config


def update_opening_config(tenant, data, actor="system"):
    calendar = ClosedCalendar.from_config(data)
    before = tenant.opening_config or {}
    tenant.opening_config = calendar.to_config()
    _audit_config(tenant, "opening", before, tenant.opening_config, actor)
    db.session.commit()
    logger.info("Opening config updated", extra={"tenant_id": tenant.id})
    return tenant.opening_config


def validate_module_overrides(data):
    """Known keys with real booleans are kept, unknown keys dropped; other values rejected."""
    if not isinstance(data, dict):
        raise ValidationError("modules_config must be an object")
    errors = {}
    cleaned = {}
    for key, value in data.items():
        if key not in CAPABILITY_KEYS:
            logger.info("Dropping unknown capability override %r", key)
            continue
        if not isinstance(value, bool):
            errors[key] = "must be true or false"
            continue
        cleaned[key] = value
    if errors:
        raise ValidationError("Invalid capability overrides", details=errors)
    return cleaned


def update_modules_config(tenant, data, actor="system"):
    overrides = validate_module_overrides(data)
    before = tenant.modules_config or {}
    tenant.modules_config = overrides
    _audit_config(tenant, "modules", before, overrides, actor)
    db.session.commit()
    logger.info("Capability overrides updated: %s", overrides, extra={"tenant_id": tenant.id})
    return capabilities_view(tenant)


def suspend_tenant(tenant, actor="system"):
    if tenant.status == TENANT_STATUS_SUSPENDED:
        raise ConflictError("Tenant is already suspended")
    tenant.status = TENANT_STATUS_SUSPENDED
    write_audit(tenant_id=tenant.id, entity_type="tenant", entity_id=tenant.id,
                action="tenant.suspended", actor=actor)
    db.session.commit()
    logger.info("Tenant suspended", extra={"tenant_id": tenant.id})
    return tenant


def reactivate_tenant(tenant, actor="system", now=None):
    """Back to active; stamps ``last_reactivated_at`` which opens the streak grace period."""
    if tenant.status == TENANT_STATUS_ACTIVE:
        raise ConflictError("Tenant is already active")
    tenant.status = TENANT_STATUS_ACTIVE
    tenant.last_reactivated_at = now or utcnow()
    write_audit(tenant_id=tenant.id, entity_type="tenant", entity_id=tenant.id,
                action="tenant.reactivated", actor=actor,
                details={"last_reactivated_at": tenant.last_reactivated_at.isoformat()})
    db.session.commit()
    logger.info("Tenant reactivated", extra={"tenant_id": tenant.id})
    return tenant


def identity_reward_progress(tenant, identity_id):
    identity = Identity.query.filter_by(tenant_id=tenant.id, id=identity_id, deleted_at=None).first()
    if identity is None:
        raise NotFoundError(resource="Identity", resource_id=identity_id, tenant_id=tenant.id)
    schedule = RewardSchedule.from_config(
        tenant.rewards_config, default_freeze_days=current_app.config["DEFAULT_STREAK_FREEZE_DAYS"],
    )
    return {"identity_id": identity.id, **reward_progress(schedule, identity.current_streak or 0)}
