"""
Check-in Service — admits (or refuses) one entry and advances the streak.

Flow for a member:

    unauthenticated → tenant_resolved → capability_checked
        → entitlement_validated → replay_checked → transitioned
        → persisted → notified

Staff and admins skip entitlement and streak logic:

    capability_checked → replay_checked → persisted

Every failure is a terminal ``CheckinError``. The entry record and the
identity update are committed together. The identity row is read
``FOR UPDATE`` and carries an optimistic ``version``; when a concurrent
check-in wins the race the whole read-transition-write runs once more and
then sees the competing entry (and is replay-blocked).

Notifications go out only after the commit and can never fail a check-in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from gymaccess.core.exceptions import (
    IdentityNotFound,
    InternalPersistenceFailure,
    MissingTenantContext,
    NoActiveEntitlement,
    PermissionDeniedError,
    ValidationError,
)
from gymaccess.models import db
from gymaccess.models.audit import write_audit
from gymaccess.models.entry import (
    ACCESS_BIOMETRIC,
    ACCESS_CLASS_COURTESY,
    ACCESS_CLASS_REGULAR,
    ACCESS_MANUAL,
    ACCESS_METHODS,
    EntryRecord,
)
from gymaccess.models.identity import QR_PAYLOAD_PREFIX, Identity
from gymaccess.models.tenant import Tenant
from gymaccess.services import anti_replay
from gymaccess.services.feature_resolver import (
    CAP_GAMIFICATION,
    require_access_method,
    tenant_capabilities,
)
from gymaccess.services.reward_evaluator import reward_for_streak
from gymaccess.services.streak import StreakContext, StreakState, transition
from gymaccess.services.subscription_validator import latest_lapsed_entitlement, validate_entitlement
from gymaccess.services.tenant_settings import RewardSchedule
from gymaccess.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

COURTESY_REASON_MIN_LENGTH = 3


# ═════════════════════════════════════════════════════════════════════════
# Flow states
# ═════════════════════════════════════════════════════════════════════════

STATE_UNAUTHENTICATED = "unauthenticated"
STATE_TENANT_RESOLVED = "tenant_resolved"
STATE_CAPABILITY_CHECKED = "capability_checked"
STATE_ENTITLEMENT_VALIDATED = "entitlement_validated"
STATE_REPLAY_CHECKED = "replay_checked"
STATE_TRANSITIONED = "transitioned"
STATE_PERSISTED = "persisted"
STATE_NOTIFIED = "notified"

CHECKIN_TRANSITIONS = {
    STATE_UNAUTHENTICATED: [STATE_TENANT_RESOLVED],
    STATE_TENANT_RESOLVED: [STATE_CAPABILITY_CHECKED],
    # staff go straight to the replay check
    STATE_CAPABILITY_CHECKED: [STATE_ENTITLEMENT_VALIDATED, STATE_REPLAY_CHECKED],
    STATE_ENTITLEMENT_VALIDATED: [STATE_REPLAY_CHECKED],
    # staff and gamification-off entries skip the streak transition
    STATE_REPLAY_CHECKED: [STATE_TRANSITIONED, STATE_PERSISTED],
    STATE_TRANSITIONED: [STATE_PERSISTED],
    STATE_PERSISTED: [STATE_NOTIFIED],
    STATE_NOTIFIED: [],
}


def validate_checkin_transition(old_state, new_state):
    """Check if a check-in flow state transition is allowed."""
    return new_state in CHECKIN_TRANSITIONS.get(old_state, [])


class CheckinFlow:
    """Tracks the state a single check-in attempt has reached."""

    def __init__(self):
        self.state = STATE_UNAUTHENTICATED
        self.history = [STATE_UNAUTHENTICATED]

    def advance(self, new_state):
        if not validate_checkin_transition(self.state, new_state):
            raise RuntimeError(f"Illegal check-in transition {self.state} → {new_state}")
        self.state = new_state
        self.history.append(new_state)

    def fork(self):
        """Independent copy, so a re-run starts from the same point."""
        copy = CheckinFlow()
        copy.state = self.state
        copy.history = list(self.history)
        return copy


@dataclass(frozen=True)
class CheckinResult:
    credited: bool
    new_streak: int
    reward_unlocked: bool = False
    reward_label: str | None = None
    identity_id: int | None = None
    entry_id: int | None = None

    def to_dict(self):
        return {
            "credited": self.credited,
            "new_streak": self.new_streak,
            "reward_unlocked": self.reward_unlocked,
            "reward_label": self.reward_label,
        }


class _ConcurrentUpdate(Exception):
    """The identity row changed between read and write."""


# ═════════════════════════════════════════════════════════════════════════
# Lookups
# ═════════════════════════════════════════════════════════════════════════


def resolve_tenant(tenant_id):
    """Active, non-deleted tenant for ``tenant_id`` or MissingTenantContext."""
    if tenant_id in (None, ""):
        raise MissingTenantContext()
    try:
        tenant_id = int(tenant_id)
    except (TypeError, ValueError):
        raise MissingTenantContext() from None
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None or not tenant.is_active:
        raise MissingTenantContext()
    return tenant


def resolve_tenant_by_api_key(api_key):
    """Tenant owning a biometric reader's shared secret."""
    if not api_key:
        raise MissingTenantContext()
    tenant = Tenant.query.filter_by(hardware_api_key=api_key).first()
    if tenant is None or not tenant.is_active:
        raise MissingTenantContext()
    return tenant


def qr_token_from_code(code):
    """``GYM_QR_<token>`` → ``<token>``; a bare token passes through."""
    code = (code or "").strip()
    if code.startswith(QR_PAYLOAD_PREFIX):
        return code[len(QR_PAYLOAD_PREFIX):]
    return code


def _identity_query(tenant, *, identity_id=None, code=None, template_id=None, lock=False):
    q = Identity.query_active().filter(Identity.tenant_id == tenant.id)
    if identity_id is not None:
        try:
            q = q.filter(Identity.id == int(identity_id))
        except (TypeError, ValueError):
            return None
    elif code:
        token = qr_token_from_code(code)
        if not token:
            return None
        q = q.filter(Identity.qr_token == token)
    elif template_id:
        q = q.filter(Identity.biometric_template_id == str(template_id))
    else:
        return None
    if lock:
        q = q.with_for_update()
    return q


def load_identity(tenant, *, identity_id=None, code=None, template_id=None, lock=False):
    q = _identity_query(tenant, identity_id=identity_id, code=code, template_id=template_id, lock=lock)
    identity = q.first() if q is not None else None
    if identity is None:
        raise IdentityNotFound()
    return identity


def _latest_entry_at(identity):
    return (
        db.session.query(func.max(EntryRecord.entered_at))
        .filter(EntryRecord.identity_id == identity.id)
        .scalar()
    )


def _replay_store():
    return current_app.extensions["replay_store"]


def _dispatcher():
    return current_app.extensions.get("notification_dispatcher")


def _reward_schedule(tenant):
    return RewardSchedule.from_config(
        tenant.rewards_config,
        default_freeze_days=current_app.config["DEFAULT_STREAK_FREEZE_DAYS"],
    )


def _streak_context(tenant):
    return StreakContext.for_tenant(
        tenant, reactivation_grace_days=current_app.config["TENANT_REACTIVATION_GRACE_DAYS"],
    )


def _last_seen(identity, use_entry_log):
    try:
        stored = _replay_store().last_seen(identity.tenant_id, identity.id)
    except Exception:
        logger.warning("Replay store read failed; using persisted entries only", exc_info=True)
        stored = None
    persisted = _latest_entry_at(identity) if use_entry_log else identity.last_entry_at
    return anti_replay.latest(stored, persisted)


# ═════════════════════════════════════════════════════════════════════════
# Public API
# ═════════════════════════════════════════════════════════════════════════


def perform_checkin(tenant_id, *, identity_id=None, code=None, access_method=ACCESS_MANUAL, now=None):
    """Run a check-in for the identity addressed by id or QR code.

    Returns:
        CheckinResult
    Raises:
        CheckinError subclasses, ValidationError for a bad access method.
    """
    if access_method not in ACCESS_METHODS:
        raise ValidationError(
            f"Unknown access_method: {access_method}",
            details={"access_method": f"must be one of {sorted(ACCESS_METHODS)}"},
        )
    flow = CheckinFlow()
    tenant = resolve_tenant(tenant_id)
    flow.advance(STATE_TENANT_RESOLVED)
    return _run(flow, tenant, access_method, now or utcnow(),
                identity_id=identity_id, code=code)


def perform_biometric_checkin(api_key, template_id, *, now=None):
    """Hardware reader check-in: tenant from the shared secret, identity from the template."""
    flow = CheckinFlow()
    tenant = resolve_tenant_by_api_key(api_key)
    flow.advance(STATE_TENANT_RESOLVED)
    if not template_id:
        raise IdentityNotFound()
    return _run(flow, tenant, ACCESS_BIOMETRIC, now or utcnow(), template_id=template_id)


def _run(flow, tenant, access_method, now, **locator):
    capabilities = tenant_capabilities(tenant)
    require_access_method(capabilities, access_method)
    flow.advance(STATE_CAPABILITY_CHECKED)

    for attempt in (1, 2):
        try:
            return _attempt(flow.fork(), tenant, capabilities, access_method, now, locator)
        except _ConcurrentUpdate:
            if attempt == 2:
                logger.error("Check-in lost the identity lock twice",
                             extra={"tenant_id": tenant.id, "access_method": access_method})
                raise InternalPersistenceFailure() from None
            logger.info("Concurrent check-in detected, re-running",
                        extra={"tenant_id": tenant.id, "access_method": access_method})
    raise InternalPersistenceFailure()  # pragma: no cover


def _attempt(flow, tenant, capabilities, access_method, now, locator):
    identity = load_identity(tenant, lock=True, **locator)
    log_extra = {"tenant_id": tenant.id, "identity_id": identity.id, "access_method": access_method}

    if identity.is_staff:
        return _staff_checkin(flow, tenant, identity, access_method, now, log_extra)

    try:
        validate_entitlement(identity.id, tenant, now)
    except NoActiveEntitlement:
        _apply_grace_freeze(tenant, identity, now)
        logger.info("Check-in refused: no active entitlement", extra=log_extra)
        raise
    flow.advance(STATE_ENTITLEMENT_VALIDATED)

    cooldown = anti_replay.cooldown_for(access_method, is_staff=False)
    anti_replay.check_replay(_last_seen(identity, use_entry_log=False), now, cooldown)
    flow.advance(STATE_REPLAY_CHECKED)

    outcome = None
    reward_label = None
    if capabilities.get(CAP_GAMIFICATION):
        try:
            schedule = _reward_schedule(tenant)
            ctx = _streak_context(tenant)
        except ValidationError as exc:
            logger.error("Stored tenant configuration is invalid: %s", exc, extra=log_extra)
            db.session.rollback()
            raise InternalPersistenceFailure() from None
        outcome = transition(StreakState.of(identity), now, ctx)
        if outcome.credited:
            reward_label = reward_for_streak(schedule, outcome.new_streak)
        flow.advance(STATE_TRANSITIONED)

    entry = EntryRecord(
        tenant_id=tenant.id,
        identity_id=identity.id,
        entered_at=now,
        access_method=access_method,
        access_class=ACCESS_CLASS_REGULAR,
        credited=bool(outcome and outcome.credited),
        streak_after=outcome.new_streak if outcome else identity.current_streak,
    )
    identity.last_entry_at = now
    if outcome is not None:
        identity.current_streak = outcome.new_streak
        identity.last_streak_credit_date = outcome.new_last_credit_date
        if outcome.clear_freeze:
            identity.streak_freeze_until = None
    _commit(entry, log_extra)
    flow.advance(STATE_PERSISTED)
    _remember(identity, now, cooldown)

    result = CheckinResult(
        credited=entry.credited,
        new_streak=identity.current_streak,
        reward_unlocked=reward_label is not None,
        reward_label=reward_label,
        identity_id=identity.id,
        entry_id=entry.id,
    )
    logger.info("Check-in admitted (streak=%s credited=%s)", result.new_streak, result.credited,
                extra=log_extra)

    _notify(tenant, identity, result)
    flow.advance(STATE_NOTIFIED)
    return result


def _staff_checkin(flow, tenant, identity, access_method, now, log_extra):
    cooldown = anti_replay.cooldown_for(access_method, is_staff=True)
    anti_replay.check_replay(_last_seen(identity, use_entry_log=True), now, cooldown)
    flow.advance(STATE_REPLAY_CHECKED)

    entry = EntryRecord(
        tenant_id=tenant.id,
        identity_id=identity.id,
        entered_at=now,
        access_method=access_method,
        access_class=ACCESS_CLASS_REGULAR,
        credited=False,
        streak_after=None,
    )
    identity.last_entry_at = now
    _commit(entry, log_extra)
    flow.advance(STATE_PERSISTED)
    _remember(identity, now, cooldown)
    logger.info("Staff check-in admitted", extra=log_extra)
    return CheckinResult(
        credited=False, new_streak=identity.current_streak,
        identity_id=identity.id, entry_id=entry.id,
    )


def _commit(entry, log_extra):
    """Insert the entry and flush the identity update in one transaction."""
    try:
        db.session.add(entry)
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        raise _ConcurrentUpdate() from None
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Check-in write failed", extra=log_extra)
        raise InternalPersistenceFailure() from None


def _remember(identity, now, cooldown):
    try:
        _replay_store().remember(identity.tenant_id, identity.id, now, cooldown.total_seconds())
    except Exception:
        logger.warning("Replay store write failed", exc_info=True,
                       extra={"tenant_id": identity.tenant_id, "identity_id": identity.id})


def _notify(tenant, identity, result):
    dispatcher = _dispatcher()
    if dispatcher is None:
        return
    try:
        dispatcher.notify_checkin(
            tenant_id=tenant.id,
            identity_id=identity.id,
            new_streak=result.new_streak,
            reward_label=result.reward_label,
        )
    except Exception:
        logger.exception("Notification dispatch failed",
                         extra={"tenant_id": tenant.id, "identity_id": identity.id})


def _apply_grace_freeze(tenant, identity, now):
    """Protect a positive streak for a while after the entitlement lapsed.

    ``streak_freeze_until = lapse + streak_freeze_days``; only ever moves
    forward and only when it lands in the future.
    """
    if (identity.current_streak or 0) <= 0:
        db.session.rollback()
        return
    try:
        freeze_days = _reward_schedule(tenant).streak_freeze_days
    except ValidationError:
        freeze_days = current_app.config["DEFAULT_STREAK_FREEZE_DAYS"]

    lapsed = latest_lapsed_entitlement(identity.id, tenant.id, now)
    base = as_utc(lapsed.expires_at) if lapsed else as_utc(now)
    freeze_until = base + timedelta(days=freeze_days)

    current = as_utc(identity.streak_freeze_until)
    if freeze_until <= as_utc(now) or (current is not None and freeze_until <= current):
        db.session.rollback()
        return
    identity.streak_freeze_until = freeze_until
    try:
        db.session.commit()
        logger.info("Streak grace freeze set until %s", freeze_until.isoformat(),
                    extra={"tenant_id": tenant.id, "identity_id": identity.id})
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Could not store streak grace freeze",
                         extra={"tenant_id": tenant.id, "identity_id": identity.id})


# ═════════════════════════════════════════════════════════════════════════
# Courtesy access & history
# ═════════════════════════════════════════════════════════════════════════


def grant_courtesy(tenant_id, *, actor_id, identity_id, reason, now=None):
    """Staff-granted entry that bypasses entitlement and streak rules. Audited.

    Raises:
        MissingTenantContext, IdentityNotFound,
        PermissionDeniedError: actor is not staff/admin of this tenant,
        ValidationError: reason shorter than three characters.
    """
    tenant = resolve_tenant(tenant_id)
    now = now or utcnow()

    reason = (reason or "").strip()
    if len(reason) < COURTESY_REASON_MIN_LENGTH:
        raise ValidationError(
            "A reason is required for courtesy access",
            details={"reason": f"at least {COURTESY_REASON_MIN_LENGTH} characters"},
        )

    q = _identity_query(tenant, identity_id=actor_id)
    actor = q.first() if q is not None else None
    if actor is None or not actor.is_staff:
        raise PermissionDeniedError("Courtesy access requires a staff or admin identity")

    identity = load_identity(tenant, identity_id=identity_id, lock=True)
    log_extra = {"tenant_id": tenant.id, "identity_id": identity.id, "access_method": ACCESS_MANUAL}

    entry = EntryRecord(
        tenant_id=tenant.id,
        identity_id=identity.id,
        entered_at=now,
        access_method=ACCESS_MANUAL,
        access_class=ACCESS_CLASS_COURTESY,
        credited=False,
        streak_after=identity.current_streak,
    )
    identity.last_entry_at = now
    try:
        db.session.add(entry)
        db.session.flush()
        write_audit(
            tenant_id=tenant.id,
            entity_type="identity",
            entity_id=identity.id,
            action="checkin.courtesy_granted",
            actor=actor.id,
            details={"reason": reason, "entry_id": entry.id},
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Courtesy entry write failed", extra=log_extra)
        raise InternalPersistenceFailure() from None
    _remember(identity, now, anti_replay.member_cooldown())
    logger.info("Courtesy access granted by %s", actor.id, extra=log_extra)
    return entry


def entry_history_query(tenant_id, identity_id=None):
    """Newest-first entry query for a tenant, optionally for one identity."""
    tenant = resolve_tenant(tenant_id)
    q = EntryRecord.query_for_tenant(tenant.id)
    if identity_id is not None:
        q = q.filter(EntryRecord.identity_id == identity_id)
    return q.order_by(EntryRecord.entered_at.desc(), EntryRecord.id.desc())
