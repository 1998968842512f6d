"""
Subscription Validator — does this identity hold a usable entitlement now?

Read-only. The latest ``active`` entitlement whose ``expires_at`` is in the
future is the one that counts; its optional time window is checked against
the tenant's local wall clock, inclusive on both ends. A window whose start
is after its end wraps midnight (22:00–06:00).
"""

from gymaccess.core.exceptions import NoActiveEntitlement, OutsideAllowedWindow
from gymaccess.models.identity import ENTITLEMENT_ACTIVE, ENTITLEMENT_EXPIRED, Entitlement
from gymaccess.utils.helpers import as_utc, local_datetime


def current_entitlement(identity_id, tenant_id, now):
    return (
        Entitlement.query
        .filter(
            Entitlement.tenant_id == tenant_id,
            Entitlement.identity_id == identity_id,
            Entitlement.status == ENTITLEMENT_ACTIVE,
            Entitlement.expires_at > as_utc(now),
        )
        .order_by(Entitlement.expires_at.desc())
        .first()
    )


def latest_lapsed_entitlement(identity_id, tenant_id, now):
    """Most recent entitlement that has run out (status still active or already expired)."""
    return (
        Entitlement.query
        .filter(
            Entitlement.tenant_id == tenant_id,
            Entitlement.identity_id == identity_id,
            Entitlement.status.in_([ENTITLEMENT_ACTIVE, ENTITLEMENT_EXPIRED]),
            Entitlement.expires_at <= as_utc(now),
        )
        .order_by(Entitlement.expires_at.desc())
        .first()
    )


def within_window(local_time, start, end):
    """Inclusive window check; ``start > end`` wraps midnight."""
    if start <= end:
        return start <= local_time <= end
    return local_time >= start or local_time <= end


def validate_entitlement(identity_id, tenant, now):
    """Return the governing Entitlement or raise.

    Raises:
        NoActiveEntitlement: nothing active and unexpired.
        OutsideAllowedWindow: entitlement has a window and ``now`` is outside it.
    """
    entitlement = current_entitlement(identity_id, tenant.id, now)
    if entitlement is None:
        raise NoActiveEntitlement()

    if entitlement.has_time_window:
        wall_clock = local_datetime(now, tenant.time_zone).time().replace(second=0, microsecond=0)
        if not within_window(wall_clock, entitlement.allowed_start_time, entitlement.allowed_end_time):
            raise OutsideAllowedWindow(entitlement.allowed_start_time, entitlement.allowed_end_time)
    return entitlement
