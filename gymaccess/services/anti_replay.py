"""
Anti-Replay Guard — rejects a second entry inside the cooldown window.

Three cooldowns, all read from config:
    MEMBER_CHECKIN_COOLDOWN_SECONDS     generic member check-in
    STAFF_CHECKIN_COOLDOWN_SECONDS      staff/admin check-in
    BIOMETRIC_CHECKIN_COOLDOWN_SECONDS  hardware reader (wider window)

An attempt exactly ``cooldown`` after the last entry is allowed.
"""

import math
from datetime import timedelta

from flask import current_app

from gymaccess.core.exceptions import ReplayBlocked
from gymaccess.models.entry import ACCESS_BIOMETRIC
from gymaccess.utils.helpers import as_utc


def member_cooldown():
    return timedelta(seconds=current_app.config["MEMBER_CHECKIN_COOLDOWN_SECONDS"])


def staff_cooldown():
    return timedelta(seconds=current_app.config["STAFF_CHECKIN_COOLDOWN_SECONDS"])


def biometric_cooldown():
    return timedelta(seconds=current_app.config["BIOMETRIC_CHECKIN_COOLDOWN_SECONDS"])


def cooldown_for(access_method, is_staff):
    if access_method == ACCESS_BIOMETRIC:
        return biometric_cooldown()
    return staff_cooldown() if is_staff else member_cooldown()


def latest(*instants):
    """Most recent of the given instants, ignoring ``None``."""
    present = [as_utc(i) for i in instants if i is not None]
    return max(present) if present else None


def check_replay(last_seen, now, cooldown):
    """Raise ReplayBlocked when ``now`` is still inside the cooldown."""
    if last_seen is None:
        return
    elapsed = as_utc(now) - as_utc(last_seen)
    if elapsed < cooldown:
        remaining = (cooldown - elapsed).total_seconds()
        raise ReplayBlocked(retry_after_seconds=max(1, math.ceil(remaining)))
