"""
Streak Transition — the daily-visit streak state machine.

Pure functions over plain values: no database, no clock. Both the live
check-in path and the nightly reconciler decide "was this gap excused?"
through ``evaluate_streak_exceptions`` so they cannot disagree.

Calendar days are taken in the tenant's timezone.

    last credit date   diff (days)   outcome
    ----------------   -----------   -------------------------------------
    none               —             streak 1, credited
    set                <= 0          unchanged, not credited
    set                1             streak + 1, credited
    set                > 1           excused  → unchanged, not credited,
                                                credit date moves to today
                                     otherwise → streak 1, credited

A gap is excused when the streak is positive and any of these holds:
    a. the tenant was reactivated within the grace period
    b. ``now`` is on or before the identity's freeze-until instant
    c. every day strictly between the last credit and today was closed
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from gymaccess.services.tenant_settings import ClosedCalendar
from gymaccess.utils.helpers import as_utc, local_date

DEFAULT_REACTIVATION_GRACE_DAYS = 7


@dataclass(frozen=True)
class StreakState:
    current_streak: int
    last_credit_date: date | None
    freeze_until: datetime | None = None

    @classmethod
    def of(cls, identity) -> "StreakState":
        return cls(
            current_streak=identity.current_streak or 0,
            last_credit_date=identity.last_streak_credit_date,
            freeze_until=identity.streak_freeze_until,
        )


@dataclass(frozen=True)
class StreakContext:
    """Tenant-level facts the exception rules need."""

    time_zone: str = "UTC"
    calendar: ClosedCalendar = ClosedCalendar()
    last_reactivated_at: datetime | None = None
    reactivation_grace_days: int = DEFAULT_REACTIVATION_GRACE_DAYS

    @classmethod
    def for_tenant(cls, tenant, reactivation_grace_days=DEFAULT_REACTIVATION_GRACE_DAYS):
        return cls(
            time_zone=tenant.time_zone or "UTC",
            calendar=ClosedCalendar.from_config(tenant.opening_config),
            last_reactivated_at=tenant.last_reactivated_at,
            reactivation_grace_days=reactivation_grace_days,
        )

    def today(self, now: datetime) -> date:
        return local_date(now, self.time_zone)


@dataclass(frozen=True)
class StreakExceptions:
    reactivation_grace: bool = False
    freeze_active: bool = False
    gap_days_closed: bool = False

    @property
    def any(self) -> bool:
        return self.reactivation_grace or self.freeze_active or self.gap_days_closed

    def to_dict(self) -> dict:
        return {
            "reactivation_grace": self.reactivation_grace,
            "freeze_active": self.freeze_active,
            "gap_days_closed": self.gap_days_closed,
        }


@dataclass(frozen=True)
class StreakOutcome:
    new_streak: int
    credited: bool
    new_last_credit_date: date | None
    clear_freeze: bool = False
    exceptions: StreakExceptions | None = None


def evaluate_streak_exceptions(last_credit_date, freeze_until, today, now, ctx: StreakContext) -> StreakExceptions:
    """Which of the three gap excuses hold for a missed-day gap."""
    now = as_utc(now)

    reactivated = False
    if ctx.last_reactivated_at is not None:
        since = now - as_utc(ctx.last_reactivated_at)
        reactivated = timedelta(0) <= since <= timedelta(days=ctx.reactivation_grace_days)

    frozen = freeze_until is not None and now <= as_utc(freeze_until)

    closed = last_credit_date is not None and ctx.calendar.all_closed_between(last_credit_date, today)

    return StreakExceptions(reactivation_grace=reactivated, freeze_active=frozen, gap_days_closed=closed)


def transition(state: StreakState, now: datetime, ctx: StreakContext) -> StreakOutcome:
    today = ctx.today(now)

    if state.last_credit_date is None:
        return StreakOutcome(1, True, today)

    diff = (today - state.last_credit_date).days
    if diff <= 0:
        return StreakOutcome(state.current_streak, False, state.last_credit_date)
    if diff == 1:
        return StreakOutcome(state.current_streak + 1, True, today)

    if state.current_streak > 0:
        exceptions = evaluate_streak_exceptions(state.last_credit_date, state.freeze_until, today, now, ctx)
        if exceptions.any:
            return StreakOutcome(
                state.current_streak, False, today,
                clear_freeze=exceptions.freeze_active,
                exceptions=exceptions,
            )
        return StreakOutcome(1, True, today, exceptions=exceptions)

    # Already reset: nothing to protect, and a live freeze is kept for a later gap
    return StreakOutcome(1, True, today)
