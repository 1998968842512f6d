"""
Typed tenant settings — the closed calendar and the reward schedule.

The tenant row stores both as JSON. They are turned into these frozen
structures on every read and on every write; construction rejects
duplicate reward thresholds, weekdays outside 0–6 and malformed ``MM-DD``
holidays with ``ValidationError`` instead of dropping them.

Weekday numbering: 0 = Sunday … 6 = Saturday.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, timedelta

from gymaccess.core.exceptions import ValidationError

MM_DD_RE = re.compile(r"^(0[1-9]|1[0-2])-(0[1-9]|[12][0-9]|3[01])$")

DEFAULT_STREAK_FREEZE_DAYS = 7
MIN_STREAK_FREEZE_DAYS = 1
MAX_STREAK_FREEZE_DAYS = 90

# Keys found in older reward blobs that carry no reward milestone
_LEGACY_IGNORED_KEYS = {"points_per_visit", "rewards"}


def sunday_based_weekday(day: date) -> int:
    """0 = Sunday … 6 = Saturday."""
    return (day.weekday() + 1) % 7


def _as_int(value):
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


# ═════════════════════════════════════════════════════════════════════════
# Closed calendar
# ═════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ClosedCalendar:
    closed_weekdays: frozenset = field(default_factory=frozenset)
    closed_dates: frozenset = field(default_factory=frozenset)

    @classmethod
    def from_config(cls, config) -> "ClosedCalendar":
        if not config:
            return cls()
        if not isinstance(config, dict):
            raise ValidationError("opening_config must be an object")

        errors = {}
        weekdays = set()
        raw_weekdays = config.get("closed_weekdays") or []
        if not isinstance(raw_weekdays, list):
            errors["closed_weekdays"] = "must be a list of weekdays (0=Sunday … 6=Saturday)"
        else:
            for raw in raw_weekdays:
                n = _as_int(raw)
                if n is None or not 0 <= n <= 6:
                    errors["closed_weekdays"] = f"invalid weekday {raw!r}; expected 0–6"
                    break
                weekdays.add(n)

        dates = set()
        raw_dates = config.get("closed_dates") or []
        if not isinstance(raw_dates, list):
            errors["closed_dates"] = "must be a list of MM-DD strings"
        else:
            for raw in raw_dates:
                text = str(raw).strip()
                if not MM_DD_RE.match(text) or not _is_real_month_day(text):
                    errors["closed_dates"] = f"invalid recurring date {raw!r}; expected MM-DD"
                    break
                dates.add(text)

        if errors:
            raise ValidationError("Invalid opening configuration", details=errors)
        return cls(frozenset(weekdays), frozenset(dates))

    def to_config(self) -> dict:
        return {
            "closed_weekdays": sorted(self.closed_weekdays),
            "closed_dates": sorted(self.closed_dates),
        }

    @property
    def is_empty(self) -> bool:
        return not self.closed_weekdays and not self.closed_dates

    def is_closed(self, day: date) -> bool:
        if sunday_based_weekday(day) in self.closed_weekdays:
            return True
        return day.strftime("%m-%d") in self.closed_dates

    def all_closed_between(self, start: date, end: date) -> bool:
        """True when every day strictly between ``start`` and ``end`` is closed.

        No days in between means there was no gap to excuse: False.
        """
        if self.is_empty:
            return False
        current = start + timedelta(days=1)
        if current >= end:
            return False
        while current < end:
            if not self.is_closed(current):
                return False
            current += timedelta(days=1)
        return True


def _is_real_month_day(mm_dd: str) -> bool:
    month, day = (int(part) for part in mm_dd.split("-"))
    try:
        date(2000, month, day)  # leap year, so 02-29 is accepted
    except ValueError:
        return False
    return True


# ═════════════════════════════════════════════════════════════════════════
# Reward schedule
# ═════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class RewardMilestone:
    days: int
    label: str

    def to_dict(self) -> dict:
        return {"days": self.days, "label": self.label}


@dataclass(frozen=True)
class RewardSchedule:
    milestones: tuple = ()
    streak_freeze_days: int = DEFAULT_STREAK_FREEZE_DAYS

    @classmethod
    def from_config(cls, config, default_freeze_days=DEFAULT_STREAK_FREEZE_DAYS) -> "RewardSchedule":
        """Build a schedule from the canonical or a legacy reward blob.

        Canonical: ``{"streak_rewards": [{"days": 7, "label": "..."}],
        "streak_freeze_days": 7}``.
        Legacy: numeric keys ``{"7": "Free shake"}`` and
        ``{"streak_bonus": {"streak_7": 50}}`` (label generated).
        """
        if not config:
            return cls(streak_freeze_days=default_freeze_days)
        if not isinstance(config, dict):
            raise ValidationError("rewards_config must be an object")

        freeze_days = _parse_freeze_days(config.get("streak_freeze_days"), default_freeze_days)

        if "streak_rewards" in config:
            pairs = _canonical_pairs(config["streak_rewards"])
        else:
            pairs = _legacy_pairs(config)

        seen = set()
        milestones = []
        for days, label in pairs:
            if days in seen:
                raise ValidationError(
                    "Duplicate reward threshold", details={"streak_rewards": f"days={days} appears twice"},
                )
            seen.add(days)
            milestones.append(RewardMilestone(days, label))
        milestones.sort(key=lambda m: m.days)
        return cls(tuple(milestones), freeze_days)

    def to_config(self) -> dict:
        return {
            "streak_rewards": [m.to_dict() for m in self.milestones],
            "streak_freeze_days": self.streak_freeze_days,
        }

    @property
    def thresholds(self) -> list[int]:
        return [m.days for m in self.milestones]


def _parse_freeze_days(raw, default):
    if raw is None:
        return default
    n = _as_int(raw)
    if n is None or not MIN_STREAK_FREEZE_DAYS <= n <= MAX_STREAK_FREEZE_DAYS:
        raise ValidationError(
            "Invalid streak_freeze_days",
            details={"streak_freeze_days": f"must be an integer between "
                                           f"{MIN_STREAK_FREEZE_DAYS} and {MAX_STREAK_FREEZE_DAYS}"},
        )
    return n


def _milestone_pair(days_raw, label_raw, where):
    days = _as_int(days_raw)
    if days is None or days <= 0:
        raise ValidationError("Invalid reward threshold",
                              details={where: f"days must be a positive integer, got {days_raw!r}"})
    if not isinstance(label_raw, str) or not label_raw.strip():
        raise ValidationError("Invalid reward label",
                              details={where: f"label for day {days} must be a non-empty string"})
    return days, label_raw.strip()


def _canonical_pairs(items):
    if not isinstance(items, list):
        raise ValidationError("streak_rewards must be a list",
                              details={"streak_rewards": "expected [{days, label}, ...]"})
    pairs = []
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError("streak_rewards entries must be objects",
                                  details={"streak_rewards": f"got {item!r}"})
        pairs.append(_milestone_pair(item.get("days"), item.get("label"), "streak_rewards"))
    return pairs


def _legacy_pairs(config):
    pairs = []
    numeric_days = set()
    for key, value in config.items():
        if key in ("streak_freeze_days", "streak_bonus") or key in _LEGACY_IGNORED_KEYS:
            continue
        if _as_int(key) is None:
            raise ValidationError("Unknown rewards_config key", details={key: "not a streak threshold"})
        days, label = _milestone_pair(key, value, key)
        pairs.append((days, label))
        numeric_days.add(days)

    bonus = config.get("streak_bonus")
    if bonus is not None:
        if not isinstance(bonus, dict):
            raise ValidationError("streak_bonus must be an object",
                                  details={"streak_bonus": "expected {streak_N: points}"})
        for key in bonus:
            days = _as_int(str(key).replace("streak_", "", 1))
            if days is None or days <= 0:
                raise ValidationError("Invalid streak_bonus key", details={"streak_bonus": str(key)})
            # A labelled numeric key for the same day wins over the bonus entry
            if days not in numeric_days:
                pairs.append((days, f"Streak {days} days"))
    return pairs
