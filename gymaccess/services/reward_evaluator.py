"""
Reward Evaluator — maps a streak length to reward milestones.

A reward unlocks only when the streak lands exactly on a threshold.
"""

from gymaccess.services.tenant_settings import RewardSchedule


def reward_for_streak(schedule: RewardSchedule, streak: int):
    """Label of the milestone at exactly ``streak`` days, or None."""
    for milestone in schedule.milestones:
        if milestone.days == streak:
            return milestone.label
    return None


def next_reward(schedule: RewardSchedule, streak: int):
    """Smallest milestone strictly above ``streak``, or None."""
    for milestone in schedule.milestones:  # ascending
        if milestone.days > streak:
            return milestone
    return None


def reward_progress(schedule: RewardSchedule, streak: int) -> dict:
    upcoming = next_reward(schedule, streak)
    return {
        "current_streak": streak,
        "current_reward": reward_for_streak(schedule, streak),
        "next_reward": (
            {**upcoming.to_dict(), "days_remaining": upcoming.days - streak} if upcoming else None
        ),
        "schedule": [m.to_dict() for m in schedule.milestones],
        "streak_freeze_days": schedule.streak_freeze_days,
    }
