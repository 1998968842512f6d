"""
Gym Access Platform
Scheduled Jobs.

Jobs:
    - streak_reset: nightly streak reconciliation across tenants
    - expired_subscription_sync: expires lapsed subscriptions and
      protects the owners' streaks
"""

from __future__ import annotations

import logging
from typing import Any

from gymaccess.services.reconciler import run_streak_reconciliation
from gymaccess.services.scheduler_service import register_job
from gymaccess.services.subscription_service import sync_expired_subscriptions

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Streak Reset
# ═══════════════════════════════════════════════════════════════════════════

@register_job("streak_reset")
def reset_lapsed_streaks(app) -> dict[str, Any]:
    """Reset streaks of members who missed a day without an excuse."""
    summaries = run_streak_reconciliation()
    results = {
        "tenants_processed": len(summaries),
        "streaks_reset": sum(s["reset_count"] for s in summaries),
        "tenants_failed": sum(1 for s in summaries if "error" in s),
        "tenants": summaries,
    }
    logger.info("Streak reset completed: %d reset across %d tenant(s)",
                results["streaks_reset"], results["tenants_processed"])
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Expired Subscription Sync
# ═══════════════════════════════════════════════════════════════════════════

@register_job("expired_subscription_sync")
def sync_expired(app) -> dict[str, Any]:
    """Mark lapsed subscriptions expired and set streak grace freezes."""
    return sync_expired_subscriptions()
