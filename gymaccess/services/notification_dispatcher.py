"""
Notification Dispatcher — fire-and-forget webhook for check-in events.

Events:
    - checkin.visit            every admitted member entry
    - checkin.reward_unlocked  the streak landed exactly on a reward milestone

Delivery runs on a small bounded thread pool after the check-in has
committed; a burst of check-ins queues behind ``max_workers`` threads.
Each delivery opens its own ``requests.Session`` unless one is injected
(tests pass a mock). Failures are logged and never propagate; with no
webhook configured the event is only logged.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import requests

logger = logging.getLogger(__name__)

EVENT_VISIT = "checkin.visit"
EVENT_REWARD_UNLOCKED = "checkin.reward_unlocked"

DEFAULT_MAX_WORKERS = 4


class NotificationDispatcher:
    def __init__(self, webhook_url=None, timeout=5.0, session=None, run_async=True,
                 max_workers=DEFAULT_MAX_WORKERS):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.run_async = run_async
        self.max_workers = max_workers
        self._session = session
        self._executor = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config):
        return cls(
            webhook_url=config.get("NOTIFICATION_WEBHOOK_URL"),
            timeout=config.get("NOTIFICATION_TIMEOUT_SECONDS", 5.0),
            run_async=not config.get("TESTING", False),
            max_workers=config.get("NOTIFICATION_MAX_WORKERS", DEFAULT_MAX_WORKERS),
        )

    @property
    def executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="notify",
                )
            return self._executor

    def shutdown(self, wait=True):
        """Stop the pool; queued deliveries finish first when ``wait``."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    def notify_checkin(self, *, tenant_id, identity_id, new_streak, reward_label=None):
        """Emit the visit event and, when a milestone was hit, the reward event."""
        base = {"tenant_id": tenant_id, "identity_id": identity_id, "new_streak": new_streak}
        self.dispatch(EVENT_VISIT, base)
        if reward_label:
            self.dispatch(EVENT_REWARD_UNLOCKED, {**base, "reward_label": reward_label})

    def dispatch(self, event_type, payload):
        """Queue one event. Never raises."""
        body = {
            "event_type": event_type,
            "occurred_at": datetime.now(timezone.utc).isoformat(),
            "payload": payload,
        }
        try:
            if not self.webhook_url:
                logger.info("Notification %s (no webhook configured): %s", event_type, payload,
                            extra={"event_type": event_type, "tenant_id": payload.get("tenant_id")})
                return
            if self.run_async:
                self.executor.submit(self._deliver, body)
            else:
                self._deliver(body)
        except Exception:
            logger.exception("Notification %s could not be queued", event_type)

    def _post(self, body):
        if self._session is not None:
            return self._session.post(self.webhook_url, json=body, timeout=self.timeout)
        with requests.Session() as session:
            return session.post(self.webhook_url, json=body, timeout=self.timeout)

    def _deliver(self, body):
        event_type = body["event_type"]
        try:
            resp = self._post(body)
            resp.raise_for_status()
            logger.debug("Notification %s delivered (%s)", event_type, resp.status_code)
        except requests.RequestException as exc:
            logger.warning("Notification %s failed: %s", event_type, exc,
                           extra={"event_type": event_type})
        except Exception:
            logger.exception("Notification %s failed unexpectedly", event_type)
