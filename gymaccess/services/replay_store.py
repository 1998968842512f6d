"""
Replay Store — last-seen check-in instants shared across workers.

Keyed by ``replay:{tenant_id}:{identity_id}``; values are epoch seconds
and expire after the cooldown they were written for.

Uses Redis in production (via REPLAY_STORE_URL), an in-process dict for
development/testing. The instance lives on ``app.extensions["replay_store"]``
so tests can swap it.
"""

import logging
import threading
import time
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


def replay_key(tenant_id, identity_id):
    return f"replay:{tenant_id}:{identity_id}"


def _to_epoch(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _from_epoch(raw) -> datetime | None:
    if raw is None:
        return None
    try:
        return datetime.fromtimestamp(float(raw), tz=timezone.utc)
    except (TypeError, ValueError):
        logger.warning("Replay store: ignoring unreadable value %r", raw)
        return None


# ── In-memory backend ────────────────────────────────────────────────────


class MemoryReplayStore:
    """Dict store for dev/testing. One instance per app, not per module."""

    def __init__(self):
        self._entries = {}  # key → (epoch, expire_ts)
        self._lock = threading.Lock()

    def last_seen(self, tenant_id, identity_id):
        key = replay_key(tenant_id, identity_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires = entry
            if time.time() > expires:
                self._entries.pop(key, None)
                return None
        return _from_epoch(value)

    def remember(self, tenant_id, identity_id, seen_at, ttl_seconds):
        with self._lock:
            self._entries[replay_key(tenant_id, identity_id)] = (
                _to_epoch(seen_at), time.time() + max(1, int(ttl_seconds)),
            )

    def forget(self, tenant_id, identity_id):
        with self._lock:
            self._entries.pop(replay_key(tenant_id, identity_id), None)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def ping(self):
        return True


# ── Redis backend ────────────────────────────────────────────────────────


class RedisReplayStore:
    """Redis-backed store; SETEX gives TTL eviction for free."""

    def __init__(self, client):
        self._client = client

    def last_seen(self, tenant_id, identity_id):
        return _from_epoch(self._client.get(replay_key(tenant_id, identity_id)))

    def remember(self, tenant_id, identity_id, seen_at, ttl_seconds):
        self._client.setex(
            replay_key(tenant_id, identity_id),
            max(1, int(ttl_seconds)),
            repr(_to_epoch(seen_at)),
        )

    def forget(self, tenant_id, identity_id):
        self._client.delete(replay_key(tenant_id, identity_id))

    def clear(self):
        for key in self._client.scan_iter("replay:*"):
            self._client.delete(key)

    def ping(self):
        return self._client.ping()


def build_replay_store(url):
    """Redis when ``url`` points at one, otherwise the in-memory store."""
    if url and not url.startswith("memory://"):
        try:
            import redis as _redis
            client = _redis.from_url(url, decode_responses=True)
            client.ping()
            logger.info("Replay store: using Redis at %s", url.split("@")[-1])
            return RedisReplayStore(client)
        except Exception as exc:
            logger.warning("Redis unavailable (%s) — falling back to memory replay store", exc)
    return MemoryReplayStore()
