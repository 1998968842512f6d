"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — dependency status (DB, replay store)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from gymaccess.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Replay store ─────────────────────────────────────────────────
    store = current_app.extensions.get("replay_store")
    try:
        t0 = time.perf_counter()
        store.ping()
        store_ms = (time.perf_counter() - t0) * 1000
        checks["replay_store"] = {
            "status": "ok",
            "backend": type(store).__name__,
            "latency_ms": round(store_ms, 1),
        }
    except Exception as exc:
        # Check-ins fall back to persisted entries; not fatal
        checks["replay_store"] = {"status": "error", "detail": str(exc)}

    checks["app"] = {
        "name": "Gym Access Platform",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), (200 if overall else 503)
