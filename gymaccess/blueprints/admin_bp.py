"""
Admin blueprint — operator and cron endpoints.

Endpoints:
    POST /api/v1/admin/reconciliation/streaks      — run the streak sweep now
    POST /api/v1/admin/subscriptions/sync-expired  — expire lapsed subscriptions
    POST /api/v1/admin/tenants/<id>/suspend
    POST /api/v1/admin/tenants/<id>/reactivate
    GET  /api/v1/admin/jobs                        — registered jobs + last run
    POST /api/v1/admin/jobs/<name>/run
    POST /api/v1/admin/jobs/<name>/toggle          — body {"enabled": bool}

Callers are either cron (the ``RECONCILE_SECRET`` value in ``X-Cron-Secret``)
or a bearer token carrying the ``platform_admin`` role.
"""

import hmac
import logging

from flask import Blueprint, current_app, g, jsonify, request

from gymaccess.blueprints import register_error_handlers
from gymaccess.middleware.permission_required import PLATFORM_ADMIN_ROLE
from gymaccess.services import tenant_settings_service
from gymaccess.services.reconciler import run_streak_reconciliation
from gymaccess.services.scheduler_service import SchedulerService, get_registered_jobs
from gymaccess.services.subscription_service import sync_expired_subscriptions
from gymaccess.utils.errors import E, api_error

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")
register_error_handlers(admin_bp)

CRON_SECRET_HEADER = "X-Cron-Secret"


@admin_bp.before_request
def _require_operator():
    secret = current_app.config.get("RECONCILE_SECRET")
    supplied = request.headers.get(CRON_SECRET_HEADER)
    if secret and supplied is not None:
        if hmac.compare_digest(supplied.encode(), secret.encode()):
            g.actor_id = "cron"
            return None
        logger.warning("Admin call rejected: bad %s", CRON_SECRET_HEADER)
        return api_error(E.UNAUTHORIZED, "Unauthorized")

    if g.jwt_user_id is None:
        return api_error(E.UNAUTHORIZED, "Authentication required")
    if PLATFORM_ADMIN_ROLE not in g.jwt_roles:
        logger.warning("Admin call rejected: user %s lacks %s", g.jwt_user_id, PLATFORM_ADMIN_ROLE)
        return api_error(E.FORBIDDEN, "Insufficient permissions")
    return None


@admin_bp.route("/reconciliation/streaks", methods=["POST"])
def reconcile_streaks():
    summaries = run_streak_reconciliation()
    return jsonify({
        "tenants": summaries,
        "streaks_reset": sum(s["reset_count"] for s in summaries),
    }), 200


@admin_bp.route("/subscriptions/sync-expired", methods=["POST"])
def sync_expired():
    return jsonify(sync_expired_subscriptions()), 200


@admin_bp.route("/tenants/<int:tenant_id>/suspend", methods=["POST"])
def suspend_tenant(tenant_id):
    tenant = tenant_settings_service.get_tenant(tenant_id)
    tenant = tenant_settings_service.suspend_tenant(tenant, actor=g.actor_id)
    return jsonify(tenant.to_dict()), 200


@admin_bp.route("/tenants/<int:tenant_id>/reactivate", methods=["POST"])
def reactivate_tenant(tenant_id):
    tenant = tenant_settings_service.get_tenant(tenant_id)
    tenant = tenant_settings_service.reactivate_tenant(tenant, actor=g.actor_id)
    return jsonify(tenant.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Scheduled jobs
# ═════════════════════════════════════════════════════════════════════════


@admin_bp.route("/jobs", methods=["GET"])
def list_jobs():
    return jsonify({"jobs": SchedulerService.list_jobs()}), 200


@admin_bp.route("/jobs/<job_name>/run", methods=["POST"])
def run_job(job_name):
    if job_name not in get_registered_jobs():
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")
    result = SchedulerService.run_job(job_name)
    status = 200 if result["status"] in ("success", "skipped") else 500
    return jsonify(result), status


@admin_bp.route("/jobs/<job_name>/toggle", methods=["POST"])
def toggle_job(job_name):
    data = request.get_json(silent=True) or {}
    enabled = data.get("enabled")
    if not isinstance(enabled, bool):
        return api_error(E.VALIDATION_INVALID, "enabled must be true or false")
    job = SchedulerService.toggle_job(job_name, enabled)
    if job is None:
        return api_error(E.NOT_FOUND, f"Job not found: {job_name}")
    return jsonify(job), 200
