"""
Check-in blueprint.

Endpoints:
    POST /api/v1/checkin             — member/staff entry by id or QR code
    POST /api/v1/checkin/courtesy    — staff-granted entry, audited
    GET  /api/v1/checkin/history     — paginated entry log for the tenant

Every call needs a bearer token. The tenant and, for courtesy access,
the acting staff member are taken from its verified claims.
"""

import logging

from flask import Blueprint, g, jsonify, request

from gymaccess.blueprints import paginate_query, register_error_handlers
from gymaccess.middleware.permission_required import require_auth, require_role
from gymaccess.models.entry import ACCESS_MANUAL, ACCESS_QR
from gymaccess.models.identity import ROLE_ADMIN, ROLE_STAFF, STAFF_ROLES
from gymaccess.services import checkin_service
from gymaccess.utils.errors import E, api_error

logger = logging.getLogger(__name__)

checkin_bp = Blueprint("checkin", __name__, url_prefix="/api/v1/checkin")
register_error_handlers(checkin_bp)


@checkin_bp.route("", methods=["POST"])
@require_auth
def checkin():
    data = request.get_json(silent=True) or {}
    identity_id = data.get("identity_id")
    code = data.get("code")
    if identity_id is None and not code:
        return api_error(E.VALIDATION_REQUIRED, "identity_id or code is required")
    # Member tokens may only admit their own identity; scanning codes is front-desk work
    if not STAFF_ROLES & set(g.jwt_roles) and (identity_id is None or identity_id != g.actor_id):
        return api_error(E.FORBIDDEN, "Members may only check themselves in")

    access_method = data.get("access_method") or (ACCESS_QR if code else ACCESS_MANUAL)
    result = checkin_service.perform_checkin(
        g.tenant_id,
        identity_id=identity_id,
        code=code if identity_id is None else None,
        access_method=access_method,
    )
    return jsonify(result.to_dict()), 200


@checkin_bp.route("/courtesy", methods=["POST"])
@require_role(ROLE_STAFF, ROLE_ADMIN)
def courtesy():
    data = request.get_json(silent=True) or {}
    if data.get("identity_id") is None:
        return api_error(E.VALIDATION_REQUIRED, "identity_id is required")
    entry = checkin_service.grant_courtesy(
        g.tenant_id,
        actor_id=g.actor_id,
        identity_id=data["identity_id"],
        reason=data.get("reason"),
    )
    return jsonify(entry.to_dict()), 201


@checkin_bp.route("/history", methods=["GET"])
@require_role(ROLE_STAFF, ROLE_ADMIN)
def history():
    identity_id = request.args.get("identity_id", type=int)
    query = checkin_service.entry_history_query(g.tenant_id, identity_id=identity_id)
    items, total = paginate_query(query, default_limit=50, max_limit=500)
    return jsonify({"items": [e.to_dict() for e in items], "total": total}), 200
