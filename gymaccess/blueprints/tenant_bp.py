"""
Tenant blueprint — capabilities, settings, reward progress, subscriptions.

Endpoints (scoped by the tenant in the bearer token; writes need an admin role):
    GET  /api/v1/tenant/capabilities
    PUT  /api/v1/tenant/config/rewards
    PUT  /api/v1/tenant/config/opening
    PUT  /api/v1/tenant/config/modules
    GET  /api/v1/identities/<id>/rewards/progress
    POST /api/v1/subscriptions/<id>/freeze
    POST /api/v1/subscriptions/<id>/unfreeze
"""

import logging

from flask import Blueprint, g, jsonify, request

from gymaccess.blueprints import register_error_handlers
from gymaccess.core.exceptions import MissingTenantContext
from gymaccess.middleware.permission_required import require_auth, require_role
from gymaccess.models.identity import ROLE_ADMIN, STAFF_ROLES
from gymaccess.services import subscription_service, tenant_settings_service
from gymaccess.utils.errors import E, api_error

logger = logging.getLogger(__name__)

tenant_bp = Blueprint("tenant", __name__, url_prefix="/api/v1")
register_error_handlers(tenant_bp)


def _current_tenant():
    if g.tenant_id is None:
        raise MissingTenantContext()
    return tenant_settings_service.get_tenant(g.tenant_id)


# ═════════════════════════════════════════════════════════════════════════
# Capabilities & configuration
# ═════════════════════════════════════════════════════════════════════════


@tenant_bp.route("/tenant/capabilities", methods=["GET"])
@require_auth
def capabilities():
    return jsonify(tenant_settings_service.capabilities_view(_current_tenant())), 200


@tenant_bp.route("/tenant/config/rewards", methods=["PUT"])
@require_role(ROLE_ADMIN)
def update_rewards():
    data = request.get_json(silent=True)
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    config = tenant_settings_service.update_rewards_config(_current_tenant(), data, actor=g.actor_id)
    return jsonify(config), 200


@tenant_bp.route("/tenant/config/opening", methods=["PUT"])
@require_role(ROLE_ADMIN)
def update_opening():
    data = request.get_json(silent=True)
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    config = tenant_settings_service.update_opening_config(_current_tenant(), data, actor=g.actor_id)
    return jsonify(config), 200


@tenant_bp.route("/tenant/config/modules", methods=["PUT"])
@require_role(ROLE_ADMIN)
def update_modules():
    data = request.get_json(silent=True)
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    view = tenant_settings_service.update_modules_config(_current_tenant(), data, actor=g.actor_id)
    return jsonify(view), 200


# ═════════════════════════════════════════════════════════════════════════
# Rewards & subscriptions
# ═════════════════════════════════════════════════════════════════════════


@tenant_bp.route("/identities/<int:identity_id>/rewards/progress", methods=["GET"])
@require_auth
def reward_progress(identity_id):
    if not STAFF_ROLES & set(g.jwt_roles) and identity_id != g.actor_id:
        return api_error(E.FORBIDDEN, "Members may only read their own progress")
    progress = tenant_settings_service.identity_reward_progress(_current_tenant(), identity_id)
    return jsonify(progress), 200


@tenant_bp.route("/subscriptions/<int:entitlement_id>/freeze", methods=["POST"])
@require_role(ROLE_ADMIN)
def freeze_subscription(entitlement_id):
    tenant = _current_tenant()
    ent = subscription_service.freeze_entitlement(tenant.id, entitlement_id, actor=g.actor_id)
    return jsonify(ent.to_dict()), 200


@tenant_bp.route("/subscriptions/<int:entitlement_id>/unfreeze", methods=["POST"])
@require_role(ROLE_ADMIN)
def unfreeze_subscription(entitlement_id):
    tenant = _current_tenant()
    ent = subscription_service.unfreeze_entitlement(tenant.id, entitlement_id, actor=g.actor_id)
    return jsonify(ent.to_dict()), 200
