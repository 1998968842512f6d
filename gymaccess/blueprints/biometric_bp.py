"""
Biometric reader blueprint.

    POST /api/v1/biometric/checkin

The reader authenticates with its tenant's ``X-API-Key`` and sends the
matched fingerprint template id (``template_id``, older firmware sends
``footprint_id``). The response is always ``{openDoor, reason?}`` with
HTTP 200 except for authentication failures; anything unexpected keeps
the door shut.
"""

import logging

from flask import Blueprint, jsonify, request

from gymaccess.core.exceptions import CheckinError, MissingTenantContext
from gymaccess.services import checkin_service

logger = logging.getLogger(__name__)

biometric_bp = Blueprint("biometric", __name__, url_prefix="/api/v1/biometric")

API_KEY_HEADER = "X-API-Key"

# Reader display strings per failure code
REASONS = {
    "ERR_CAPABILITY_DISABLED": "Biometric access not enabled",
    "ERR_IDENTITY_NOT_FOUND": "Unknown fingerprint",
    "ERR_NO_ACTIVE_ENTITLEMENT": "No active subscription",
    "ERR_OUTSIDE_ALLOWED_WINDOW": "Outside allowed hours",
    "ERR_REPLAY_BLOCKED": "Anti-Passback",
    "ERR_INTERNAL": "Internal error",
}


def _closed(reason, status=200):
    return jsonify({"openDoor": False, "reason": reason}), status


@biometric_bp.route("/checkin", methods=["POST"])
def biometric_checkin():
    data = request.get_json(silent=True) or {}
    template_id = data.get("template_id") or data.get("footprint_id")
    try:
        result = checkin_service.perform_biometric_checkin(
            request.headers.get(API_KEY_HEADER), template_id,
        )
    except MissingTenantContext:
        return _closed("Invalid API key", status=401)
    except CheckinError as exc:
        logger.info("Biometric entry refused: %s", exc.code)
        return _closed(REASONS.get(exc.code, "Access denied"))
    except Exception:
        logger.exception("Biometric check-in failed")
        return _closed(REASONS["ERR_INTERNAL"])

    body = {"openDoor": True}
    if result.reward_label:
        body["reason"] = f"Reward unlocked: {result.reward_label}"
    return jsonify(body), 200
