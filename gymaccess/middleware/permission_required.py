"""
Permission Decorators — role checks on the JWT-authenticated caller.

Usage:
    @checkin_bp.route("/courtesy", methods=["POST"])
    @require_role(ROLE_STAFF, ROLE_ADMIN)
    def courtesy():
        ...

Role hierarchy is flat: a route lists every role it accepts.
"""

import functools
import logging

from flask import g, request

from gymaccess.utils.errors import E, api_error

logger = logging.getLogger(__name__)

PLATFORM_ADMIN_ROLE = "platform_admin"


def require_auth(f):
    """Decorator: require a verified bearer token."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "jwt_user_id", None) is None:
            return api_error(E.UNAUTHORIZED, "Authentication required")
        return f(*args, **kwargs)
    return decorated


def require_role(*roles: str):
    """Decorator: require a verified token carrying at least one of ``roles``."""
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            if getattr(g, "jwt_user_id", None) is None:
                return api_error(E.UNAUTHORIZED, "Authentication required")
            if not set(roles) & set(getattr(g, "jwt_roles", [])):
                logger.warning(
                    "Access denied: user %s with roles %s on %s",
                    g.jwt_user_id, g.jwt_roles, request.path,
                )
                return api_error(E.FORBIDDEN, "Insufficient permissions")
            return f(*args, **kwargs)
        return decorated
    return decorator
