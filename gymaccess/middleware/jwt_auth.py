"""
JWT Auth Middleware — parses the bearer token, sets g.jwt_*.

Only verified claims reach ``g``; a missing, expired or forged token
leaves the context empty and the route decorators answer 401.

Chain order:
  jwt_auth.py  →  tenant_context.py  →  route handler
"""

import logging

import jwt as pyjwt
from flask import g, request

from gymaccess.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths authenticated some other way (or not at all)
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/api/v1/biometric",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_tenant_id = None
        g.jwt_roles = []

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]
        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path)
            return
        except pyjwt.InvalidTokenError as exc:
            logger.warning("Rejected access token on %s: %s", path, exc)
            return

        sub = str(payload.get("sub") or "")
        tenant_id = payload.get("tenant_id")
        roles = payload.get("roles") or []
        g.jwt_user_id = int(sub) if sub.isdigit() else (sub or None)
        g.jwt_tenant_id = tenant_id if isinstance(tenant_id, int) else None
        g.jwt_roles = [r for r in roles if isinstance(r, str)]
