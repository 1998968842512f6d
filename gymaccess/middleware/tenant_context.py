"""
Tenant Context Middleware — exposes the caller's tenant and actor.

Copies the verified JWT claims (set by ``jwt_auth``) into ``g.tenant_id``
and ``g.actor_id`` for the routes, logging and rate-limit keys. Request
headers are never consulted. It does not reject anything itself: the
route decorators answer 401/403 and the check-in service raises
MissingTenantContext, so each error is reported the same way on every
path.
"""

from flask import g, request


def init_tenant_context(app):
    """Register tenant context middleware as a before_request hook."""

    @app.before_request
    def _tenant_context():
        g.tenant_id = None
        g.actor_id = None
        if not request.path.startswith("/api/v1/"):
            return None

        g.tenant_id = getattr(g, "jwt_tenant_id", None)
        g.actor_id = getattr(g, "jwt_user_id", None)
        return None
