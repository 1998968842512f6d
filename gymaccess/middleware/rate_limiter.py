"""
Rate limiting configuration.

Coarse request-rate abuse control with Flask-Limiter, keyed by tenant
when the request names one and by remote IP otherwise. This is separate
from anti-passback replay protection, which lives in the check-in service.

Usage:
    from gymaccess.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)


def tenant_rate_limit_key():
    """Dynamic rate limit key: tenant_id if available, else remote IP."""
    tenant_id = getattr(g, "tenant_id", None)
    if tenant_id:
        return f"tenant:{tenant_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Check-in endpoints:   CHECKIN_RATE_LIMIT per tenant
        - Biometric reader:     BIOMETRIC_RATE_LIMIT per remote IP
        - Tenant/admin writes:  60/minute per tenant
        - Health check:         exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("checkin")
    if bp:
        limiter.limit(app.config["CHECKIN_RATE_LIMIT"], key_func=tenant_rate_limit_key)(bp)

    bp = app.blueprints.get("biometric")
    if bp:
        limiter.limit(app.config["BIOMETRIC_RATE_LIMIT"])(bp)

    for bp_name in ("tenant", "admin"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("60/minute", key_func=tenant_rate_limit_key)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — checkin: %s, biometric: %s, tenant/admin: 60/min",
        app.config["CHECKIN_RATE_LIMIT"], app.config["BIOMETRIC_RATE_LIMIT"],
    )
