"""
Gym Access Platform
Flask Application Factory.

Usage:
    from gymaccess import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import json
import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from gymaccess.config import config
from gymaccess.models import db
from gymaccess.middleware.logging_config import configure_logging
from gymaccess.middleware.jwt_auth import init_jwt_middleware
from gymaccess.middleware.rate_limiter import init_rate_limits
from gymaccess.middleware.tenant_context import init_tenant_context
from gymaccess.middleware.timing import init_request_timing

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiated so ProductionConfig can refuse missing secrets
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Check-in collaborators (swappable in tests) ──────────────────────
    from gymaccess.services.notification_dispatcher import NotificationDispatcher
    from gymaccess.services.replay_store import build_replay_store

    app.extensions["replay_store"] = build_replay_store(app.config.get("REPLAY_STORE_URL"))
    app.extensions["notification_dispatcher"] = NotificationDispatcher.from_config(app.config)

    # ── Request middleware ───────────────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)
    init_tenant_context(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 256 * 1024)

    @app.before_request
    def _guard_request():
        # Content-Type validation for mutating methods
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from gymaccess.models import audit as _audit_models          # noqa: F401
    from gymaccess.models import entry as _entry_models          # noqa: F401
    from gymaccess.models import identity as _identity_models    # noqa: F401
    from gymaccess.models import scheduling as _scheduling_models  # noqa: F401
    from gymaccess.models import tenant as _tenant_models        # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ───────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from gymaccess.blueprints.admin_bp import admin_bp
    from gymaccess.blueprints.biometric_bp import biometric_bp
    from gymaccess.blueprints.checkin_bp import checkin_bp
    from gymaccess.blueprints.health_bp import health_bp
    from gymaccess.blueprints.tenant_bp import tenant_bp

    app.register_blueprint(checkin_bp)
    app.register_blueprint(biometric_bp)
    app.register_blueprint(tenant_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("reconcile-streaks")
    def reconcile_streaks_cmd():
        """Run the nightly streak reconciliation once."""
        from gymaccess.services.reconciler import run_streak_reconciliation
        summaries = run_streak_reconciliation()
        click.echo(json.dumps(summaries, indent=2))

    @app.cli.command("sync-expired-subscriptions")
    def sync_expired_cmd():
        """Expire lapsed subscriptions and set streak grace freezes."""
        from gymaccess.services.subscription_service import sync_expired_subscriptions
        click.echo(json.dumps(sync_expired_subscriptions(), indent=2))

    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_cmd(job_name):
        """Run a registered scheduled job by name."""
        from gymaccess.services.scheduler_service import SchedulerService
        click.echo(json.dumps(SchedulerService.run_job(job_name), indent=2, default=str))

    @app.cli.command("issue-token")
    @click.option("--identity", "user_id", required=True, help="Identity id (token subject)")
    @click.option("--tenant", "tenant_id", type=int, default=None, help="Omit for a platform operator")
    @click.option("--role", "roles", multiple=True, required=True)
    @click.option("--expires-in", type=int, default=None, help="Lifetime in seconds")
    def issue_token_cmd(user_id, tenant_id, roles, expires_in):
        """Sign a bearer token for a front desk, kiosk or operator."""
        from gymaccess.services.jwt_service import generate_access_token
        click.echo(generate_access_token(user_id, tenant_id, list(roles), expires_in=expires_in))

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed", "code": "ERR_METHOD_NOT_ALLOWED"}, 405

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return {"error": e.description, "code": "ERR_UNSUPPORTED_MEDIA_TYPE"}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "code": "ERR_RATE_LIMITED", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (registers the jobs) ────────────────────
    from gymaccess.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)
    if not app.config.get("TESTING"):
        try:
            SchedulerService.ensure_jobs_registered()
        except Exception as e:
            app.logger.warning("Scheduled job registration failed: %s", e)

    return app
