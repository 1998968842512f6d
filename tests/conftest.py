"""
Shared pytest fixtures for the Gym Access test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - clock: pinned ``utcnow`` for every service (autouse)
    - notifications: recording stand-in for the notification dispatcher
    - make_tenant / make_identity / make_entitlement: row factories
    - auth_headers / operator_headers: signed bearer tokens for API calls
"""

from datetime import datetime, timedelta, timezone

import pytest

from gymaccess import create_app
from gymaccess.models import db as _db
from gymaccess.models.identity import ENTITLEMENT_ACTIVE, ROLE_MEMBER, Entitlement, Identity
from gymaccess.models.tenant import TIER_PRO_QR, Tenant
from gymaccess.services.jwt_service import generate_access_token

# Wednesday, 15:00 UTC. Tests that care about the clock pin it here.
FIXED_NOW = datetime(2026, 3, 11, 15, 0, tzinfo=timezone.utc)


class Clock:
    """Callable stand-in for ``utcnow`` that tests can move forward."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


def auth_headers(tenant, identity=None, roles=("admin",), user_id=None, tenant_id=None):
    """Bearer header for a tenant-scoped caller. Needs an app context."""
    if user_id is None:
        user_id = identity.id if identity is not None else 1
    if tenant_id is None and tenant is not None:
        tenant_id = tenant.id
    token = generate_access_token(user_id, tenant_id, list(roles))
    return {"Authorization": f"Bearer {token}"}


def operator_headers(user_id="ops"):
    """Bearer header for a platform operator (no tenant claim)."""
    token = generate_access_token(user_id, None, ["platform_admin"])
    return {"Authorization": f"Bearer {token}"}


class RecordingDispatcher:
    """Collects notify_checkin calls instead of posting them."""

    def __init__(self):
        self.calls = []

    def notify_checkin(self, **kwargs):
        self.calls.append(kwargs)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        app.extensions["replay_store"].clear()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def notifications(app):
    """Swap the notification dispatcher for a recorder for one test."""
    original = app.extensions["notification_dispatcher"]
    recorder = RecordingDispatcher()
    app.extensions["notification_dispatcher"] = recorder
    yield recorder
    app.extensions["notification_dispatcher"] = original


# ── Row factories ────────────────────────────────────────────────────────


@pytest.fixture()
def make_tenant():
    counter = {"n": 0}

    def _make(**kw):
        counter["n"] += 1
        defaults = {
            "name": f"Gym {counter['n']}",
            "slug": f"gym-{counter['n']}",
            "subscription_tier": TIER_PRO_QR,
            "time_zone": "UTC",
            "modules_config": {},
            "rewards_config": {},
            "opening_config": {},
        }
        defaults.update(kw)
        tenant = Tenant(**defaults)
        _db.session.add(tenant)
        _db.session.commit()
        return tenant

    return _make


@pytest.fixture()
def make_identity():
    def _make(tenant, **kw):
        defaults = {"tenant_id": tenant.id, "name": "Ada Member", "role": ROLE_MEMBER}
        defaults.update(kw)
        identity = Identity(**defaults)
        _db.session.add(identity)
        _db.session.commit()
        return identity

    return _make


@pytest.fixture()
def make_entitlement():
    def _make(identity, *, expires_at=None, status=ENTITLEMENT_ACTIVE, window=None, **kw):
        start, end = window or (None, None)
        ent = Entitlement(
            tenant_id=identity.tenant_id,
            identity_id=identity.id,
            status=status,
            expires_at=expires_at or (FIXED_NOW + timedelta(days=30)),
            allowed_start_time=start,
            allowed_end_time=end,
            **kw,
        )
        _db.session.add(ent)
        _db.session.commit()
        return ent

    return _make


@pytest.fixture()
def tenant(make_tenant):
    return make_tenant()


@pytest.fixture()
def member(tenant, make_identity, make_entitlement):
    """Member with a 30-day active entitlement and a QR token."""
    identity = make_identity(tenant, qr_token="tok-ada")
    make_entitlement(identity)
    return identity


_CLOCK_TARGETS = (
    "gymaccess.services.checkin_service.utcnow",
    "gymaccess.services.reconciler.utcnow",
    "gymaccess.services.subscription_service.utcnow",
    "gymaccess.services.tenant_settings_service.utcnow",
)


@pytest.fixture(autouse=True)
def clock(monkeypatch):
    """Every service sees FIXED_NOW unless a test advances it."""
    fake = Clock(FIXED_NOW)
    for target in _CLOCK_TARGETS:
        monkeypatch.setattr(target, fake)
    return fake
