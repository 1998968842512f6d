"""
Gym Access Platform
Identity & Entitlement models.

Models:
    - Identity: a person who may enter (member or staff). Carries the streak
      state mutated by the check-in engine and the nightly reconciler.
    - Entitlement: a subscription granting access until ``expires_at``.
"""

from datetime import datetime, timezone

from gymaccess.models import db
from gymaccess.models.base import TenantModel
from gymaccess.models.soft_delete import SoftDeleteMixin
from gymaccess.utils.helpers import utc_isoformat


# ── Constants ────────────────────────────────────────────────────────────────

ROLE_MEMBER = "member"
ROLE_STAFF = "staff"
ROLE_ADMIN = "admin"
IDENTITY_ROLES = {ROLE_MEMBER, ROLE_STAFF, ROLE_ADMIN}
STAFF_ROLES = {ROLE_STAFF, ROLE_ADMIN}

ENTITLEMENT_ACTIVE = "active"
ENTITLEMENT_EXPIRED = "expired"
ENTITLEMENT_FROZEN = "frozen"
ENTITLEMENT_CANCELED = "canceled"
ENTITLEMENT_PENDING_PAYMENT = "pending_payment"
ENTITLEMENT_STATUSES = {
    ENTITLEMENT_ACTIVE, ENTITLEMENT_EXPIRED, ENTITLEMENT_FROZEN,
    ENTITLEMENT_CANCELED, ENTITLEMENT_PENDING_PAYMENT,
}

QR_PAYLOAD_PREFIX = "GYM_QR_"


class Identity(SoftDeleteMixin, TenantModel):
    """
    A person who may enter the facility.

    Staff (any non-member role) bypass subscription and streak logic.
    ``version`` is an optimistic-lock counter: a concurrent check-in that
    loses the race fails its UPDATE instead of double-crediting.
    """

    __tablename__ = "identities"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "biometric_template_id", name="uq_identity_tenant_biometric"),
        db.Index("ix_identities_tenant_streak", "tenant_id", "current_streak"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    phone = db.Column(db.String(40), nullable=True)
    role = db.Column(db.String(20), nullable=False, default=ROLE_MEMBER)

    # Streak state
    current_streak = db.Column(db.Integer, nullable=False, default=0)
    last_entry_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_streak_credit_date = db.Column(db.Date, nullable=True)
    streak_freeze_until = db.Column(db.DateTime(timezone=True), nullable=True,
                                    comment="Grace period after a lapsed renewal")

    # Credentials
    qr_token = db.Column(db.String(64), unique=True, nullable=True)
    biometric_template_id = db.Column(db.String(128), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": version}

    tenant = db.relationship("Tenant", back_populates="identities")
    entitlements = db.relationship(
        "Entitlement", back_populates="identity", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    @property
    def is_staff(self):
        return self.role in STAFF_ROLES

    @property
    def qr_payload(self):
        return f"{QR_PAYLOAD_PREFIX}{self.qr_token}" if self.qr_token else None

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "role": self.role,
            "current_streak": self.current_streak,
            "last_entry_at": utc_isoformat(self.last_entry_at),
            "last_streak_credit_date": (
                self.last_streak_credit_date.isoformat() if self.last_streak_credit_date else None
            ),
            "streak_freeze_until": utc_isoformat(self.streak_freeze_until),
        }

    def __repr__(self):
        return f"<Identity {self.id} role={self.role} streak={self.current_streak}>"


class Entitlement(TenantModel):
    """A subscription granting access until ``expires_at``."""

    __tablename__ = "entitlements"
    __table_args__ = (
        db.Index("ix_entitlements_identity_status", "identity_id", "status", "expires_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    identity_id = db.Column(
        db.Integer, db.ForeignKey("identities.id", ondelete="CASCADE"), nullable=False,
    )
    status = db.Column(db.String(20), nullable=False, default=ENTITLEMENT_ACTIVE)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    allowed_start_time = db.Column(db.Time, nullable=True, comment="Tenant-local, inclusive")
    allowed_end_time = db.Column(db.Time, nullable=True, comment="Tenant-local, inclusive")
    frozen_days_left = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    identity = db.relationship("Identity", back_populates="entitlements")

    @property
    def has_time_window(self):
        return self.allowed_start_time is not None and self.allowed_end_time is not None

    def to_dict(self):
        return {
            "id": self.id,
            "identity_id": self.identity_id,
            "tenant_id": self.tenant_id,
            "status": self.status,
            "expires_at": utc_isoformat(self.expires_at),
            "allowed_start_time": self.allowed_start_time.strftime("%H:%M") if self.allowed_start_time else None,
            "allowed_end_time": self.allowed_end_time.strftime("%H:%M") if self.allowed_end_time else None,
            "frozen_days_left": self.frozen_days_left,
        }
