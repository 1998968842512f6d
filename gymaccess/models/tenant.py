"""
Gym Access Platform
Tenant model — one row per facility (gym).

The three JSON blobs (modules_config, rewards_config, opening_config) are
written only through ``tenant_settings_service`` which validates them into
explicit structures first; readers parse them with the same structures.
"""

from datetime import datetime, timezone

from gymaccess.models import db
from gymaccess.models.soft_delete import SoftDeleteMixin
from gymaccess.utils.helpers import utc_isoformat


# ── Constants ────────────────────────────────────────────────────────────────

TIER_BASIC = "basic"
TIER_PRO_QR = "pro_qr"
TIER_PREMIUM_BIO = "premium_bio"

# Ordered lowest → highest
TIER_ORDER = [TIER_BASIC, TIER_PRO_QR, TIER_PREMIUM_BIO]

TENANT_STATUS_ACTIVE = "active"
TENANT_STATUS_SUSPENDED = "suspended"
TENANT_STATUSES = {TENANT_STATUS_ACTIVE, TENANT_STATUS_SUSPENDED}


class Tenant(SoftDeleteMixin, db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    subscription_tier = db.Column(db.String(30), nullable=False, default=TIER_BASIC)
    status = db.Column(db.String(20), nullable=False, default=TENANT_STATUS_ACTIVE)
    time_zone = db.Column(db.String(64), nullable=False, default="UTC",
                         comment="IANA zone used for calendar days and access windows")

    modules_config = db.Column(db.JSON, default=dict,
                               comment="Sparse capability overrides: {qr_access: true, ...}")
    rewards_config = db.Column(db.JSON, default=dict,
                               comment="{streak_rewards: [{days, label}], streak_freeze_days}")
    opening_config = db.Column(db.JSON, default=dict,
                               comment="{closed_weekdays: [0..6], closed_dates: ['MM-DD']}")

    last_reactivated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    hardware_api_key = db.Column(db.String(128), unique=True, nullable=True,
                                 comment="Shared secret presented by biometric readers")

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    identities = db.relationship("Identity", back_populates="tenant", lazy="dynamic")

    @property
    def is_active(self):
        return self.status == TENANT_STATUS_ACTIVE and not self.is_deleted

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "subscription_tier": self.subscription_tier,
            "status": self.status,
            "time_zone": self.time_zone,
            "modules_config": self.modules_config or {},
            "rewards_config": self.rewards_config or {},
            "opening_config": self.opening_config or {},
            "last_reactivated_at": utc_isoformat(self.last_reactivated_at),
            "created_at": utc_isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<Tenant {self.slug} tier={self.subscription_tier}>"
