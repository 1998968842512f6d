"""
Gym Access Platform
EntryRecord — append-only log of admitted entries.

Rows are inserted once by the check-in service and never updated or
deleted; this table is the sole source of truth for "did this person enter".
"""

from datetime import datetime, timezone

from gymaccess.models import db
from gymaccess.models.base import TenantModel
from gymaccess.utils.helpers import utc_isoformat


# ── Constants ────────────────────────────────────────────────────────────────

ACCESS_MANUAL = "manual"
ACCESS_QR = "qr"
ACCESS_BIOMETRIC = "biometric"
ACCESS_METHODS = {ACCESS_MANUAL, ACCESS_QR, ACCESS_BIOMETRIC}

ACCESS_CLASS_REGULAR = "regular"
ACCESS_CLASS_COURTESY = "courtesy"
ACCESS_CLASSES = {ACCESS_CLASS_REGULAR, ACCESS_CLASS_COURTESY}


class EntryRecord(TenantModel):
    __tablename__ = "entry_records"
    __table_args__ = (
        db.Index("ix_entry_records_tenant_entered", "tenant_id", "entered_at"),
        db.Index("ix_entry_records_identity_entered", "identity_id", "entered_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    identity_id = db.Column(
        db.Integer, db.ForeignKey("identities.id", ondelete="CASCADE"), nullable=False,
    )
    entered_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc))
    access_method = db.Column(db.String(20), nullable=False, default=ACCESS_MANUAL)
    access_class = db.Column(db.String(20), nullable=False, default=ACCESS_CLASS_REGULAR)
    credited = db.Column(db.Boolean, nullable=False, default=False,
                         comment="True when this entry advanced or restarted the streak")
    streak_after = db.Column(db.Integer, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "identity_id": self.identity_id,
            "entered_at": utc_isoformat(self.entered_at),
            "access_method": self.access_method,
            "access_class": self.access_class,
            "credited": self.credited,
            "streak_after": self.streak_after,
        }

    def __repr__(self):
        return f"<EntryRecord {self.id} identity={self.identity_id} {self.access_method}>"
