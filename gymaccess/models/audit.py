"""
Gym Access Platform
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for sensitive actions
      (courtesy access, subscription freeze/unfreeze, config changes).
"""

import json
from datetime import datetime, timezone

from gymaccess.models import db
from gymaccess.utils.helpers import utc_isoformat


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = {
    "checkin.courtesy_granted",
    "subscription.frozen",
    "subscription.unfrozen",
    "subscription.sync_expired",
    "tenant.config_updated",
    "tenant.suspended",
    "tenant.reactivated",
}


class AuditLog(db.Model):
    """One row per sensitive action; never updated."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_tenant_ts", "tenant_id", "timestamp"),
        db.Index("idx_audit_action", "action"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    action = db.Column(db.String(60), nullable=False)
    actor = db.Column(db.String(150), nullable=False, default="system",
                      comment="Identity id of the acting staff member, or 'system'")
    entity_type = db.Column(db.String(30), nullable=False, default="")
    entity_id = db.Column(db.String(36), nullable=True)
    details_json = db.Column(db.Text, default="{}")
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        try:
            details = json.loads(self.details_json or "{}")
        except (TypeError, ValueError):
            details = {}
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "action": self.action,
            "actor": self.actor,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "details": details,
            "timestamp": utc_isoformat(self.timestamp),
        }

    def __repr__(self):
        return f"<AuditLog {self.action} by {self.actor}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    tenant_id: int | None,
    entity_type: str,
    entity_id,
    action: str,
    actor: str = "system",
    details: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    log = AuditLog(
        tenant_id=tenant_id,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        action=action,
        actor=str(actor),
        details_json=json.dumps(details or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
