from __future__ import annotations

from ..extensions import db
from cookwallet.time_utils import to_utc_z


class AuditEvent(db.Model):
    """
    Append-only audit trail for state-changing wallet operations.

    Written through services.audit_service (the default DatabaseAuditSink).
    actor_id NULL means the platform itself (scheduled sweeps, webhooks).

    IMMUTABLE: Never update or delete.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_entity", "entity_type", "entity_id"),
        db.Index("ix_audit_events_occurred", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)

    actor_id = db.Column(db.Integer, nullable=True, index=True)
    tenant_id = db.Column(db.Integer, nullable=True, index=True)

    payload = db.Column(db.JSON, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "tenant_id": self.tenant_id,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }
