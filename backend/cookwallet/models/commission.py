from __future__ import annotations

from ..extensions import db
from cookwallet.time_utils import to_utc_z


class CommissionChange(db.Model):
    """
    Append-only history of a tenant's commission rate.

    The current rate is the new_rate of the most recent row; tenants with no
    row pay the platform default. old_rate records what was in force when the
    change was made (the default included).

    IMMUTABLE: Never update or delete.
    """
    __tablename__ = "commission_changes"
    __table_args__ = (
        db.Index("ix_commission_changes_tenant_created", "tenant_id", "created_at"),
        db.CheckConstraint("new_rate >= 0 AND new_rate <= 50", name="ck_commission_changes_rate_range"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    old_rate = db.Column(db.Numeric(5, 2), nullable=False)
    new_rate = db.Column(db.Numeric(5, 2), nullable=False)

    changed_by = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("commission_changes", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "old_rate": float(self.old_rate),
            "new_rate": float(self.new_rate),
            "changed_by": self.changed_by,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }
