from __future__ import annotations

from ..extensions import db
from cookwallet.time_utils import to_utc_z


class Tenant(db.Model):
    """
    Tenant storefront operated by a cook.

    Tenant CRUD and onboarding live outside this service; this table carries
    only what the wallet engine reads (hold-period override, active flag).
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(64), nullable=True, unique=True, index=True)

    # NULL -> platform default (Config.WITHDRAWABLE_HOLD_HOURS)
    withdrawable_hold_hours = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "withdrawable_hold_hours": self.withdrawable_hold_hours,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Order(db.Model):
    """
    Meal order, as seen by the settlement engine.

    Order placement and status transitions are owned by the ordering
    subsystem. The engine reads amounts and completion time, and stamps the
    commission applied at completion.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "order_number", name="uq_orders_tenant_number"),
        db.Index("ix_orders_tenant_status", "tenant_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    cook_id = db.Column(db.Integer, nullable=False, index=True)
    client_id = db.Column(db.Integer, nullable=True, index=True)

    order_number = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(32), nullable=False, default="pending_payment", index=True)

    # Whole XAF
    subtotal = db.Column(db.Integer, nullable=False, default=0)
    delivery_fee = db.Column(db.Integer, nullable=False, default=0)

    # Snapshot of commission applied at completion
    commission_rate = db.Column(db.Numeric(5, 2), nullable=True)
    commission_amount = db.Column(db.Integer, nullable=True)

    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("orders", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "cook_id": self.cook_id,
            "client_id": self.client_id,
            "order_number": self.order_number,
            "status": self.status,
            "subtotal": self.subtotal,
            "delivery_fee": self.delivery_fee,
            "commission_rate": float(self.commission_rate) if self.commission_rate is not None else None,
            "commission_amount": self.commission_amount,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "created_at": to_utc_z(self.created_at),
        }
