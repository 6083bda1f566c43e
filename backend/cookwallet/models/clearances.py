from __future__ import annotations

from ..extensions import db
from cookwallet.time_utils import to_utc_z


class OrderClearance(db.Model):
    """
    Hold on a completed order's earnings before they become withdrawable.

    LIFECYCLE:
    - held: withdrawable_at in the future, no flag set
    - eligible: withdrawable_at <= now, no flag set (implicit, time-based)
    - paused: complaint escalated; remaining hold captured in
      remaining_seconds_at_pause
    - cleared: funds promoted to withdrawable (terminal)
    - cancelled: refund issued, funds never become withdrawable (terminal)

    At most one of is_cleared / is_paused / is_cancelled is true.
    Rows are never deleted (audit).
    """
    __tablename__ = "order_clearances"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_order_clearances_order"),
        db.Index("ix_order_clearances_sweep", "is_cleared", "is_paused", "is_cancelled", "withdrawable_at"),
        db.CheckConstraint(
            "(CASE WHEN is_cleared THEN 1 ELSE 0 END)"
            " + (CASE WHEN is_paused THEN 1 ELSE 0 END)"
            " + (CASE WHEN is_cancelled THEN 1 ELSE 0 END) <= 1",
            name="ck_order_clearances_exclusive_flags",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    cook_id = db.Column(db.Integer, nullable=False, index=True)
    cook_wallet_id = db.Column(db.Integer, db.ForeignKey("cook_wallets.id"), nullable=False, index=True)

    # Net earnings held (after commission), whole XAF
    amount = db.Column(db.Integer, nullable=False)
    hold_hours = db.Column(db.Integer, nullable=False)

    completed_at = db.Column(db.DateTime(timezone=True), nullable=False)
    withdrawable_at = db.Column(db.DateTime(timezone=True), nullable=False)

    paused_at = db.Column(db.DateTime(timezone=True), nullable=True)
    remaining_seconds_at_pause = db.Column(db.Integer, nullable=True)

    cleared_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Portion of amount consumed by pending deductions when cleared
    deducted_amount = db.Column(db.Integer, nullable=False, default=0)

    is_cleared = db.Column(db.Boolean, nullable=False, default=False)
    is_paused = db.Column(db.Boolean, nullable=False, default=False)
    is_cancelled = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("clearance", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "tenant_id": self.tenant_id,
            "cook_id": self.cook_id,
            "cook_wallet_id": self.cook_wallet_id,
            "amount": self.amount,
            "hold_hours": self.hold_hours,
            "completed_at": to_utc_z(self.completed_at),
            "withdrawable_at": to_utc_z(self.withdrawable_at),
            "paused_at": to_utc_z(self.paused_at) if self.paused_at else None,
            "remaining_seconds_at_pause": self.remaining_seconds_at_pause,
            "cleared_at": to_utc_z(self.cleared_at) if self.cleared_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "deducted_amount": self.deducted_amount,
            "is_cleared": self.is_cleared,
            "is_paused": self.is_paused,
            "is_cancelled": self.is_cancelled,
            "created_at": to_utc_z(self.created_at),
        }


class PendingDeduction(db.Model):
    """
    Debt against a cook wallet, created when a refund is charged back to a
    cook whose withdrawable balance cannot cover it.

    remaining_amount only ever decreases; settled_at is set exactly when it
    reaches zero. Settlement happens oldest-first against future clearances.
    """
    __tablename__ = "pending_deductions"
    __table_args__ = (
        db.Index("ix_pending_deductions_wallet_open", "cook_wallet_id", "settled_at", "created_at"),
        db.CheckConstraint("remaining_amount >= 0", name="ck_pending_deductions_remaining_nonneg"),
        db.CheckConstraint("remaining_amount <= original_amount", name="ck_pending_deductions_remaining_le_original"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cook_wallet_id = db.Column(db.Integer, db.ForeignKey("cook_wallets.id"), nullable=False, index=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    cook_id = db.Column(db.Integer, nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    original_amount = db.Column(db.Integer, nullable=False)
    remaining_amount = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=False)
    source = db.Column(db.String(32), nullable=False, index=True)  # complaint_refund, cancellation_refund
    details = db.Column(db.JSON, nullable=True)

    settled_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    cook_wallet = db.relationship("CookWallet", backref=db.backref("pending_deductions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cook_wallet_id": self.cook_wallet_id,
            "tenant_id": self.tenant_id,
            "cook_id": self.cook_id,
            "order_id": self.order_id,
            "original_amount": self.original_amount,
            "remaining_amount": self.remaining_amount,
            "settled_amount": self.original_amount - self.remaining_amount,
            "reason": self.reason,
            "source": self.source,
            "details": self.details,
            "settled_at": to_utc_z(self.settled_at) if self.settled_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by": self.cancelled_by,
            "created_at": to_utc_z(self.created_at),
        }


class DeductionSettlement(db.Model):
    """
    Append-only record of one credit event applied to a pending deduction.

    A deduction is usually paid down across several clearances; these rows
    make each step visible to the cook.
    """
    __tablename__ = "deduction_settlements"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    deduction_id = db.Column(db.Integer, db.ForeignKey("pending_deductions.id"), nullable=False, index=True)
    wallet_transaction_id = db.Column(db.Integer, db.ForeignKey("wallet_transactions.id"), nullable=True)
    source_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    amount_applied = db.Column(db.Integer, nullable=False)
    remaining_after = db.Column(db.Integer, nullable=False)

    settled_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    deduction = db.relationship("PendingDeduction", backref=db.backref("settlements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deduction_id": self.deduction_id,
            "wallet_transaction_id": self.wallet_transaction_id,
            "source_order_id": self.source_order_id,
            "amount_applied": self.amount_applied,
            "remaining_after": self.remaining_after,
            "settled_at": to_utc_z(self.settled_at),
        }
