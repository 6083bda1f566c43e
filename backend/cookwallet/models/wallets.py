from __future__ import annotations

from ..extensions import db
from cookwallet.time_utils import to_utc_z


class CookWallet(db.Model):
    """
    Cook earnings wallet, one per (tenant, cook).

    BALANCES (whole XAF):
    - withdrawable_balance: cleared funds the cook may cash out
    - unwithdrawable_balance: funds still inside a hold period
    - total_balance: always withdrawable + unwithdrawable

    Mutated only through services.wallet_ledger. The version_id column makes
    concurrent stale writes fail with StaleDataError instead of silently
    overwriting a newer balance.
    """
    __tablename__ = "cook_wallets"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "cook_id", name="uq_cook_wallets_tenant_cook"),
        db.CheckConstraint("withdrawable_balance >= 0", name="ck_cook_wallets_withdrawable_nonneg"),
        db.CheckConstraint("unwithdrawable_balance >= 0", name="ck_cook_wallets_unwithdrawable_nonneg"),
        db.CheckConstraint(
            "total_balance = withdrawable_balance + unwithdrawable_balance",
            name="ck_cook_wallets_total",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    cook_id = db.Column(db.Integer, nullable=False, index=True)

    total_balance = db.Column(db.Integer, nullable=False, default=0)
    withdrawable_balance = db.Column(db.Integer, nullable=False, default=0)
    unwithdrawable_balance = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="XAF")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    tenant = db.relationship("Tenant", backref=db.backref("cook_wallets", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<CookWallet id={self.id} tenant={self.tenant_id} cook={self.cook_id} total={self.total_balance}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": "cook",
            "tenant_id": self.tenant_id,
            "cook_id": self.cook_id,
            "total_balance": self.total_balance,
            "withdrawable_balance": self.withdrawable_balance,
            "unwithdrawable_balance": self.unwithdrawable_balance,
            "currency": self.currency,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class ClientWallet(db.Model):
    """
    Client wallet holding refund credits, one per client.

    Refunds land here as withdrawable credit. Spending wallet credit at
    checkout belongs to the checkout subsystem.
    """
    __tablename__ = "client_wallets"
    __table_args__ = (
        db.UniqueConstraint("client_id", name="uq_client_wallets_client"),
        db.CheckConstraint("withdrawable_balance >= 0", name="ck_client_wallets_withdrawable_nonneg"),
        db.CheckConstraint("unwithdrawable_balance >= 0", name="ck_client_wallets_unwithdrawable_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, nullable=False, index=True)

    total_balance = db.Column(db.Integer, nullable=False, default=0)
    withdrawable_balance = db.Column(db.Integer, nullable=False, default=0)
    unwithdrawable_balance = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="XAF")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": "client",
            "client_id": self.client_id,
            "total_balance": self.total_balance,
            "withdrawable_balance": self.withdrawable_balance,
            "unwithdrawable_balance": self.unwithdrawable_balance,
            "currency": self.currency,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class WalletTransaction(db.Model):
    """
    Append-only ledger of wallet balance events.

    Each row belongs to exactly one wallet (cook or client).

    AMOUNTS:
    - amount: signed effect on total_balance (positive credit, negative debit).
      Summing amount over a wallet's rows reproduces its total_balance.
    - gross_amount: unsigned figure the event is about. Equal to |amount| for
      credits and debits; carries the promoted or commission figure on
      zero-effect rows (became_withdrawable, commission).

    IMMUTABLE: Records are never updated or deleted. Corrections are new
    offsetting rows.
    """
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        db.Index("ix_wallet_txns_cook_wallet_created", "cook_wallet_id", "created_at"),
        db.Index("ix_wallet_txns_client_wallet_created", "client_wallet_id", "created_at"),
        db.CheckConstraint(
            "(cook_wallet_id IS NULL) <> (client_wallet_id IS NULL)",
            name="ck_wallet_txns_single_owner",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cook_wallet_id = db.Column(db.Integer, db.ForeignKey("cook_wallets.id"), nullable=True, index=True)
    client_wallet_id = db.Column(db.Integer, db.ForeignKey("client_wallets.id"), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    type = db.Column(db.String(32), nullable=False, index=True)
    amount = db.Column(db.Integer, nullable=False)
    gross_amount = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="XAF")

    # Snapshots of total_balance around this event
    balance_before = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)
    withdrawable_after = db.Column(db.Integer, nullable=False)

    is_withdrawable = db.Column(db.Boolean, nullable=False, default=False)
    withdrawable_at = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="completed")

    description = db.Column(db.String(255), nullable=True)
    details = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    cook_wallet = db.relationship("CookWallet", backref=db.backref("transactions", lazy=True))
    client_wallet = db.relationship("ClientWallet", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cook_wallet_id": self.cook_wallet_id,
            "client_wallet_id": self.client_wallet_id,
            "order_id": self.order_id,
            "type": self.type,
            "amount": self.amount,
            "gross_amount": self.gross_amount,
            "currency": self.currency,
            "balance_before": self.balance_before,
            "balance_after": self.balance_after,
            "withdrawable_after": self.withdrawable_after,
            "is_withdrawable": self.is_withdrawable,
            "withdrawable_at": to_utc_z(self.withdrawable_at) if self.withdrawable_at else None,
            "status": self.status,
            "description": self.description,
            "details": self.details,
            "created_at": to_utc_z(self.created_at),
        }
