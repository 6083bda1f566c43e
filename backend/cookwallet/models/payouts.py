from __future__ import annotations

from ..extensions import db
from cookwallet.time_utils import to_utc_z


class WithdrawalRequest(db.Model):
    """
    Cook-initiated cash-out of withdrawable balance to mobile money.

    LIFECYCLE: pending -> processing -> completed | failed

    The wallet is debited when the request is submitted. A failed transfer
    keeps the funds committed to the payout and opens a PayoutTask instead of
    returning them to the wallet.

    idempotency_key is stable for the life of the request so the provider can
    deduplicate a transfer that timed out locally but succeeded upstream.
    """
    __tablename__ = "withdrawal_requests"
    __table_args__ = (
        db.Index("ix_withdrawals_cook_requested", "tenant_id", "cook_id", "requested_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cook_wallet_id = db.Column(db.Integer, db.ForeignKey("cook_wallets.id"), nullable=False, index=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    cook_id = db.Column(db.Integer, nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="XAF")
    mobile_money_number = db.Column(db.String(32), nullable=False)
    mobile_money_provider = db.Column(db.String(32), nullable=False)  # mtn_momo, orange_money

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    idempotency_key = db.Column(db.String(64), nullable=True, unique=True)
    provider_reference = db.Column(db.String(128), nullable=True)
    provider_response = db.Column(db.JSON, nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    cook_wallet = db.relationship("CookWallet", backref=db.backref("withdrawals", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cook_wallet_id": self.cook_wallet_id,
            "tenant_id": self.tenant_id,
            "cook_id": self.cook_id,
            "amount": self.amount,
            "currency": self.currency,
            "mobile_money_number": self.mobile_money_number,
            "mobile_money_provider": self.mobile_money_provider,
            "status": self.status,
            "idempotency_key": self.idempotency_key,
            "provider_reference": self.provider_reference,
            "failure_reason": self.failure_reason,
            "requested_at": to_utc_z(self.requested_at),
            "processed_at": to_utc_z(self.processed_at) if self.processed_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "failed_at": to_utc_z(self.failed_at) if self.failed_at else None,
            "version_id": self.version_id,
        }


class PayoutTask(db.Model):
    """
    Failed automatic transfer awaiting retry or manual resolution.

    LIFECYCLE:
    - pending: retry_count 0..MAX_RETRIES; automatic retry allowed while
      retry_count < MAX_RETRIES
    - completed: a retry (or late provider confirmation) succeeded (terminal)
    - manually_completed: admin paid out of band and recorded proof (terminal)

    provider_response keeps the raw provider payload for admin diagnosis.
    """
    __tablename__ = "payout_tasks"
    __table_args__ = (
        db.UniqueConstraint("withdrawal_request_id", name="uq_payout_tasks_withdrawal"),
        db.Index("ix_payout_tasks_status_requested", "status", "requested_at"),
        db.CheckConstraint("retry_count >= 0 AND retry_count <= 3", name="ck_payout_tasks_retry_bound"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    withdrawal_request_id = db.Column(db.Integer, db.ForeignKey("withdrawal_requests.id"), nullable=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    cook_id = db.Column(db.Integer, nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="XAF")
    mobile_money_number = db.Column(db.String(32), nullable=False)
    payment_method = db.Column(db.String(32), nullable=False)  # mtn_mobile_money, orange_money

    status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    last_retry_at = db.Column(db.DateTime(timezone=True), nullable=True)
    # Set while a claimed retry is waiting on the provider
    attempt_started_at = db.Column(db.DateTime(timezone=True), nullable=True)

    failure_reason = db.Column(db.String(255), nullable=True)
    idempotency_key = db.Column(db.String(64), nullable=False, index=True)
    provider_reference = db.Column(db.String(128), nullable=True)
    provider_response = db.Column(db.JSON, nullable=True)

    # Manual resolution
    reference_number = db.Column(db.String(128), nullable=True)
    resolution_notes = db.Column(db.Text, nullable=True)
    completed_by = db.Column(db.Integer, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    withdrawal_request = db.relationship("WithdrawalRequest", backref=db.backref("payout_task", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "withdrawal_request_id": self.withdrawal_request_id,
            "tenant_id": self.tenant_id,
            "cook_id": self.cook_id,
            "amount": self.amount,
            "currency": self.currency,
            "mobile_money_number": self.mobile_money_number,
            "payment_method": self.payment_method,
            "status": self.status,
            "retry_count": self.retry_count,
            "last_retry_at": to_utc_z(self.last_retry_at) if self.last_retry_at else None,
            "attempt_in_progress": self.attempt_started_at is not None,
            "failure_reason": self.failure_reason,
            "idempotency_key": self.idempotency_key,
            "provider_reference": self.provider_reference,
            "provider_response": self.provider_response,
            "reference_number": self.reference_number,
            "resolution_notes": self.resolution_notes,
            "completed_by": self.completed_by,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "requested_at": to_utc_z(self.requested_at) if self.requested_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
