# Overview: Service-layer operations for cook withdrawals; submission, limits and transfer processing.

"""
Withdrawal Service

WHY: Cooks cash out their withdrawable balance to an MTN MoMo or Orange Money
number. The wallet is debited at submission so the same funds cannot be
requested twice; the transfer itself runs later (CLI batch or on demand).

RULES:
- Whole XAF, at least MIN_WITHDRAWAL_AMOUNT
- Cameroon mobile number: 9 digits starting with 6 (after stripping +237)
- Daily total (pending + processing + completed, midnight to midnight in
  WITHDRAWAL_TIMEZONE) may not exceed MAX_DAILY_WITHDRAWAL_AMOUNT

FAILURE:
- A failed or timed-out transfer marks the withdrawal failed and opens a
  PayoutTask. The debited funds stay committed to that task (it will pay them
  out), so the wallet is not re-credited.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import CookWallet, WithdrawalRequest
from ..validation import (
    AlreadyResolved,
    ConflictError,
    InsufficientFunds,
    InvalidAmount,
    NotFoundError,
    ValidationError,
    coerce_amount,
)
from cookwallet.time_utils import local_day_start_utc, utcnow
from . import wallet_ledger
from .audit_service import (
    EVENT_WITHDRAWAL_COMPLETED,
    EVENT_WITHDRAWAL_FAILED,
    EVENT_WITHDRAWAL_REQUESTED,
    emit,
)
from .concurrency import lock_for_update, run_with_retry
from .payment_gateway import get_gateway
from .payout_service import (
    WITHDRAWAL_STATUS_COMPLETED,
    WITHDRAWAL_STATUS_FAILED,
    WITHDRAWAL_STATUS_PENDING,
    WITHDRAWAL_STATUS_PROCESSING,
    on_transfer_failure,
)


# =============================================================================
# PROVIDERS (CONSTANTS)
# =============================================================================

PROVIDER_MTN_MOMO = "mtn_momo"
PROVIDER_ORANGE_MONEY = "orange_money"

VALID_PROVIDERS = [
    PROVIDER_MTN_MOMO,
    PROVIDER_ORANGE_MONEY,
]

ORANGE_PREFIXES_3 = ("655", "656", "657", "658", "659")

FAILED_TRANSFER_MESSAGE = "Transfer failed, escalated to support"

_PHONE_SEPARATORS = re.compile(r"[\s\-()]")
_PHONE_PATTERN = re.compile(r"^6\d{8}$")


@dataclass
class WithdrawalOutcome:
    withdrawal: WithdrawalRequest
    succeeded: bool
    message: str

    def to_dict(self) -> dict:
        return {
            "withdrawal": self.withdrawal.to_dict(),
            "succeeded": self.succeeded,
            "message": self.message,
        }


# =============================================================================
# PHONE NUMBERS
# =============================================================================

def normalize_phone(phone: Any) -> str:
    """Strip separators and the +237 / 237 country prefix."""
    normalized = _PHONE_SEPARATORS.sub("", str(phone or ""))
    if normalized.startswith("+237"):
        normalized = normalized[4:]
    elif normalized.startswith("237") and len(normalized) == 12:
        normalized = normalized[3:]
    return normalized


def is_valid_mobile_money_number(phone: Any) -> bool:
    return bool(_PHONE_PATTERN.match(normalize_phone(phone)))


def detect_provider(phone: Any) -> str:
    """Orange: 69x and 655-659. Everything else defaults to MTN."""
    normalized = normalize_phone(phone)
    if normalized.startswith("69") or normalized[:3] in ORANGE_PREFIXES_3:
        return PROVIDER_ORANGE_MONEY
    return PROVIDER_MTN_MOMO


# =============================================================================
# SUBMISSION
# =============================================================================

def today_withdrawal_total(wallet_id: int, now: datetime) -> int:
    day_start = local_day_start_utc(now, current_app.config["WITHDRAWAL_TIMEZONE"])
    total = (
        db.session.query(func.coalesce(func.sum(WithdrawalRequest.amount), 0))
        .filter(
            WithdrawalRequest.cook_wallet_id == wallet_id,
            WithdrawalRequest.status.in_([
                WITHDRAWAL_STATUS_PENDING,
                WITHDRAWAL_STATUS_PROCESSING,
                WITHDRAWAL_STATUS_COMPLETED,
            ]),
            WithdrawalRequest.requested_at >= day_start,
        )
        .scalar()
    )
    return int(total or 0)


def submit_withdrawal(
    tenant_id: int,
    cook_id: int,
    amount: Any,
    mobile_money_number: Any,
    provider: str | None = None,
    now: datetime | None = None,
) -> WithdrawalRequest:
    """
    Debit the cook's withdrawable balance and queue a transfer.

    Raises:
        InvalidAmount: not a whole positive number, or below the minimum
        ValidationError: invalid phone number or provider
        InsufficientFunds: amount exceeds withdrawable balance
        ConflictError: daily limit would be exceeded
    """
    amount = coerce_amount(amount)
    min_amount = int(current_app.config["MIN_WITHDRAWAL_AMOUNT"])
    if amount < min_amount:
        raise InvalidAmount(f"Minimum withdrawal amount is {min_amount:,} XAF")

    phone = normalize_phone(mobile_money_number)
    if not _PHONE_PATTERN.match(phone):
        raise ValidationError("Mobile money number must be 9 digits starting with 6")

    provider = provider or detect_provider(phone)
    if provider not in VALID_PROVIDERS:
        raise ValidationError(f"Invalid provider: {provider}. Must be one of {VALID_PROVIDERS}")

    max_daily = int(current_app.config["MAX_DAILY_WITHDRAWAL_AMOUNT"])
    now = now or utcnow()

    def _op():
        wallet = wallet_ledger.get_or_create_cook_wallet(tenant_id, cook_id)
        wallet = (
            lock_for_update(db.session.query(CookWallet).filter_by(id=wallet.id))
            .populate_existing()
            .first()
        )

        if amount > wallet.withdrawable_balance:
            raise InsufficientFunds(
                f"Insufficient withdrawable balance. Available: {wallet.withdrawable_balance:,} XAF"
            )

        if today_withdrawal_total(wallet.id, now) + amount > max_daily:
            raise ConflictError(f"Daily withdrawal limit reached ({max_daily:,} XAF). Try again tomorrow.")

        withdrawal = WithdrawalRequest(
            cook_wallet_id=wallet.id,
            tenant_id=tenant_id,
            cook_id=cook_id,
            amount=amount,
            currency=wallet.currency or "XAF",
            mobile_money_number=phone,
            mobile_money_provider=provider,
            status=WITHDRAWAL_STATUS_PENDING,
            requested_at=now,
        )
        db.session.add(withdrawal)
        db.session.flush()
        withdrawal.idempotency_key = f"WD-{withdrawal.id}"

        wallet_ledger.debit(
            wallet,
            amount,
            wallet_ledger.TXN_WITHDRAWAL,
            description=f"Withdrawal to {provider} {phone}",
            details={
                "withdrawal_request_id": withdrawal.id,
                "mobile_money_number": phone,
                "mobile_money_provider": provider,
            },
            now=now,
        )

        emit(
            EVENT_WITHDRAWAL_REQUESTED,
            entity_type="withdrawal_request",
            entity_id=withdrawal.id,
            actor_id=cook_id,
            tenant_id=tenant_id,
            occurred_at=now,
            amount=amount,
            mobile_money_provider=provider,
        )
        db.session.commit()
        return withdrawal

    return run_with_retry(_op)


# =============================================================================
# PROCESSING
# =============================================================================

def _claim(withdrawal_id: int, now: datetime) -> WithdrawalRequest:
    def _op():
        withdrawal = (
            lock_for_update(db.session.query(WithdrawalRequest).filter_by(id=withdrawal_id))
            .populate_existing()
            .first()
        )
        if not withdrawal:
            raise NotFoundError(f"Withdrawal {withdrawal_id} not found")
        if withdrawal.status != WITHDRAWAL_STATUS_PENDING:
            raise AlreadyResolved(f"Withdrawal {withdrawal_id} is already {withdrawal.status}")

        withdrawal.status = WITHDRAWAL_STATUS_PROCESSING
        withdrawal.processed_at = now
        if not withdrawal.idempotency_key:
            withdrawal.idempotency_key = f"WD-{withdrawal.id}"
        db.session.commit()
        return withdrawal

    return run_with_retry(_op)


def process_withdrawal(withdrawal_id: int, now: datetime | None = None) -> WithdrawalOutcome:
    """
    Send a pending withdrawal to the payment gateway.

    The request is claimed (pending -> processing) and committed before the
    provider call, so a concurrent processor cannot send it twice.

    Raises:
        NotFoundError: unknown withdrawal
        AlreadyResolved: withdrawal is not pending
    """
    now = now or utcnow()
    withdrawal = _claim(withdrawal_id, now)

    result = get_gateway().initiate_transfer(
        amount=withdrawal.amount,
        currency=withdrawal.currency,
        destination_account=withdrawal.mobile_money_number,
        idempotency_key=withdrawal.idempotency_key,
        provider=withdrawal.mobile_money_provider,
        narration=f"Payout - {withdrawal.amount:,} {withdrawal.currency}",
    )

    def _finish():
        current = (
            lock_for_update(db.session.query(WithdrawalRequest).filter_by(id=withdrawal_id))
            .populate_existing()
            .first()
        )
        if current.status != WITHDRAWAL_STATUS_PROCESSING:
            # A provider webhook settled it while the call was in flight
            db.session.rollback()
            return WithdrawalOutcome(current, current.status == WITHDRAWAL_STATUS_COMPLETED, current.status)

        current.provider_response = result.raw_response or None
        if result.succeeded:
            current.status = WITHDRAWAL_STATUS_COMPLETED
            current.completed_at = now
            current.provider_reference = result.provider_reference
            emit(
                EVENT_WITHDRAWAL_COMPLETED,
                entity_type="withdrawal_request",
                entity_id=current.id,
                tenant_id=current.tenant_id,
                occurred_at=now,
                amount=current.amount,
                provider_reference=result.provider_reference,
            )
            db.session.commit()
            return WithdrawalOutcome(current, True, "Transfer completed successfully")

        current.status = WITHDRAWAL_STATUS_FAILED
        current.failed_at = now
        current.failure_reason = (result.error or "Transfer failed")[:255]
        task = on_transfer_failure(current, result, now)
        emit(
            EVENT_WITHDRAWAL_FAILED,
            entity_type="withdrawal_request",
            entity_id=current.id,
            tenant_id=current.tenant_id,
            occurred_at=now,
            amount=current.amount,
            error=result.error,
            is_timeout=result.is_timeout,
            payout_task_id=task.id,
        )
        db.session.commit()
        return WithdrawalOutcome(current, False, FAILED_TRANSFER_MESSAGE)

    return run_with_retry(_finish)


def process_pending_withdrawals(now: datetime | None = None) -> list[WithdrawalOutcome]:
    """Process every pending withdrawal, oldest first, isolating failures."""
    now = now or utcnow()
    pending_ids = [
        row.id
        for row in db.session.query(WithdrawalRequest.id)
        .filter(WithdrawalRequest.status == WITHDRAWAL_STATUS_PENDING)
        .order_by(WithdrawalRequest.requested_at.asc(), WithdrawalRequest.id.asc())
        .all()
    ]

    outcomes = []
    for withdrawal_id in pending_ids:
        try:
            outcomes.append(process_withdrawal(withdrawal_id, now))
        except ConflictError as exc:
            current_app.logger.info("Skipping withdrawal %s: %s", withdrawal_id, exc)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Failed to process withdrawal %s", withdrawal_id)

    if pending_ids:
        current_app.logger.info(
            "Withdrawal batch: %s pending, %s completed",
            len(pending_ids), sum(1 for o in outcomes if o.succeeded),
        )
    return outcomes


# =============================================================================
# QUERIES
# =============================================================================

def list_withdrawals(wallet: CookWallet, status: Optional[str] = None) -> list[WithdrawalRequest]:
    query = db.session.query(WithdrawalRequest).filter(WithdrawalRequest.cook_wallet_id == wallet.id)
    if status:
        query = query.filter(WithdrawalRequest.status == status)
    return query.order_by(WithdrawalRequest.requested_at.desc(), WithdrawalRequest.id.desc()).all()
