# Overview: Service-layer operations for order money flows; commission split on completion and refunds.

"""
Order Settlement Service

WHY: Order completion and refunds are the two places where order money
enters or leaves cook wallets. Both must land in the ledger atomically with
their clearance / deduction bookkeeping.

COMPLETION:
- commission = floor(subtotal * rate / 100) at the tenant's current rate
- cook credit = subtotal - commission + delivery_fee, held by a clearance
- a zero-effect commission row documents the withheld share

REFUND (client always receives the refund as withdrawable wallet credit):
- clearance still open: cancel it, reverse the held credit, re-credit any
  unrefunded remainder to the cook as withdrawable
- clearance already cleared: charge back what the cook's withdrawable balance
  covers, record a PendingDeduction for the rest
- refunds accumulate: the sum of client refund credits for an order never
  exceeds subtotal + delivery fee, and the cook never repays more than the
  clearance amount across all refunds
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import CookWallet, Order, OrderClearance, PendingDeduction, WalletTransaction
from ..validation import (
    ConflictError,
    InvalidTransition,
    NotFoundError,
    ValidationError,
    coerce_amount,
)
from cookwallet.time_utils import utcnow
from . import clearance_service, commission_service, deduction_service, wallet_ledger
from .audit_service import EVENT_ORDER_REFUNDED, EVENT_ORDER_SETTLED, emit
from .concurrency import lock_for_update, run_with_retry


ORDER_STATUS_COMPLETED = "completed"


@dataclass
class RefundResult:
    order_id: int
    refunded: int
    client_transaction: WalletTransaction
    reversed_held: int = 0
    recredited: int = 0
    charged_back: int = 0
    deduction: Optional[PendingDeduction] = None

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "refunded": self.refunded,
            "client_transaction": self.client_transaction.to_dict(),
            "reversed_held": self.reversed_held,
            "recredited": self.recredited,
            "charged_back": self.charged_back,
            "deduction": self.deduction.to_dict() if self.deduction else None,
        }


def _get_order_locked(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).populate_existing().first()
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def complete_order(order_id: int, now: datetime | None = None) -> OrderClearance:
    """
    Split a completed order's subtotal and hold the cook's share.

    Raises:
        NotFoundError: unknown order
        InvalidTransition: order status is not completed
        ConflictError: order was already settled
    """
    now = now or utcnow()

    def _op():
        order = _get_order_locked(order_id)
        if order.status != ORDER_STATUS_COMPLETED:
            raise InvalidTransition(f"Order {order_id} is {order.status}, not completed")

        rate = commission_service.current_rate(order.tenant_id)
        commission = commission_service.calculate_commission(order.subtotal, rate)
        cook_credit = commission_service.calculate_cook_credit(order.subtotal, order.delivery_fee or 0, rate)

        order.commission_rate = rate
        order.commission_amount = commission
        if order.completed_at is None:
            order.completed_at = now

        clearance = clearance_service.open_clearance(order, cook_credit, now)

        if commission > 0:
            wallet = db.session.get(CookWallet, clearance.cook_wallet_id)
            wallet_ledger.record_memo(
                wallet,
                commission,
                wallet_ledger.TXN_COMMISSION,
                order_id=order.id,
                description=f"Platform commission ({rate}%)",
                details={"rate": str(rate), "subtotal": order.subtotal},
                now=now,
            )

        emit(
            EVENT_ORDER_SETTLED,
            entity_type="order",
            entity_id=order.id,
            tenant_id=order.tenant_id,
            occurred_at=now,
            subtotal=order.subtotal,
            delivery_fee=order.delivery_fee or 0,
            commission_rate=str(rate),
            commission=commission,
            cook_credit=cook_credit,
        )
        db.session.commit()
        return clearance

    return run_with_retry(_op)


def _already_reversed(order_id: int, wallet_id: int) -> bool:
    return (
        db.session.query(WalletTransaction.id)
        .filter(
            WalletTransaction.cook_wallet_id == wallet_id,
            WalletTransaction.order_id == order_id,
            WalletTransaction.type == wallet_ledger.TXN_REFUND_REVERSAL,
        )
        .first()
        is not None
    )


def _refunded_total(order_id: int) -> int:
    """Client credits already issued for this order."""
    total = (
        db.session.query(func.coalesce(func.sum(WalletTransaction.amount), 0))
        .filter(
            WalletTransaction.client_wallet_id.isnot(None),
            WalletTransaction.order_id == order_id,
            WalletTransaction.type == wallet_ledger.TXN_REFUND,
        )
        .scalar()
    )
    return int(total or 0)


def _recovered_after_clearing(order_id: int, wallet_id: int) -> int:
    """Cleared earnings already clawed back for this order, charged back or owed."""
    charged_back = (
        db.session.query(func.coalesce(func.sum(WalletTransaction.amount), 0))
        .filter(
            WalletTransaction.cook_wallet_id == wallet_id,
            WalletTransaction.order_id == order_id,
            WalletTransaction.type == wallet_ledger.TXN_REFUND_CHARGEBACK,
        )
        .scalar()
    )
    owed = (
        db.session.query(func.coalesce(func.sum(PendingDeduction.original_amount), 0))
        .filter(
            PendingDeduction.cook_wallet_id == wallet_id,
            PendingDeduction.order_id == order_id,
        )
        .scalar()
    )
    # Chargebacks are stored as negative movements
    return -int(charged_back or 0) + int(owed or 0)


def refund_order(
    order_id: int,
    amount: Any,
    source: str,
    reason: str,
    now: datetime | None = None,
    actor_id: int | None = None,
) -> RefundResult:
    """
    Refund a client and recover the money from the cook.

    Raises:
        InvalidAmount: amount not a positive whole number
        ValidationError: unknown source, or amount above the order total
        NotFoundError: unknown order
        InvalidTransition: order was never settled
        ConflictError: held earnings for the order were already reversed, or
            earlier refunds plus this one would exceed the order total
    """
    amount = coerce_amount(amount)
    if source not in deduction_service.VALID_SOURCES:
        raise ValidationError(f"Invalid refund source: {source}. Must be one of {deduction_service.VALID_SOURCES}")
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")
    now = now or utcnow()

    def _op():
        order = _get_order_locked(order_id)
        order_total = (order.subtotal or 0) + (order.delivery_fee or 0)
        if amount > order_total:
            raise ValidationError(f"Refund {amount} exceeds order total {order_total}")
        if order.client_id is None:
            raise ValidationError(f"Order {order_id} has no client to refund")

        clearance = (
            lock_for_update(db.session.query(OrderClearance).filter_by(order_id=order_id))
            .populate_existing()
            .first()
        )
        if not clearance:
            raise InvalidTransition(f"Order {order_id} has no settled earnings to refund")

        already_refunded = _refunded_total(order.id)
        if already_refunded + amount > order_total:
            raise ConflictError(
                f"Refund {amount} would exceed order total {order_total} "
                f"({already_refunded} already refunded)"
            )

        wallet = db.session.get(CookWallet, clearance.cook_wallet_id)

        client_wallet = wallet_ledger.get_or_create_client_wallet(order.client_id)
        client_txn = wallet_ledger.credit(
            client_wallet,
            amount,
            wallet_ledger.TXN_REFUND,
            is_withdrawable=True,
            order_id=order.id,
            description=f"Refund for order {order.order_number or order.id}",
            details={"source": source, "reason": reason},
            now=now,
        )
        result = RefundResult(order_id=order.id, refunded=amount, client_transaction=client_txn)

        if not clearance.is_cleared:
            if clearance.is_cancelled and _already_reversed(order.id, wallet.id):
                raise ConflictError(f"Earnings for order {order_id} were already reversed")
            if not clearance.is_cancelled:
                clearance_service.cancel_locked(clearance, now, actor_id)

            wallet_ledger.debit_held(
                wallet,
                clearance.amount,
                wallet_ledger.TXN_REFUND_REVERSAL,
                order_id=order.id,
                description="Held earnings reversed by refund",
                details={"clearance_id": clearance.id, "refund": amount},
                now=now,
            )
            result.reversed_held = clearance.amount

            remainder = clearance.amount - amount
            if remainder > 0:
                wallet_ledger.credit(
                    wallet,
                    remainder,
                    wallet_ledger.TXN_PAYMENT_CREDIT,
                    is_withdrawable=True,
                    withdrawable_at=now,
                    order_id=order.id,
                    description="Unrefunded portion of order earnings",
                    details={"clearance_id": clearance.id},
                    now=now,
                )
                result.recredited = remainder
        else:
            recoverable = max(0, clearance.amount - _recovered_after_clearing(order.id, wallet.id))
            chargeback = min(amount, recoverable)
            wallet = (
                lock_for_update(db.session.query(CookWallet).filter_by(id=wallet.id))
                .populate_existing()
                .first()
            )
            covered = min(chargeback, wallet.withdrawable_balance)
            if covered > 0:
                wallet_ledger.debit(
                    wallet,
                    covered,
                    wallet_ledger.TXN_REFUND_CHARGEBACK,
                    order_id=order.id,
                    description="Refund charged back from earnings",
                    details={"source": source},
                    now=now,
                )
                result.charged_back = covered

            shortfall = chargeback - covered
            if shortfall > 0:
                result.deduction = deduction_service.record_deduction(
                    wallet,
                    shortfall,
                    reason,
                    source,
                    order_id=order.id,
                    details={"refund": amount, "charged_back": covered},
                    now=now,
                )

        emit(
            EVENT_ORDER_REFUNDED,
            entity_type="order",
            entity_id=order.id,
            actor_id=actor_id,
            tenant_id=order.tenant_id,
            occurred_at=now,
            amount=amount,
            source=source,
            reversed_held=result.reversed_held,
            recredited=result.recredited,
            charged_back=result.charged_back,
            deduction_id=result.deduction.id if result.deduction else None,
        )
        db.session.commit()
        return result

    result = run_with_retry(_op)
    current_app.logger.info(
        "Order %s refunded %s (reversed %s, charged back %s, deduction %s)",
        order_id, amount, result.reversed_held, result.charged_back,
        result.deduction.id if result.deduction else None,
    )
    return result
