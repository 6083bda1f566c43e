# Overview: Service-layer operations for order clearances; hold, sweep, pause, resume and cancel.

"""
Clearance Scheduler

WHY: Earnings from a completed order stay on hold for a window (default 3h)
so a complaint can still freeze or cancel them before the cook cashes out.

STATE MACHINE:
    held --(withdrawable_at <= now)--> eligible --(sweep)--> cleared
    held | eligible --(pause)--> paused --(resume)--> held | eligible
    held | eligible | paused --(cancel)--> cancelled

- eligible is implicit (time-based), no flag
- cleared and cancelled are terminal
- cancel does not reverse the held credit; the refund flow does that

SWEEP:
- Each clearance is claimed with a compare-and-swap UPDATE conditioned on no
  flag being set, so overlapping sweeps never promote the same funds twice
- One transaction per clearance; a failure is rolled back, logged and the
  batch moves on
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import CookWallet, Order, OrderClearance, Tenant
from ..validation import ConflictError, InvalidTransition, NotFoundError, require_positive_amount
from cookwallet.time_utils import utcnow, hours_after, seconds_until
from . import deduction_service, wallet_ledger
from .audit_service import (
    EVENT_CLEARANCE_CANCELLED,
    EVENT_CLEARANCE_CLEARED,
    EVENT_CLEARANCE_OPENED,
    EVENT_CLEARANCE_PAUSED,
    EVENT_CLEARANCE_RESUMED,
    emit,
)
from .concurrency import lock_for_update, run_isolated, run_with_retry


# =============================================================================
# CLEARANCE STATES (CONSTANTS)
# =============================================================================

STATE_HELD = "held"
STATE_ELIGIBLE = "eligible"
STATE_PAUSED = "paused"
STATE_CLEARED = "cleared"
STATE_CANCELLED = "cancelled"


def clearance_state(clearance: OrderClearance, now: datetime | None = None) -> str:
    if clearance.is_cleared:
        return STATE_CLEARED
    if clearance.is_cancelled:
        return STATE_CANCELLED
    if clearance.is_paused:
        return STATE_PAUSED
    now = now or utcnow()
    if clearance.withdrawable_at <= now:
        return STATE_ELIGIBLE
    return STATE_HELD


def hold_hours_for_tenant(tenant_id: int) -> int:
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is not None and tenant.withdrawable_hold_hours is not None:
        return int(tenant.withdrawable_hold_hours)
    return int(current_app.config["WITHDRAWABLE_HOLD_HOURS"])


# =============================================================================
# OPEN
# =============================================================================

def open_clearance(order: Order, amount: int, now: datetime | None = None) -> OrderClearance:
    """
    Hold a completed order's cook earnings (flush only; caller commits).

    Credits the cook wallet as unwithdrawable with
    withdrawable_at = completed_at + hold_hours. A hold of 0 hours makes the
    clearance eligible for the very next sweep.

    Raises:
        InvalidAmount: amount <= 0
        ConflictError: the order already has a clearance
    """
    require_positive_amount(amount)
    now = now or utcnow()

    existing = db.session.query(OrderClearance).filter_by(order_id=order.id).first()
    if existing:
        raise ConflictError(f"Order {order.id} already has clearance {existing.id}")

    hold_hours = hold_hours_for_tenant(order.tenant_id)
    completed_at = order.completed_at or now
    withdrawable_at = hours_after(completed_at, hold_hours)

    wallet = wallet_ledger.get_or_create_cook_wallet(order.tenant_id, order.cook_id)
    wallet_ledger.credit(
        wallet,
        amount,
        wallet_ledger.TXN_PAYMENT_CREDIT,
        is_withdrawable=False,
        withdrawable_at=withdrawable_at,
        order_id=order.id,
        description=f"Earnings for order {order.order_number or order.id}",
        now=now,
    )

    clearance = OrderClearance(
        order_id=order.id,
        tenant_id=order.tenant_id,
        cook_id=order.cook_id,
        cook_wallet_id=wallet.id,
        amount=amount,
        hold_hours=hold_hours,
        completed_at=completed_at,
        withdrawable_at=withdrawable_at,
        deducted_amount=0,
        is_cleared=False,
        is_paused=False,
        is_cancelled=False,
        created_at=now,
    )
    db.session.add(clearance)
    db.session.flush()

    emit(
        EVENT_CLEARANCE_OPENED,
        entity_type="order_clearance",
        entity_id=clearance.id,
        tenant_id=order.tenant_id,
        occurred_at=now,
        order_id=order.id,
        amount=amount,
        hold_hours=hold_hours,
    )
    return clearance


# =============================================================================
# SWEEP
# =============================================================================

def _eligible_filter(now: datetime):
    return (
        OrderClearance.is_cleared.is_(False),
        OrderClearance.is_paused.is_(False),
        OrderClearance.is_cancelled.is_(False),
        OrderClearance.withdrawable_at <= now,
    )


def _clear_one(clearance_id: int, now: datetime) -> Optional[OrderClearance]:
    def _op():
        claimed = (
            db.session.query(OrderClearance)
            .filter(OrderClearance.id == clearance_id, *_eligible_filter(now))
            .update({"is_cleared": True, "cleared_at": now}, synchronize_session=False)
        )
        if claimed == 0:
            # Another sweep got here first, or the clearance was paused/cancelled
            db.session.rollback()
            return None

        clearance = (
            db.session.query(OrderClearance)
            .filter_by(id=clearance_id)
            .populate_existing()
            .first()
        )
        wallet = db.session.get(CookWallet, clearance.cook_wallet_id)

        result = deduction_service.settle_against(wallet, clearance.amount, now, clearance.order_id)
        clearance.deducted_amount = result.deducted

        if result.net_credit > 0:
            wallet_ledger.promote(
                wallet,
                result.net_credit,
                order_id=clearance.order_id,
                description="Hold period elapsed",
                details={"clearance_id": clearance.id, "deducted": result.deducted},
                now=now,
            )

        emit(
            EVENT_CLEARANCE_CLEARED,
            entity_type="order_clearance",
            entity_id=clearance.id,
            tenant_id=clearance.tenant_id,
            occurred_at=now,
            order_id=clearance.order_id,
            amount=clearance.amount,
            deducted=result.deducted,
            promoted=result.net_credit,
        )
        db.session.commit()
        return clearance

    return run_isolated(_op, label=f"clearance {clearance_id}")


def sweep(now: datetime | None = None) -> list[OrderClearance]:
    """
    Promote every eligible clearance, oldest first.

    Returns the clearances this call cleared. Safe to run concurrently with
    itself.
    """
    now = now or utcnow()
    candidate_ids = [
        row.id
        for row in db.session.query(OrderClearance.id)
        .filter(*_eligible_filter(now))
        .order_by(OrderClearance.withdrawable_at.asc(), OrderClearance.id.asc())
        .all()
    ]

    cleared = []
    for clearance_id in candidate_ids:
        clearance = _clear_one(clearance_id, now)
        if clearance is not None:
            cleared.append(clearance)

    if candidate_ids:
        current_app.logger.info(
            "Clearance sweep: %s eligible, %s cleared", len(candidate_ids), len(cleared)
        )
    return cleared


# =============================================================================
# COMPLAINT SIGNALS
# =============================================================================

def _get_locked(clearance_id: int) -> OrderClearance:
    clearance = (
        lock_for_update(db.session.query(OrderClearance).filter_by(id=clearance_id))
        .populate_existing()
        .first()
    )
    if not clearance:
        raise NotFoundError(f"Clearance {clearance_id} not found")
    return clearance


def _require_open(clearance: OrderClearance, action: str) -> None:
    if clearance.is_cleared:
        raise InvalidTransition(f"Cannot {action} clearance {clearance.id}: already cleared")
    if clearance.is_cancelled:
        raise InvalidTransition(f"Cannot {action} clearance {clearance.id}: cancelled")


def pause(clearance_id: int, now: datetime | None = None, actor_id: int | None = None) -> OrderClearance:
    """
    Freeze a held or eligible clearance, capturing the remaining hold time.

    Raises:
        NotFoundError: unknown clearance
        InvalidTransition: cleared, cancelled or already paused
    """
    now = now or utcnow()

    def _op():
        clearance = _get_locked(clearance_id)
        _require_open(clearance, "pause")
        if clearance.is_paused:
            raise InvalidTransition(f"Clearance {clearance.id} is already paused")

        clearance.is_paused = True
        clearance.paused_at = now
        clearance.remaining_seconds_at_pause = seconds_until(clearance.withdrawable_at, now)

        emit(
            EVENT_CLEARANCE_PAUSED,
            entity_type="order_clearance",
            entity_id=clearance.id,
            actor_id=actor_id,
            tenant_id=clearance.tenant_id,
            occurred_at=now,
            order_id=clearance.order_id,
            remaining_seconds=clearance.remaining_seconds_at_pause,
        )
        db.session.commit()
        return clearance

    return run_with_retry(_op)


def resume(clearance_id: int, now: datetime | None = None, actor_id: int | None = None) -> OrderClearance:
    """
    Restart the hold clock: withdrawable_at = now + remaining time at pause.

    Raises:
        NotFoundError: unknown clearance
        InvalidTransition: clearance is not paused
    """
    now = now or utcnow()

    def _op():
        clearance = _get_locked(clearance_id)
        _require_open(clearance, "resume")
        if not clearance.is_paused:
            raise InvalidTransition(f"Clearance {clearance.id} is not paused")

        remaining = clearance.remaining_seconds_at_pause or 0
        clearance.withdrawable_at = now + timedelta(seconds=remaining)
        clearance.is_paused = False
        clearance.paused_at = None
        clearance.remaining_seconds_at_pause = None

        emit(
            EVENT_CLEARANCE_RESUMED,
            entity_type="order_clearance",
            entity_id=clearance.id,
            actor_id=actor_id,
            tenant_id=clearance.tenant_id,
            occurred_at=now,
            order_id=clearance.order_id,
            withdrawable_at=clearance.withdrawable_at.isoformat(),
        )
        db.session.commit()
        return clearance

    return run_with_retry(_op)


def cancel_locked(clearance: OrderClearance, now: datetime, actor_id: int | None = None) -> OrderClearance:
    """Cancel an already-locked clearance inside the caller's transaction (flush only)."""
    _require_open(clearance, "cancel")

    clearance.is_cancelled = True
    clearance.cancelled_at = now
    clearance.is_paused = False
    db.session.flush()

    emit(
        EVENT_CLEARANCE_CANCELLED,
        entity_type="order_clearance",
        entity_id=clearance.id,
        actor_id=actor_id,
        tenant_id=clearance.tenant_id,
        occurred_at=now,
        order_id=clearance.order_id,
        amount=clearance.amount,
    )
    return clearance


def cancel(clearance_id: int, now: datetime | None = None, actor_id: int | None = None) -> OrderClearance:
    """
    Permanently stop a clearance from becoming withdrawable.

    Raises:
        NotFoundError: unknown clearance
        InvalidTransition: already cleared or cancelled
    """
    now = now or utcnow()

    def _op():
        clearance = cancel_locked(_get_locked(clearance_id), now, actor_id)
        db.session.commit()
        return clearance

    return run_with_retry(_op)


def _clearance_id_for_order(order_id: int) -> int:
    clearance = get_clearance_for_order(order_id)
    if not clearance:
        raise NotFoundError(f"No clearance for order {order_id}")
    return clearance.id


def pause_for_order(order_id: int, now: datetime | None = None, actor_id: int | None = None) -> OrderClearance:
    return pause(_clearance_id_for_order(order_id), now, actor_id)


def resume_for_order(order_id: int, now: datetime | None = None, actor_id: int | None = None) -> OrderClearance:
    return resume(_clearance_id_for_order(order_id), now, actor_id)


def cancel_for_order(order_id: int, now: datetime | None = None, actor_id: int | None = None) -> OrderClearance:
    return cancel(_clearance_id_for_order(order_id), now, actor_id)


# =============================================================================
# QUERIES
# =============================================================================

def get_clearance_for_order(order_id: int) -> Optional[OrderClearance]:
    return db.session.query(OrderClearance).filter_by(order_id=order_id).first()


def list_pending_clearances(wallet: CookWallet) -> list[OrderClearance]:
    """Clearances still on hold or paused for a wallet, soonest first."""
    return (
        db.session.query(OrderClearance)
        .filter(
            OrderClearance.cook_wallet_id == wallet.id,
            OrderClearance.is_cleared.is_(False),
            OrderClearance.is_cancelled.is_(False),
        )
        .order_by(OrderClearance.withdrawable_at.asc(), OrderClearance.id.asc())
        .all()
    )
