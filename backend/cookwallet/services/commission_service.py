# Overview: Service-layer operations for commission rates; resolves, changes and applies tenant commission.

"""
Commission Service

WHY: The platform takes a percentage of each order subtotal. Each tenant may
negotiate its own rate; every change must be attributable after the fact.

DESIGN:
- CommissionChange is the single source of truth: the current rate is the
  newest row's new_rate, or the platform default when a tenant has none
- Setting the rate to its current value is a no-op (no history row)
- Changing a rate never rewrites completed orders; callers are told to
  review the payment split for in-flight orders instead
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Optional

from flask import current_app

from ..extensions import db
from ..models import CommissionChange, Tenant
from ..validation import NotFoundError, coerce_rate
from cookwallet.time_utils import utcnow
from .audit_service import EVENT_COMMISSION_CHANGED, emit
from .concurrency import lock_for_update, run_with_retry


@dataclass
class RateChangeResult:
    changed: bool
    rate: Decimal
    change: Optional[CommissionChange] = None
    review_payment_split: bool = False

    def to_dict(self) -> dict:
        return {
            "changed": self.changed,
            "rate": float(self.rate),
            "change": self.change.to_dict() if self.change else None,
            "review_payment_split": self.review_payment_split,
        }


def default_rate() -> Decimal:
    return Decimal(str(current_app.config["PLATFORM_DEFAULT_COMMISSION_RATE"])).quantize(Decimal("0.01"))


def current_rate(tenant_id: int) -> Decimal:
    """Rate in force for a tenant (newest history row, else platform default)."""
    latest = (
        db.session.query(CommissionChange)
        .filter(CommissionChange.tenant_id == tenant_id)
        .order_by(CommissionChange.created_at.desc(), CommissionChange.id.desc())
        .first()
    )
    if latest is None:
        return default_rate()
    return Decimal(latest.new_rate).quantize(Decimal("0.01"))


def set_rate(tenant_id: int, new_rate: Any, actor_id: int, reason: str | None = None) -> RateChangeResult:
    """
    Change a tenant's commission rate.

    Raises:
        InvalidRate: rate outside [0, 50] or not a multiple of 0.5
        NotFoundError: unknown tenant
    """
    rate = coerce_rate(new_rate)

    def _op():
        # Serialize concurrent changes for the same tenant
        tenant = lock_for_update(db.session.query(Tenant).filter_by(id=tenant_id)).first()
        if not tenant:
            raise NotFoundError(f"Tenant {tenant_id} not found")

        old_rate = current_rate(tenant_id)
        if old_rate == rate:
            db.session.rollback()
            return RateChangeResult(changed=False, rate=old_rate)

        now = utcnow()
        change = CommissionChange(
            tenant_id=tenant_id,
            old_rate=old_rate,
            new_rate=rate,
            changed_by=actor_id,
            reason=(reason or "").strip() or None,
            created_at=now,
        )
        db.session.add(change)
        db.session.flush()

        emit(
            EVENT_COMMISSION_CHANGED,
            entity_type="tenant",
            entity_id=tenant_id,
            actor_id=actor_id,
            tenant_id=tenant_id,
            occurred_at=now,
            old_rate=str(old_rate),
            new_rate=str(rate),
            reason=change.reason,
        )
        db.session.commit()
        return RateChangeResult(changed=True, rate=rate, change=change, review_payment_split=True)

    result = run_with_retry(_op)
    if result.changed:
        current_app.logger.info(
            "Commission rate for tenant %s changed %s -> %s by %s",
            tenant_id, result.change.old_rate, result.change.new_rate, actor_id,
        )
    return result


def reset_to_default(tenant_id: int, actor_id: int, reason: str | None = None) -> RateChangeResult:
    return set_rate(tenant_id, default_rate(), actor_id, reason or "Reset to platform default")


def rate_history(tenant_id: int) -> list[CommissionChange]:
    return (
        db.session.query(CommissionChange)
        .filter(CommissionChange.tenant_id == tenant_id)
        .order_by(CommissionChange.created_at.desc(), CommissionChange.id.desc())
        .all()
    )


# =============================================================================
# ORDER SPLIT
# =============================================================================

def calculate_commission(subtotal: int, rate: Decimal) -> int:
    """Platform share of a subtotal, floored to whole XAF (cook keeps the remainder)."""
    raw = Decimal(subtotal) * Decimal(rate) / Decimal(100)
    return int(raw.to_integral_value(rounding=ROUND_FLOOR))


def calculate_cook_credit(subtotal: int, delivery_fee: int, rate: Decimal) -> int:
    """Cook earnings for an order. Delivery fee is passed through commission-free."""
    return subtotal - calculate_commission(subtotal, rate) + (delivery_fee or 0)
