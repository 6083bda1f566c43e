# Overview: Service-layer operations for pending deductions; nets cook debts against future credits.

"""
Deduction Settlement Engine

WHY: A refund charged back to a cook whose withdrawable balance cannot cover
it leaves a debt. Rather than letting the wallet go negative, the debt is
recorded as a PendingDeduction and paid down from the cook's next clearances.

DESIGN:
- Open deductions are settled strictly oldest-first (created_at, then id)
- Each application writes a DeductionSettlement row and a
  deduction_settlement ledger row drawn from the clearing (held) funds
- remaining_amount only decreases; settled_at is set exactly when it hits 0
- settle_against flushes only; the clearance sweep owns the transaction
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func

from ..extensions import db
from ..models import CookWallet, PendingDeduction, DeductionSettlement
from ..validation import (
    AlreadyResolved,
    NotFoundError,
    ValidationError,
    require_positive_amount,
)
from cookwallet.time_utils import utcnow
from . import wallet_ledger
from .audit_service import (
    EVENT_DEDUCTION_APPLIED,
    EVENT_DEDUCTION_CANCELLED,
    EVENT_DEDUCTION_RECORDED,
    emit,
)
from .concurrency import lock_for_update, run_with_retry


# =============================================================================
# DEDUCTION SOURCES (CONSTANTS)
# =============================================================================

SOURCE_COMPLAINT_REFUND = "complaint_refund"
SOURCE_CANCELLATION_REFUND = "cancellation_refund"

VALID_SOURCES = [
    SOURCE_COMPLAINT_REFUND,
    SOURCE_CANCELLATION_REFUND,
]


@dataclass
class SettlementResult:
    net_credit: int
    settled: list[DeductionSettlement] = field(default_factory=list)

    @property
    def deducted(self) -> int:
        return sum(s.amount_applied for s in self.settled)


def record_deduction(
    wallet: CookWallet,
    amount: int,
    reason: str,
    source: str,
    order_id: int | None = None,
    *,
    details: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> PendingDeduction:
    """
    Open a debt against a cook wallet (flush only).

    Raises:
        InvalidAmount: amount <= 0
        ValidationError: unknown source or blank reason
    """
    require_positive_amount(amount)
    if source not in VALID_SOURCES:
        raise ValidationError(f"Invalid deduction source: {source}. Must be one of {VALID_SOURCES}")
    if not reason or not reason.strip():
        raise ValidationError("reason is required")

    now = now or utcnow()
    deduction = PendingDeduction(
        cook_wallet_id=wallet.id,
        tenant_id=wallet.tenant_id,
        cook_id=wallet.cook_id,
        order_id=order_id,
        original_amount=amount,
        remaining_amount=amount,
        reason=reason.strip(),
        source=source,
        details=details,
        created_at=now,
    )
    db.session.add(deduction)
    db.session.flush()

    emit(
        EVENT_DEDUCTION_RECORDED,
        entity_type="pending_deduction",
        entity_id=deduction.id,
        tenant_id=wallet.tenant_id,
        occurred_at=now,
        cook_wallet_id=wallet.id,
        amount=amount,
        source=source,
        order_id=order_id,
    )
    return deduction


def settle_against(
    wallet: CookWallet,
    credit_amount: int,
    now: datetime,
    source_order_id: int | None = None,
) -> SettlementResult:
    """
    Apply a clearing credit to the wallet's open deductions, oldest first.

    The credit must still be held (unwithdrawable) on the wallet: applied
    amounts are drawn from it with debit_held. Returns the leftover credit
    for the caller to promote.
    """
    result = SettlementResult(net_credit=credit_amount)
    if credit_amount <= 0:
        return result

    open_deductions = (
        lock_for_update(
            db.session.query(PendingDeduction).filter(
                PendingDeduction.cook_wallet_id == wallet.id,
                PendingDeduction.settled_at.is_(None),
                PendingDeduction.remaining_amount > 0,
            )
        )
        .order_by(PendingDeduction.created_at.asc(), PendingDeduction.id.asc())
        .populate_existing()
        .all()
    )

    remaining_credit = credit_amount
    for deduction in open_deductions:
        if remaining_credit <= 0:
            break

        applied = min(remaining_credit, deduction.remaining_amount)
        txn = wallet_ledger.debit_held(
            wallet,
            applied,
            wallet_ledger.TXN_DEDUCTION_SETTLEMENT,
            order_id=source_order_id,
            description=f"Applied to pending deduction #{deduction.id}",
            details={"deduction_id": deduction.id},
            now=now,
        )

        deduction.remaining_amount -= applied
        if deduction.remaining_amount == 0:
            deduction.settled_at = now

        settlement = DeductionSettlement(
            deduction_id=deduction.id,
            wallet_transaction_id=txn.id,
            source_order_id=source_order_id,
            amount_applied=applied,
            remaining_after=deduction.remaining_amount,
            settled_at=now,
        )
        db.session.add(settlement)
        db.session.flush()

        emit(
            EVENT_DEDUCTION_APPLIED,
            entity_type="pending_deduction",
            entity_id=deduction.id,
            tenant_id=wallet.tenant_id,
            occurred_at=now,
            amount_applied=applied,
            remaining_after=deduction.remaining_amount,
            source_order_id=source_order_id,
        )

        result.settled.append(settlement)
        remaining_credit -= applied

    result.net_credit = remaining_credit
    return result


def cancel_deduction(deduction_id: int, actor_id: int, now: datetime | None = None) -> PendingDeduction:
    """
    Write off an erroneous debt.

    Raises:
        NotFoundError: unknown deduction
        AlreadyResolved: deduction already settled or cancelled
    """
    now = now or utcnow()

    def _op():
        deduction = lock_for_update(db.session.query(PendingDeduction).filter_by(id=deduction_id)).first()
        if not deduction:
            raise NotFoundError(f"Deduction {deduction_id} not found")
        if deduction.settled_at is not None or deduction.cancelled_at is not None:
            raise AlreadyResolved(f"Deduction {deduction_id} is already resolved")

        written_off = deduction.remaining_amount
        deduction.remaining_amount = 0
        deduction.cancelled_at = now
        deduction.cancelled_by = actor_id
        deduction.settled_at = now

        emit(
            EVENT_DEDUCTION_CANCELLED,
            entity_type="pending_deduction",
            entity_id=deduction.id,
            actor_id=actor_id,
            tenant_id=deduction.tenant_id,
            occurred_at=now,
            written_off=written_off,
        )
        db.session.commit()
        return deduction

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def total_outstanding(wallet: CookWallet) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(PendingDeduction.remaining_amount), 0))
        .filter(
            PendingDeduction.cook_wallet_id == wallet.id,
            PendingDeduction.settled_at.is_(None),
        )
        .scalar()
    )
    return int(total or 0)


def list_open_deductions(wallet: CookWallet) -> list[PendingDeduction]:
    return (
        db.session.query(PendingDeduction)
        .filter(
            PendingDeduction.cook_wallet_id == wallet.id,
            PendingDeduction.settled_at.is_(None),
        )
        .order_by(PendingDeduction.created_at.asc(), PendingDeduction.id.asc())
        .all()
    )


def list_deductions(wallet: CookWallet) -> list[PendingDeduction]:
    return (
        db.session.query(PendingDeduction)
        .filter(PendingDeduction.cook_wallet_id == wallet.id)
        .order_by(PendingDeduction.created_at.desc(), PendingDeduction.id.desc())
        .all()
    )


def list_settlements(deduction_id: int) -> list[DeductionSettlement]:
    return (
        db.session.query(DeductionSettlement)
        .filter(DeductionSettlement.deduction_id == deduction_id)
        .order_by(DeductionSettlement.settled_at.asc(), DeductionSettlement.id.asc())
        .all()
    )
