# Overview: Service-layer wallet ledger; append-only transactions and derived balances.

"""
Wallet Ledger

WHY: Every XAF a cook or client holds must be explained by a ledger row.
Balances on the wallet are a cached projection of the ledger, updated in the
same flush as the row that explains them.

INVARIANTS:
- total_balance == withdrawable_balance + unwithdrawable_balance, all >= 0
- sum(WalletTransaction.amount) for a wallet == its total_balance
- WalletTransaction rows are never updated or deleted

LOCKING:
- Every primitive re-reads the wallet with SELECT ... FOR UPDATE and
  populate_existing(), so it works on the latest committed balance
- Wallets carry version_id; a writer holding a stale copy fails with
  StaleDataError and the caller's run_with_retry re-runs the operation

Primitives flush but never commit. The calling operation owns the transaction.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Union

from sqlalchemy import func

from ..extensions import db
from ..models import CookWallet, ClientWallet, WalletTransaction
from ..validation import InsufficientFunds, require_positive_amount
from .concurrency import lock_for_update


Wallet = Union[CookWallet, ClientWallet]


# =============================================================================
# TRANSACTION TYPES (CONSTANTS)
# =============================================================================

TXN_PAYMENT_CREDIT = "payment_credit"
TXN_BECAME_WITHDRAWABLE = "became_withdrawable"
TXN_COMMISSION = "commission"
TXN_REFUND = "refund"
TXN_REFUND_REVERSAL = "refund_reversal"
TXN_REFUND_CHARGEBACK = "refund_chargeback"
TXN_DEDUCTION_SETTLEMENT = "deduction_settlement"
TXN_WITHDRAWAL = "withdrawal"
TXN_WITHDRAWAL_REVERSAL = "withdrawal_reversal"

VALID_TRANSACTION_TYPES = [
    TXN_PAYMENT_CREDIT,
    TXN_BECAME_WITHDRAWABLE,
    TXN_COMMISSION,
    TXN_REFUND,
    TXN_REFUND_REVERSAL,
    TXN_REFUND_CHARGEBACK,
    TXN_DEDUCTION_SETTLEMENT,
    TXN_WITHDRAWAL,
    TXN_WITHDRAWAL_REVERSAL,
]


# =============================================================================
# WALLET LOOKUP
# =============================================================================

def get_or_create_cook_wallet(tenant_id: int, cook_id: int) -> CookWallet:
    """Return the cook's wallet for a tenant, creating it on first use (flush only)."""
    wallet = db.session.query(CookWallet).filter_by(tenant_id=tenant_id, cook_id=cook_id).first()
    if wallet:
        return wallet
    wallet = CookWallet(
        tenant_id=tenant_id,
        cook_id=cook_id,
        total_balance=0,
        withdrawable_balance=0,
        unwithdrawable_balance=0,
    )
    db.session.add(wallet)
    db.session.flush()
    return wallet


def get_or_create_client_wallet(client_id: int) -> ClientWallet:
    wallet = db.session.query(ClientWallet).filter_by(client_id=client_id).first()
    if wallet:
        return wallet
    wallet = ClientWallet(
        client_id=client_id,
        total_balance=0,
        withdrawable_balance=0,
        unwithdrawable_balance=0,
    )
    db.session.add(wallet)
    db.session.flush()
    return wallet


def _locked(wallet: Wallet) -> Wallet:
    model = type(wallet)
    locked = (
        lock_for_update(db.session.query(model).filter_by(id=wallet.id))
        .populate_existing()
        .first()
    )
    if locked is None:
        raise LookupError(f"{model.__name__} {wallet.id} not found")
    return locked


def _owner_kwargs(wallet: Wallet) -> dict:
    if isinstance(wallet, CookWallet):
        return {"cook_wallet_id": wallet.id}
    return {"client_wallet_id": wallet.id}


def _append(
    wallet: Wallet,
    *,
    txn_type: str,
    amount: int,
    gross_amount: int,
    balance_before: int,
    is_withdrawable: bool,
    withdrawable_at: Optional[datetime],
    order_id: Optional[int],
    description: Optional[str],
    details: Optional[dict[str, Any]],
    now: Optional[datetime],
) -> WalletTransaction:
    if txn_type not in VALID_TRANSACTION_TYPES:
        raise ValueError(f"Invalid transaction type: {txn_type}")

    txn = WalletTransaction(
        **_owner_kwargs(wallet),
        order_id=order_id,
        type=txn_type,
        amount=amount,
        gross_amount=gross_amount,
        currency=wallet.currency or "XAF",
        balance_before=balance_before,
        balance_after=wallet.total_balance,
        withdrawable_after=wallet.withdrawable_balance,
        is_withdrawable=is_withdrawable,
        withdrawable_at=withdrawable_at,
        status="completed",
        description=description,
        details=details,
    )
    if now is not None:
        txn.created_at = now
    db.session.add(txn)
    db.session.flush()
    return txn


# =============================================================================
# PRIMITIVES
# =============================================================================

def credit(
    wallet: Wallet,
    amount: int,
    txn_type: str,
    *,
    is_withdrawable: bool = False,
    withdrawable_at: Optional[datetime] = None,
    order_id: Optional[int] = None,
    description: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> WalletTransaction:
    """
    Add funds to a wallet, either withdrawable or held.

    Raises:
        InvalidAmount: amount <= 0
    """
    require_positive_amount(amount)
    wallet = _locked(wallet)

    before = wallet.total_balance
    wallet.total_balance += amount
    if is_withdrawable:
        wallet.withdrawable_balance += amount
    else:
        wallet.unwithdrawable_balance += amount

    return _append(
        wallet,
        txn_type=txn_type,
        amount=amount,
        gross_amount=amount,
        balance_before=before,
        is_withdrawable=is_withdrawable,
        withdrawable_at=withdrawable_at,
        order_id=order_id,
        description=description,
        details=details,
        now=now,
    )


def debit(
    wallet: Wallet,
    amount: int,
    txn_type: str,
    *,
    order_id: Optional[int] = None,
    description: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> WalletTransaction:
    """
    Remove funds from the withdrawable balance.

    Raises:
        InvalidAmount: amount <= 0
        InsufficientFunds: amount exceeds withdrawable_balance
    """
    require_positive_amount(amount)
    wallet = _locked(wallet)

    if amount > wallet.withdrawable_balance:
        raise InsufficientFunds(
            f"Insufficient withdrawable balance: requested {amount}, available {wallet.withdrawable_balance}"
        )

    before = wallet.total_balance
    wallet.total_balance -= amount
    wallet.withdrawable_balance -= amount

    return _append(
        wallet,
        txn_type=txn_type,
        amount=-amount,
        gross_amount=amount,
        balance_before=before,
        is_withdrawable=True,
        withdrawable_at=None,
        order_id=order_id,
        description=description,
        details=details,
        now=now,
    )


def debit_held(
    wallet: Wallet,
    amount: int,
    txn_type: str,
    *,
    order_id: Optional[int] = None,
    description: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> WalletTransaction:
    """
    Remove funds from the unwithdrawable (held) balance.

    Used to reverse a held credit on refund and to pay deductions out of a
    clearing credit before the remainder is promoted.

    Raises:
        InvalidAmount: amount <= 0
        InsufficientFunds: amount exceeds unwithdrawable_balance
    """
    require_positive_amount(amount)
    wallet = _locked(wallet)

    if amount > wallet.unwithdrawable_balance:
        raise InsufficientFunds(
            f"Insufficient held balance: requested {amount}, held {wallet.unwithdrawable_balance}"
        )

    before = wallet.total_balance
    wallet.total_balance -= amount
    wallet.unwithdrawable_balance -= amount

    return _append(
        wallet,
        txn_type=txn_type,
        amount=-amount,
        gross_amount=amount,
        balance_before=before,
        is_withdrawable=False,
        withdrawable_at=None,
        order_id=order_id,
        description=description,
        details=details,
        now=now,
    )


def promote(
    wallet: Wallet,
    amount: int,
    *,
    order_id: Optional[int] = None,
    description: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> WalletTransaction:
    """
    Move held funds to withdrawable. total_balance is unchanged, so the
    became_withdrawable row carries amount 0 and the moved figure in
    gross_amount.

    Raises:
        InvalidAmount: amount <= 0
        InsufficientFunds: amount exceeds unwithdrawable_balance
    """
    require_positive_amount(amount)
    wallet = _locked(wallet)

    if amount > wallet.unwithdrawable_balance:
        raise InsufficientFunds(
            f"Cannot promote {amount}: only {wallet.unwithdrawable_balance} held"
        )

    before = wallet.total_balance
    wallet.unwithdrawable_balance -= amount
    wallet.withdrawable_balance += amount

    return _append(
        wallet,
        txn_type=TXN_BECAME_WITHDRAWABLE,
        amount=0,
        gross_amount=amount,
        balance_before=before,
        is_withdrawable=True,
        withdrawable_at=now,
        order_id=order_id,
        description=description,
        details=details,
        now=now,
    )


def record_memo(
    wallet: Wallet,
    amount: int,
    txn_type: str,
    *,
    order_id: Optional[int] = None,
    description: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> WalletTransaction:
    """Zero-effect informational row (e.g., commission withheld on an order)."""
    require_positive_amount(amount)
    wallet = _locked(wallet)
    return _append(
        wallet,
        txn_type=txn_type,
        amount=0,
        gross_amount=amount,
        balance_before=wallet.total_balance,
        is_withdrawable=False,
        withdrawable_at=None,
        order_id=order_id,
        description=description,
        details=details,
        now=now,
    )


# =============================================================================
# QUERIES
# =============================================================================

def _txn_owner_filter(wallet: Wallet):
    if isinstance(wallet, CookWallet):
        return WalletTransaction.cook_wallet_id == wallet.id
    return WalletTransaction.client_wallet_id == wallet.id


def list_transactions(wallet: Wallet, limit: int = 100) -> list[WalletTransaction]:
    """Newest-first transaction history."""
    return (
        db.session.query(WalletTransaction)
        .filter(_txn_owner_filter(wallet))
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .limit(limit)
        .all()
    )


def ledger_sum(wallet: Wallet) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(WalletTransaction.amount), 0))
        .filter(_txn_owner_filter(wallet))
        .scalar()
    )
    return int(total or 0)


def check_wallet_invariants(wallet: Wallet) -> list[str]:
    """Return a list of human-readable violations (empty when consistent)."""
    problems = []
    label = f"{type(wallet).__name__} {wallet.id}"

    if wallet.withdrawable_balance < 0:
        problems.append(f"{label}: withdrawable_balance is negative ({wallet.withdrawable_balance})")
    if wallet.unwithdrawable_balance < 0:
        problems.append(f"{label}: unwithdrawable_balance is negative ({wallet.unwithdrawable_balance})")
    if wallet.total_balance != wallet.withdrawable_balance + wallet.unwithdrawable_balance:
        problems.append(
            f"{label}: total_balance {wallet.total_balance} != "
            f"{wallet.withdrawable_balance} + {wallet.unwithdrawable_balance}"
        )

    summed = ledger_sum(wallet)
    if summed != wallet.total_balance:
        problems.append(f"{label}: ledger sum {summed} != total_balance {wallet.total_balance}")
    return problems
