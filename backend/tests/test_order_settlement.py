# Overview: Pytest coverage for order completion splits and refund recovery from cook earnings.

"""
Order Settlement Tests

Completion holds the cook's share behind a clearance. Refunds credit the
client and recover the money from the cook, either by reversing the held
credit or by charging back cleared earnings (with a deduction for any
shortfall).
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from cookwallet.models import ClientWallet, CookWallet, OrderClearance, WalletTransaction
from cookwallet.services import (
    clearance_service,
    commission_service,
    deduction_service,
    order_settlement_service,
    wallet_ledger,
    withdrawal_service,
)
from cookwallet.validation import (
    ConflictError,
    InvalidAmount,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)

from conftest import T0


COMPLAINT = deduction_service.SOURCE_COMPLAINT_REFUND


def _cook_wallet(db_session):
    return db_session.query(CookWallet).filter_by(cook_id=501).one()


class TestCompleteOrder:
    def test_split_at_default_rate(self, db_session, make_order):
        order = make_order(subtotal=10000, delivery_fee=1500)

        clearance = order_settlement_service.complete_order(order.id, now=T0)

        db_session.refresh(order)
        assert order.commission_rate == Decimal("10.00")
        assert order.commission_amount == 1000
        assert clearance.amount == 10500

        wallet = _cook_wallet(db_session)
        assert wallet.unwithdrawable_balance == 10500
        assert wallet.withdrawable_balance == 0

        memo = db_session.query(WalletTransaction).filter_by(type=wallet_ledger.TXN_COMMISSION).one()
        assert memo.amount == 0
        assert memo.gross_amount == 1000
        assert memo.order_id == order.id
        assert wallet_ledger.check_wallet_invariants(wallet) == []

    def test_uses_tenant_rate(self, db_session, tenant, make_order):
        commission_service.set_rate(tenant.id, 12.5, actor_id=1)
        order = make_order(subtotal=9999)

        clearance = order_settlement_service.complete_order(order.id, now=T0)

        assert clearance.amount == 9999 - 1249
        db_session.refresh(order)
        assert order.commission_rate == Decimal("12.50")

    def test_zero_rate_writes_no_memo(self, db_session, tenant, make_order):
        commission_service.set_rate(tenant.id, 0, actor_id=1)
        order = make_order(subtotal=8000)

        clearance = order_settlement_service.complete_order(order.id, now=T0)
        assert clearance.amount == 8000
        assert db_session.query(WalletTransaction).filter_by(type=wallet_ledger.TXN_COMMISSION).count() == 0

    def test_order_not_completed(self, db_session, make_order):
        order = make_order(status="preparing")
        with pytest.raises(InvalidTransition):
            order_settlement_service.complete_order(order.id, now=T0)
        assert db_session.query(OrderClearance).count() == 0

    def test_second_completion_conflicts(self, db_session, make_order):
        order = make_order()
        order_settlement_service.complete_order(order.id, now=T0)

        with pytest.raises(ConflictError):
            order_settlement_service.complete_order(order.id, now=T0)

        wallet = _cook_wallet(db_session)
        assert wallet.unwithdrawable_balance == 9000

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFoundError):
            order_settlement_service.complete_order(4040, now=T0)


class TestRefundBeforeClearing:
    def test_full_refund_reverses_held_credit(self, db_session, make_order):
        order = make_order(subtotal=10000)
        order_settlement_service.complete_order(order.id, now=T0)

        result = order_settlement_service.refund_order(
            order.id, 10000, COMPLAINT, "Cold food", now=T0 + timedelta(hours=1), actor_id=9
        )

        assert result.reversed_held == 9000
        assert result.recredited == 0
        assert result.deduction is None

        wallet = _cook_wallet(db_session)
        assert wallet.total_balance == 0
        assert wallet_ledger.check_wallet_invariants(wallet) == []

        client = db_session.query(ClientWallet).filter_by(client_id=901).one()
        assert client.withdrawable_balance == 10000

        clearance = clearance_service.get_clearance_for_order(order.id)
        assert clearance.is_cancelled is True
        assert clearance_service.sweep(T0 + timedelta(hours=5)) == []

    def test_partial_refund_recredits_remainder(self, db_session, make_order):
        order = make_order(subtotal=10000)
        order_settlement_service.complete_order(order.id, now=T0)

        result = order_settlement_service.refund_order(order.id, 4000, COMPLAINT, "Missing side", now=T0)

        assert result.reversed_held == 9000
        assert result.recredited == 5000

        wallet = _cook_wallet(db_session)
        assert wallet.withdrawable_balance == 5000
        assert wallet.unwithdrawable_balance == 0

    def test_refund_paused_clearance(self, db_session, make_order):
        order = make_order()
        order_settlement_service.complete_order(order.id, now=T0)
        clearance_service.pause_for_order(order.id, T0 + timedelta(hours=1))

        order_settlement_service.refund_order(order.id, 9000, COMPLAINT, "Complaint upheld", now=T0)

        clearance = clearance_service.get_clearance_for_order(order.id)
        assert clearance.is_cancelled is True
        assert clearance.is_paused is False

    def test_second_refund_on_reversed_order_conflicts(self, db_session, make_order):
        order = make_order()
        order_settlement_service.complete_order(order.id, now=T0)
        order_settlement_service.refund_order(order.id, 2000, COMPLAINT, "First", now=T0)

        with pytest.raises(ConflictError):
            order_settlement_service.refund_order(order.id, 2000, COMPLAINT, "Second", now=T0)

        client = db_session.query(ClientWallet).filter_by(client_id=901).one()
        assert client.withdrawable_balance == 2000


class TestRefundAfterClearing:
    def test_chargeback_from_withdrawable(self, db_session, make_order):
        order = make_order(subtotal=10000)
        order_settlement_service.complete_order(order.id, now=T0)
        clearance_service.sweep(T0 + timedelta(hours=3))

        result = order_settlement_service.refund_order(order.id, 3000, COMPLAINT, "Late delivery", now=T0 + timedelta(hours=4))

        assert result.charged_back == 3000
        assert result.deduction is None
        wallet = _cook_wallet(db_session)
        assert wallet.withdrawable_balance == 6000

    def test_shortfall_becomes_pending_deduction(self, db_session, tenant, make_order):
        order = make_order(subtotal=10000)
        order_settlement_service.complete_order(order.id, now=T0)
        clearance_service.sweep(T0 + timedelta(hours=3))
        withdrawal_service.submit_withdrawal(tenant.id, 501, 7000, "677123456", now=T0 + timedelta(hours=3))

        result = order_settlement_service.refund_order(
            order.id, 10000, COMPLAINT, "Order never arrived", now=T0 + timedelta(hours=4)
        )

        # Cook share was 9,000: 2,000 recovered now, 7,000 owed
        assert result.charged_back == 2000
        assert result.deduction.original_amount == 7000
        assert result.deduction.order_id == order.id

        wallet = _cook_wallet(db_session)
        assert wallet.withdrawable_balance == 0
        assert deduction_service.total_outstanding(wallet) == 7000

        # Next order's clearance pays the debt down first
        nxt = make_order(subtotal=10000, completed_at=T0 + timedelta(hours=5))
        order_settlement_service.complete_order(nxt.id, now=T0 + timedelta(hours=5))
        clearance_service.sweep(T0 + timedelta(hours=8))

        wallet = _cook_wallet(db_session)
        assert wallet.withdrawable_balance == 2000
        assert deduction_service.total_outstanding(wallet) == 0
        assert wallet_ledger.check_wallet_invariants(wallet) == []

    def test_repeat_refund_cannot_exceed_order_total(self, db_session, make_order):
        order = make_order(subtotal=10000)
        order_settlement_service.complete_order(order.id, now=T0)
        clearance_service.sweep(T0 + timedelta(hours=3))

        order_settlement_service.refund_order(order.id, 10000, COMPLAINT, "Never arrived", now=T0 + timedelta(hours=4))

        for _ in range(2):
            with pytest.raises(ConflictError):
                order_settlement_service.refund_order(
                    order.id, 10000, COMPLAINT, "Never arrived", now=T0 + timedelta(hours=5)
                )

        client_wallet = db_session.query(ClientWallet).filter_by(client_id=order.client_id).one()
        assert client_wallet.withdrawable_balance == 10000

        wallet = _cook_wallet(db_session)
        assert wallet.withdrawable_balance == 0
        assert deduction_service.total_outstanding(wallet) == 0
        assert db_session.query(WalletTransaction).filter_by(
            order_id=order.id, type=wallet_ledger.TXN_REFUND_CHARGEBACK
        ).count() == 1
        assert wallet_ledger.check_wallet_invariants(wallet) == []

    def test_partial_refunds_recover_at_most_cook_share(self, db_session, make_order):
        order = make_order(subtotal=10000)
        order_settlement_service.complete_order(order.id, now=T0)
        clearance_service.sweep(T0 + timedelta(hours=3))

        first = order_settlement_service.refund_order(order.id, 6000, COMPLAINT, "Cold", now=T0 + timedelta(hours=4))
        second = order_settlement_service.refund_order(order.id, 4000, COMPLAINT, "Missing item", now=T0 + timedelta(hours=5))

        # Cook share was 9,000; the platform absorbs the rest
        assert first.charged_back == 6000
        assert second.charged_back == 3000
        assert second.deduction is None

        with pytest.raises(ConflictError):
            order_settlement_service.refund_order(order.id, 1, COMPLAINT, "Again", now=T0 + timedelta(hours=6))

        wallet = _cook_wallet(db_session)
        assert wallet.withdrawable_balance == 0
        assert wallet_ledger.check_wallet_invariants(wallet) == []


class TestRefundValidation:
    def test_amount_above_order_total(self, db_session, make_order):
        order = make_order(subtotal=10000, delivery_fee=500)
        order_settlement_service.complete_order(order.id, now=T0)
        with pytest.raises(ValidationError):
            order_settlement_service.refund_order(order.id, 10501, COMPLAINT, "x", now=T0)

    @pytest.mark.parametrize("amount", [0, -1, "1.5"])
    def test_invalid_amount(self, db_session, make_order, amount):
        order = make_order()
        with pytest.raises(InvalidAmount):
            order_settlement_service.refund_order(order.id, amount, COMPLAINT, "x", now=T0)

    def test_unknown_source(self, db_session, make_order):
        order = make_order()
        with pytest.raises(ValidationError):
            order_settlement_service.refund_order(order.id, 100, "goodwill", "x", now=T0)

    def test_reason_required(self, db_session, make_order):
        order = make_order()
        with pytest.raises(ValidationError):
            order_settlement_service.refund_order(order.id, 100, COMPLAINT, "  ", now=T0)

    def test_unsettled_order(self, db_session, make_order):
        order = make_order()
        with pytest.raises(InvalidTransition):
            order_settlement_service.refund_order(order.id, 100, COMPLAINT, "x", now=T0)
        assert db_session.query(ClientWallet).count() == 0

    def test_order_without_client(self, db_session, make_order):
        order = make_order(client_id=None)
        order_settlement_service.complete_order(order.id, now=T0)
        with pytest.raises(ValidationError):
            order_settlement_service.refund_order(order.id, 100, COMPLAINT, "x", now=T0)
