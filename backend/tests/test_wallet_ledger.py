# Overview: Pytest coverage for wallet ledger primitives and balance invariants.

"""
Wallet Ledger Tests

Every primitive must keep total == withdrawable + unwithdrawable and leave a
ledger row whose signed amounts add up to the wallet total.
"""

import pytest

from cookwallet.models import WalletTransaction
from cookwallet.services import wallet_ledger
from cookwallet.validation import InsufficientFunds, InvalidAmount

from conftest import T0


def _assert_consistent(wallet):
    assert wallet_ledger.check_wallet_invariants(wallet) == []


class TestCredit:
    def test_credit_held_increases_unwithdrawable(self, db_session, cook_wallet):
        txn = wallet_ledger.credit(cook_wallet, 10000, wallet_ledger.TXN_PAYMENT_CREDIT, now=T0)
        db_session.commit()

        assert cook_wallet.total_balance == 10000
        assert cook_wallet.unwithdrawable_balance == 10000
        assert cook_wallet.withdrawable_balance == 0
        assert txn.amount == 10000
        assert txn.balance_before == 0
        assert txn.balance_after == 10000
        assert txn.is_withdrawable is False
        _assert_consistent(cook_wallet)

    def test_credit_withdrawable(self, db_session, cook_wallet):
        wallet_ledger.credit(cook_wallet, 2500, wallet_ledger.TXN_PAYMENT_CREDIT, is_withdrawable=True)
        db_session.commit()

        assert cook_wallet.withdrawable_balance == 2500
        assert cook_wallet.unwithdrawable_balance == 0
        _assert_consistent(cook_wallet)

    @pytest.mark.parametrize("amount", [0, -100])
    def test_credit_rejects_non_positive(self, db_session, cook_wallet, amount):
        with pytest.raises(InvalidAmount):
            wallet_ledger.credit(cook_wallet, amount, wallet_ledger.TXN_PAYMENT_CREDIT)
        assert db_session.query(WalletTransaction).count() == 0


class TestDebit:
    def test_debit_draws_from_withdrawable(self, db_session, cook_wallet, fund_wallet):
        fund_wallet(cook_wallet, 10000)

        txn = wallet_ledger.debit(cook_wallet, 6000, wallet_ledger.TXN_WITHDRAWAL)
        db_session.commit()

        assert cook_wallet.withdrawable_balance == 4000
        assert cook_wallet.total_balance == 4000
        assert txn.amount == -6000
        assert txn.gross_amount == 6000
        _assert_consistent(cook_wallet)

    def test_debit_cannot_touch_held_funds(self, db_session, cook_wallet, fund_wallet):
        fund_wallet(cook_wallet, 1000)
        wallet_ledger.credit(cook_wallet, 9000, wallet_ledger.TXN_PAYMENT_CREDIT)
        db_session.commit()

        with pytest.raises(InsufficientFunds):
            wallet_ledger.debit(cook_wallet, 5000, wallet_ledger.TXN_WITHDRAWAL)
        db_session.rollback()

        assert cook_wallet.withdrawable_balance == 1000
        assert cook_wallet.total_balance == 10000

    def test_debit_rejects_zero(self, db_session, cook_wallet):
        with pytest.raises(InvalidAmount):
            wallet_ledger.debit(cook_wallet, 0, wallet_ledger.TXN_WITHDRAWAL)

    def test_debit_held(self, db_session, cook_wallet):
        wallet_ledger.credit(cook_wallet, 8000, wallet_ledger.TXN_PAYMENT_CREDIT)
        wallet_ledger.debit_held(cook_wallet, 3000, wallet_ledger.TXN_REFUND_REVERSAL)
        db_session.commit()

        assert cook_wallet.unwithdrawable_balance == 5000
        assert cook_wallet.total_balance == 5000
        _assert_consistent(cook_wallet)

        with pytest.raises(InsufficientFunds):
            wallet_ledger.debit_held(cook_wallet, 5001, wallet_ledger.TXN_REFUND_REVERSAL)


class TestPromote:
    def test_promote_moves_between_buckets(self, db_session, cook_wallet):
        wallet_ledger.credit(cook_wallet, 10000, wallet_ledger.TXN_PAYMENT_CREDIT)
        txn = wallet_ledger.promote(cook_wallet, 10000, now=T0)
        db_session.commit()

        assert cook_wallet.withdrawable_balance == 10000
        assert cook_wallet.unwithdrawable_balance == 0
        assert cook_wallet.total_balance == 10000
        assert txn.type == wallet_ledger.TXN_BECAME_WITHDRAWABLE
        assert txn.amount == 0
        assert txn.gross_amount == 10000
        _assert_consistent(cook_wallet)

    def test_promote_more_than_held_fails(self, db_session, cook_wallet):
        wallet_ledger.credit(cook_wallet, 100, wallet_ledger.TXN_PAYMENT_CREDIT)
        with pytest.raises(InsufficientFunds):
            wallet_ledger.promote(cook_wallet, 101)


class TestLedgerConservation:
    def test_sum_of_amounts_matches_total(self, db_session, cook_wallet):
        wallet_ledger.credit(cook_wallet, 10000, wallet_ledger.TXN_PAYMENT_CREDIT)
        wallet_ledger.promote(cook_wallet, 7000)
        wallet_ledger.record_memo(cook_wallet, 1100, wallet_ledger.TXN_COMMISSION)
        wallet_ledger.debit(cook_wallet, 2000, wallet_ledger.TXN_WITHDRAWAL)
        wallet_ledger.debit_held(cook_wallet, 500, wallet_ledger.TXN_DEDUCTION_SETTLEMENT)
        db_session.commit()

        assert wallet_ledger.ledger_sum(cook_wallet) == cook_wallet.total_balance == 7500
        assert len(wallet_ledger.list_transactions(cook_wallet)) == 5
        _assert_consistent(cook_wallet)

    def test_client_wallet_is_separate(self, db_session, cook_wallet):
        client = wallet_ledger.get_or_create_client_wallet(901)
        wallet_ledger.credit(client, 3000, wallet_ledger.TXN_REFUND, is_withdrawable=True)
        db_session.commit()

        assert client.withdrawable_balance == 3000
        assert wallet_ledger.ledger_sum(cook_wallet) == 0
        assert wallet_ledger.get_or_create_client_wallet(901).id == client.id
        _assert_consistent(client)

    def test_unknown_transaction_type_rejected(self, db_session, cook_wallet):
        with pytest.raises(ValueError):
            wallet_ledger.credit(cook_wallet, 10, "bonus")
