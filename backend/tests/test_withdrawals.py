# Overview: Pytest coverage for cook withdrawals; validation, limits and transfer processing.

"""
Withdrawal Tests

Submission debits the withdrawable balance immediately. Processing calls the
(fake) gateway; a failed transfer opens a payout task and leaves the funds
committed to it.
"""

from datetime import timedelta

import pytest

from cookwallet.models import AuditEvent, CookWallet, PayoutTask, WalletTransaction
from cookwallet.services import wallet_ledger, withdrawal_service
from cookwallet.services.payout_service import (
    WITHDRAWAL_STATUS_COMPLETED,
    WITHDRAWAL_STATUS_FAILED,
    WITHDRAWAL_STATUS_PENDING,
)
from cookwallet.validation import (
    AlreadyResolved,
    ConflictError,
    InsufficientFunds,
    InvalidAmount,
    NotFoundError,
    ValidationError,
)

from conftest import T0


@pytest.fixture
def funded(db_session, cook_wallet, fund_wallet):
    return fund_wallet(cook_wallet, 50000)


class TestPhoneNumbers:
    @pytest.mark.parametrize("raw,expected", [
        ("677123456", "677123456"),
        ("+237 677 12 34 56", "677123456"),
        ("237677123456", "677123456"),
        ("(677)-123-456", "677123456"),
    ])
    def test_normalize(self, raw, expected):
        assert withdrawal_service.normalize_phone(raw) == expected

    @pytest.mark.parametrize("phone,valid", [
        ("677123456", True),
        ("+237699123456", True),
        ("77123456", False),
        ("577123456", False),
        ("6771234567", False),
        ("", False),
    ])
    def test_validity(self, phone, valid):
        assert withdrawal_service.is_valid_mobile_money_number(phone) is valid

    @pytest.mark.parametrize("phone,provider", [
        ("699123456", "orange_money"),
        ("655123456", "orange_money"),
        ("659123456", "orange_money"),
        ("677123456", "mtn_momo"),
        ("650123456", "mtn_momo"),
        ("680123456", "mtn_momo"),
    ])
    def test_detect_provider(self, phone, provider):
        assert withdrawal_service.detect_provider(phone) == provider


class TestSubmit:
    def test_submit_debits_withdrawable(self, db_session, tenant, funded):
        withdrawal = withdrawal_service.submit_withdrawal(tenant.id, 501, "15000", "+237 699 12 34 56", now=T0)

        assert withdrawal.status == WITHDRAWAL_STATUS_PENDING
        assert withdrawal.amount == 15000
        assert withdrawal.mobile_money_number == "699123456"
        assert withdrawal.mobile_money_provider == "orange_money"
        assert withdrawal.idempotency_key == f"WD-{withdrawal.id}"

        wallet = db_session.get(CookWallet, funded.id)
        assert wallet.withdrawable_balance == 35000
        assert wallet_ledger.check_wallet_invariants(wallet) == []
        txn = db_session.query(WalletTransaction).filter_by(type=wallet_ledger.TXN_WITHDRAWAL).one()
        assert txn.amount == -15000
        assert txn.details["withdrawal_request_id"] == withdrawal.id

    @pytest.mark.parametrize("amount", [999, 0, -5, "12.5", "1e4", None])
    def test_invalid_amounts(self, db_session, tenant, funded, amount):
        with pytest.raises(InvalidAmount):
            withdrawal_service.submit_withdrawal(tenant.id, 501, amount, "677123456", now=T0)

    def test_minimum_is_inclusive(self, db_session, tenant, funded):
        withdrawal = withdrawal_service.submit_withdrawal(tenant.id, 501, 1000, "677123456", now=T0)
        assert withdrawal.amount == 1000

    def test_invalid_phone(self, db_session, tenant, funded):
        with pytest.raises(ValidationError):
            withdrawal_service.submit_withdrawal(tenant.id, 501, 5000, "12345", now=T0)

    def test_invalid_provider(self, db_session, tenant, funded):
        with pytest.raises(ValidationError):
            withdrawal_service.submit_withdrawal(tenant.id, 501, 5000, "677123456", provider="paypal", now=T0)

    def test_held_funds_not_withdrawable(self, db_session, tenant, cook_wallet):
        wallet_ledger.credit(cook_wallet, 20000, wallet_ledger.TXN_PAYMENT_CREDIT, now=T0)
        db_session.commit()

        with pytest.raises(InsufficientFunds):
            withdrawal_service.submit_withdrawal(tenant.id, 501, 5000, "677123456", now=T0)

        wallet = db_session.get(CookWallet, cook_wallet.id)
        assert wallet.unwithdrawable_balance == 20000
        assert db_session.query(WalletTransaction).filter_by(type=wallet_ledger.TXN_WITHDRAWAL).count() == 0

    def test_daily_limit(self, db_session, tenant, cook_wallet, fund_wallet):
        fund_wallet(cook_wallet, 700000)

        withdrawal_service.submit_withdrawal(tenant.id, 501, 300000, "677123456", now=T0)
        withdrawal_service.submit_withdrawal(tenant.id, 501, 200000, "677123456", now=T0 + timedelta(hours=1))

        with pytest.raises(ConflictError):
            withdrawal_service.submit_withdrawal(tenant.id, 501, 1000, "677123456", now=T0 + timedelta(hours=2))

        # Next local day (Africa/Douala, UTC+1) starts at 23:00 UTC
        next_day = T0.replace(hour=23, minute=0)
        withdrawal = withdrawal_service.submit_withdrawal(tenant.id, 501, 1000, "677123456", now=next_day)
        assert withdrawal.amount == 1000

    def test_failed_withdrawals_do_not_count_toward_limit(self, db_session, tenant, cook_wallet, fund_wallet, gateway):
        fund_wallet(cook_wallet, 700000)
        first = withdrawal_service.submit_withdrawal(tenant.id, 501, 500000, "677123456", now=T0)
        gateway.fail()
        withdrawal_service.process_withdrawal(first.id, now=T0)

        withdrawal = withdrawal_service.submit_withdrawal(tenant.id, 501, 100000, "677123456", now=T0)
        assert withdrawal.status == WITHDRAWAL_STATUS_PENDING


class TestProcess:
    def test_success(self, db_session, tenant, funded, gateway):
        withdrawal = withdrawal_service.submit_withdrawal(tenant.id, 501, 10000, "677123456", now=T0)
        gateway.succeed("FLW-123")

        outcome = withdrawal_service.process_withdrawal(withdrawal.id, now=T0)

        assert outcome.succeeded is True
        assert outcome.withdrawal.status == WITHDRAWAL_STATUS_COMPLETED
        assert outcome.withdrawal.provider_reference == "FLW-123"
        assert gateway.calls[0]["idempotency_key"] == withdrawal.idempotency_key
        assert gateway.calls[0]["provider"] == "mtn_momo"
        assert db_session.query(PayoutTask).count() == 0

    def test_failure_opens_task_and_keeps_funds_committed(self, db_session, tenant, funded, gateway):
        withdrawal = withdrawal_service.submit_withdrawal(tenant.id, 501, 10000, "677123456", now=T0)
        gateway.fail("Insufficient provider balance")

        outcome = withdrawal_service.process_withdrawal(withdrawal.id, now=T0)

        assert outcome.succeeded is False
        assert outcome.message == withdrawal_service.FAILED_TRANSFER_MESSAGE
        assert outcome.withdrawal.status == WITHDRAWAL_STATUS_FAILED
        assert outcome.withdrawal.failure_reason == "Insufficient provider balance"

        task = db_session.query(PayoutTask).one()
        assert task.withdrawal_request_id == withdrawal.id
        assert task.retry_count == 0

        wallet = db_session.get(CookWallet, funded.id)
        assert wallet.withdrawable_balance == 40000
        assert db_session.query(WalletTransaction).filter_by(
            type=wallet_ledger.TXN_WITHDRAWAL_REVERSAL
        ).count() == 0

    def test_timeout_treated_as_failure(self, db_session, tenant, funded, gateway):
        withdrawal = withdrawal_service.submit_withdrawal(tenant.id, 501, 10000, "677123456", now=T0)
        gateway.time_out()

        outcome = withdrawal_service.process_withdrawal(withdrawal.id, now=T0)
        assert outcome.succeeded is False

        event = db_session.query(AuditEvent).filter_by(event_type="payout.task_opened").one()
        assert event.payload["is_timeout"] is True

    def test_reprocess_is_already_resolved(self, db_session, tenant, funded, gateway):
        withdrawal = withdrawal_service.submit_withdrawal(tenant.id, 501, 10000, "677123456", now=T0)
        withdrawal_service.process_withdrawal(withdrawal.id, now=T0)

        with pytest.raises(AlreadyResolved):
            withdrawal_service.process_withdrawal(withdrawal.id, now=T0)
        assert len(gateway.calls) == 1

    def test_unknown_withdrawal(self, db_session):
        with pytest.raises(NotFoundError):
            withdrawal_service.process_withdrawal(31337)

    def test_batch_processes_oldest_first(self, db_session, tenant, funded, gateway):
        later = withdrawal_service.submit_withdrawal(tenant.id, 501, 2000, "677123456", now=T0 + timedelta(minutes=5))
        earlier = withdrawal_service.submit_withdrawal(tenant.id, 501, 3000, "699123456", now=T0)
        gateway.succeed("A")
        gateway.fail()

        outcomes = withdrawal_service.process_pending_withdrawals(now=T0 + timedelta(minutes=10))

        assert [o.withdrawal.id for o in outcomes] == [earlier.id, later.id]
        assert [o.succeeded for o in outcomes] == [True, False]
        assert withdrawal_service.process_pending_withdrawals(now=T0 + timedelta(minutes=11)) == []

    def test_list_withdrawals(self, db_session, tenant, funded):
        first = withdrawal_service.submit_withdrawal(tenant.id, 501, 2000, "677123456", now=T0)
        second = withdrawal_service.submit_withdrawal(tenant.id, 501, 3000, "677123456", now=T0 + timedelta(minutes=1))

        wallet = db_session.get(CookWallet, funded.id)
        assert [w.id for w in withdrawal_service.list_withdrawals(wallet)] == [second.id, first.id]
        assert withdrawal_service.list_withdrawals(wallet, status=WITHDRAWAL_STATUS_COMPLETED) == []
