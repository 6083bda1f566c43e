# Overview: Pytest coverage for the Flask CLI command groups (sweeps, backlog, ledger verify).

from datetime import timedelta

import pytest

from cookwallet.extensions import db
from cookwallet.models import CookWallet
from cookwallet.services import order_settlement_service, withdrawal_service

from conftest import T0


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestClearanceCommands:
    def test_sweep_with_now(self, runner, db_session, make_order):
        order = make_order()
        order_settlement_service.complete_order(order.id, now=T0)

        early = runner.invoke(args=["clearances", "sweep", "--now", "2026-10-16T11:59:00Z"])
        assert early.exit_code == 0
        assert "DONE 0 clearance(s) cleared" in early.output

        result = runner.invoke(args=["clearances", "sweep", "--now", "2026-10-16T12:00:00Z"])
        assert result.exit_code == 0
        assert f"PASS Cleared order {order.id}: 9000 XAF" in result.output

    def test_bad_now(self, runner, db_session):
        result = runner.invoke(args=["clearances", "sweep", "--now", "yesterday"])
        assert result.exit_code != 0
        assert "ISO-8601" in result.output


class TestPayoutCommands:
    def test_process_and_backlog(self, runner, db_session, tenant, cook_wallet, fund_wallet, gateway):
        fund_wallet(cook_wallet, 20000)
        withdrawal_service.submit_withdrawal(tenant.id, 501, 5000, "677123456", now=T0)
        gateway.fail()

        result = runner.invoke(args=["payouts", "process-withdrawals"])
        assert result.exit_code == 0
        assert "FAIL Withdrawal" in result.output
        assert "escalated to support" in result.output

        backlog = runner.invoke(args=["payouts", "backlog", "--list"])
        assert "Pending payout tasks: 1" in backlog.output
        assert "677123456" in backlog.output

    def test_retry_sweep(self, runner, db_session, tenant, cook_wallet, fund_wallet, gateway):
        fund_wallet(cook_wallet, 20000)
        withdrawal = withdrawal_service.submit_withdrawal(tenant.id, 501, 5000, "677123456", now=T0)
        gateway.fail()
        withdrawal_service.process_withdrawal(withdrawal.id, now=T0)

        later = (T0 + timedelta(minutes=20)).isoformat()
        result = runner.invoke(args=["payouts", "retry-sweep", "--now", later])
        assert result.exit_code == 0
        assert "PASS Task" in result.output
        assert "DONE 1 retry attempt(s)" in result.output


class TestLedgerVerify:
    def test_clean_ledger(self, runner, db_session, cook_wallet, fund_wallet):
        fund_wallet(cook_wallet, 7000)
        result = runner.invoke(args=["ledger", "verify"])
        assert result.exit_code == 0
        assert "0 problem(s)" in result.output

    def test_detects_drift(self, runner, db_session, cook_wallet, fund_wallet):
        fund_wallet(cook_wallet, 7000)
        # Simulate an out-of-band balance edit that bypassed the ledger
        db.session.query(CookWallet).filter_by(id=cook_wallet.id).update(
            {"total_balance": 8000, "withdrawable_balance": 8000}, synchronize_session=False
        )
        db.session.commit()

        result = runner.invoke(args=["ledger", "verify", "--tenant-id", str(cook_wallet.tenant_id)])
        assert result.exit_code == 1
        assert "ledger sum 7000 != total_balance 8000" in result.output
