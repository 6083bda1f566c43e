"""
Pytest fixtures for wallet ledger tests.

Provides an in-memory app with a scriptable payment gateway, per-test table
cleanup, and tenant / order / wallet factories.
"""

from datetime import datetime

import pytest

from cookwallet import create_app
from cookwallet.extensions import db
from cookwallet.models import Order, Tenant
from cookwallet.services import wallet_ledger
from cookwallet.services.payment_gateway import (
    PaymentGateway,
    TRANSFER_FAILED,
    TRANSFER_SUCCESS,
    TransferResult,
)


T0 = datetime(2026, 10, 16, 9, 0, 0)


class FakeGateway(PaymentGateway):
    """
    Scriptable gateway: queue results with succeed() / fail() / time_out();
    with an empty queue every transfer succeeds.
    """

    def __init__(self):
        self.calls = []
        self._queue = []

    def reset(self):
        self.calls.clear()
        self._queue.clear()

    def succeed(self, provider_reference="FLW-OK"):
        self._queue.append(TransferResult(
            status=TRANSFER_SUCCESS,
            provider_reference=provider_reference,
            raw_response={"status": "success", "data": {"id": provider_reference}},
        ))

    def fail(self, error="Insufficient provider balance", times=1):
        for _ in range(times):
            self._queue.append(TransferResult(
                status=TRANSFER_FAILED,
                error=error,
                raw_response={"status": "error", "message": error},
            ))

    def time_out(self):
        self._queue.append(TransferResult(status=TRANSFER_FAILED, error="Connection timeout", is_timeout=True))

    def initiate_transfer(self, amount, currency, destination_account, idempotency_key, provider=None, narration=None):
        self.calls.append({
            "amount": amount,
            "currency": currency,
            "destination_account": destination_account,
            "idempotency_key": idempotency_key,
            "provider": provider,
        })
        if self._queue:
            return self._queue.pop(0)
        return TransferResult(
            status=TRANSFER_SUCCESS,
            provider_reference=f"FLW-{len(self.calls)}",
            raw_response={"status": "success"},
        )


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'GATEWAY_WEBHOOK_HASH': 'test-webhook-hash',
        'PLATFORM_DEFAULT_COMMISSION_RATE': 10.0,
        'WITHDRAWABLE_HOLD_HOURS': 3,
        'MIN_WITHDRAWAL_AMOUNT': 1000,
        'MAX_DAILY_WITHDRAWAL_AMOUNT': 500000,
        'PAYOUT_RETRY_INTERVAL_MINUTES': 15,
    })
    app.extensions['payment_gateway'] = FakeGateway()

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def gateway(app):
    fake = app.extensions['payment_gateway']
    fake.reset()
    return fake


@pytest.fixture(scope='function')
def db_session(app, gateway):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def tenant(db_session):
    """Tenant using the platform default hold period and commission."""
    t = Tenant(name="Mama Ngozi Kitchen", slug="mama-ngozi", is_active=True)
    db_session.add(t)
    db_session.commit()
    return t


@pytest.fixture(scope='function')
def make_order(db_session, tenant):
    """Factory for completed orders (cook 501, client 901 by default)."""
    counter = {"n": 0}

    def _make(subtotal=10000, delivery_fee=0, status="completed", completed_at=T0,
              cook_id=501, client_id=901, tenant_id=None):
        counter["n"] += 1
        order = Order(
            tenant_id=tenant_id or tenant.id,
            cook_id=cook_id,
            client_id=client_id,
            order_number=f"ORD-{counter['n']:04d}",
            status=status,
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            completed_at=completed_at,
        )
        db_session.add(order)
        db_session.commit()
        return order

    return _make


@pytest.fixture(scope='function')
def cook_wallet(db_session, tenant):
    wallet = wallet_ledger.get_or_create_cook_wallet(tenant.id, 501)
    db_session.commit()
    return wallet


@pytest.fixture(scope='function')
def fund_wallet(db_session):
    """Credit a wallet as already-withdrawable (e.g., earnings cleared earlier)."""
    def _fund(wallet, amount, now=T0):
        wallet_ledger.credit(
            wallet,
            amount,
            wallet_ledger.TXN_PAYMENT_CREDIT,
            is_withdrawable=True,
            withdrawable_at=now,
            now=now,
        )
        db_session.commit()
        return wallet

    return _fund
