# Overview: Pytest coverage for the clearance hold / sweep / pause / resume / cancel state machine.

"""
Clearance Scheduler Tests

Covers the hold window, sweep idempotency, complaint signals and the
exclusivity of the cleared / paused / cancelled flags.
"""

from datetime import timedelta

import pytest

from cookwallet.extensions import db
from cookwallet.models import AuditEvent, CookWallet, OrderClearance, WalletTransaction
from cookwallet.services import clearance_service, wallet_ledger
from cookwallet.services.audit_service import AuditSink
from cookwallet.validation import ConflictError, InvalidTransition, NotFoundError

from conftest import T0


def _open(db_session, order, amount=10000, now=T0):
    clearance = clearance_service.open_clearance(order, amount, now)
    db_session.commit()
    return clearance


def _flags(clearance):
    return sum([bool(clearance.is_cleared), bool(clearance.is_paused), bool(clearance.is_cancelled)])


class TestOpen:
    def test_open_holds_funds(self, db_session, make_order):
        """10,000 XAF with the default 3h hold lands in unwithdrawable."""
        order = make_order()
        clearance = _open(db_session, order)

        wallet = db.session.get(CookWallet, clearance.cook_wallet_id)
        assert clearance.hold_hours == 3
        assert clearance.withdrawable_at == T0 + timedelta(hours=3)
        assert wallet.unwithdrawable_balance == 10000
        assert wallet.withdrawable_balance == 0
        assert clearance_service.clearance_state(clearance, T0) == clearance_service.STATE_HELD

    def test_tenant_override_hold_hours(self, db_session, tenant, make_order):
        tenant.withdrawable_hold_hours = 24
        db_session.commit()

        clearance = _open(db_session, make_order())
        assert clearance.hold_hours == 24
        assert clearance.withdrawable_at == T0 + timedelta(hours=24)

    def test_zero_hold_is_immediately_eligible(self, db_session, tenant, make_order):
        tenant.withdrawable_hold_hours = 0
        db_session.commit()

        clearance = _open(db_session, make_order())
        assert clearance_service.clearance_state(clearance, T0) == clearance_service.STATE_ELIGIBLE

        cleared = clearance_service.sweep(T0)
        assert [c.id for c in cleared] == [clearance.id]

    def test_second_open_for_same_order_conflicts(self, db_session, make_order):
        order = make_order()
        _open(db_session, order)

        with pytest.raises(ConflictError):
            clearance_service.open_clearance(order, 500, T0)
        db_session.rollback()
        assert db_session.query(OrderClearance).filter_by(order_id=order.id).count() == 1


class TestSweep:
    def test_sweep_promotes_after_hold(self, db_session, make_order):
        clearance = _open(db_session, make_order())

        assert clearance_service.sweep(T0 + timedelta(hours=2, minutes=59)) == []

        cleared = clearance_service.sweep(T0 + timedelta(hours=3))
        assert len(cleared) == 1

        db_session.refresh(clearance)
        wallet = db.session.get(CookWallet, clearance.cook_wallet_id)
        assert clearance.is_cleared is True
        assert clearance.cleared_at == T0 + timedelta(hours=3)
        assert wallet.withdrawable_balance == 10000
        assert wallet.unwithdrawable_balance == 0
        assert wallet_ledger.check_wallet_invariants(wallet) == []

        promoted = db_session.query(WalletTransaction).filter_by(
            type=wallet_ledger.TXN_BECAME_WITHDRAWABLE
        ).one()
        assert promoted.gross_amount == 10000

    def test_sweep_twice_promotes_once(self, db_session, make_order):
        _open(db_session, make_order())
        later = T0 + timedelta(hours=4)

        assert len(clearance_service.sweep(later)) == 1
        assert clearance_service.sweep(later) == []

        assert db_session.query(WalletTransaction).filter_by(
            type=wallet_ledger.TXN_BECAME_WITHDRAWABLE
        ).count() == 1

    def test_sweep_processes_oldest_first(self, db_session, make_order):
        late = _open(db_session, make_order(completed_at=T0 + timedelta(minutes=30)))
        early = _open(db_session, make_order(completed_at=T0))

        cleared = clearance_service.sweep(T0 + timedelta(hours=5))
        assert [c.id for c in cleared] == [early.id, late.id]

    def test_sweep_skips_paused_and_cancelled(self, db_session, make_order):
        paused = _open(db_session, make_order())
        cancelled = _open(db_session, make_order())
        clearance_service.pause(paused.id, T0 + timedelta(hours=1))
        clearance_service.cancel(cancelled.id, T0 + timedelta(hours=1))

        assert clearance_service.sweep(T0 + timedelta(hours=10)) == []

    def test_failed_item_does_not_stop_batch(self, db_session, make_order, monkeypatch):
        first = _open(db_session, make_order())
        second = _open(db_session, make_order())

        real_promote = wallet_ledger.promote
        calls = {"n": 0}

        def flaky_promote(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("boom")
            return real_promote(*args, **kwargs)

        monkeypatch.setattr(wallet_ledger, "promote", flaky_promote)

        cleared = clearance_service.sweep(T0 + timedelta(hours=3))
        assert [c.id for c in cleared] == [second.id]

        db_session.refresh(first)
        assert first.is_cleared is False

    def test_sweep_writes_audit_event(self, db_session, make_order):
        clearance = _open(db_session, make_order())
        clearance_service.sweep(T0 + timedelta(hours=3))

        events = db_session.query(AuditEvent).filter_by(
            entity_type="order_clearance", entity_id=clearance.id
        ).order_by(AuditEvent.id).all()
        assert [e.event_type for e in events] == ["clearance.opened", "clearance.cleared"]


class TestPauseResume:
    def test_pause_then_resume_restores_remaining_time(self, db_session, make_order):
        """Paused 1h into a 3h hold, resumed 2h later: resume + 7,200 s."""
        clearance = _open(db_session, make_order())

        paused = clearance_service.pause(clearance.id, T0 + timedelta(hours=1))
        assert paused.is_paused is True
        assert paused.remaining_seconds_at_pause == 7200

        resume_at = T0 + timedelta(hours=3)
        resumed = clearance_service.resume(clearance.id, resume_at)
        assert resumed.is_paused is False
        assert resumed.withdrawable_at == resume_at + timedelta(seconds=7200)

        assert clearance_service.sweep(resume_at + timedelta(seconds=7199)) == []
        assert len(clearance_service.sweep(resume_at + timedelta(seconds=7200))) == 1

    def test_pause_eligible_clearance_keeps_zero_remaining(self, db_session, make_order):
        clearance = _open(db_session, make_order())
        paused = clearance_service.pause(clearance.id, T0 + timedelta(hours=5))
        assert paused.remaining_seconds_at_pause == 0

        resumed = clearance_service.resume(clearance.id, T0 + timedelta(hours=6))
        assert resumed.withdrawable_at == T0 + timedelta(hours=6)

    def test_double_pause_is_invalid(self, db_session, make_order):
        clearance = _open(db_session, make_order())
        clearance_service.pause(clearance.id, T0)
        with pytest.raises(InvalidTransition):
            clearance_service.pause(clearance.id, T0)

    def test_resume_without_pause_is_invalid(self, db_session, make_order):
        clearance = _open(db_session, make_order())
        with pytest.raises(InvalidTransition):
            clearance_service.resume(clearance.id, T0)

    def test_pause_cleared_is_invalid(self, db_session, make_order):
        clearance = _open(db_session, make_order())
        clearance_service.sweep(T0 + timedelta(hours=3))
        with pytest.raises(InvalidTransition):
            clearance_service.pause(clearance.id, T0 + timedelta(hours=4))


class TestCancel:
    def test_cancel_from_paused_clears_pause_flag(self, db_session, make_order):
        clearance = _open(db_session, make_order())
        clearance_service.pause(clearance.id, T0 + timedelta(hours=1))

        cancelled = clearance_service.cancel(clearance.id, T0 + timedelta(hours=2))
        assert cancelled.is_cancelled is True
        assert cancelled.is_paused is False
        assert _flags(cancelled) == 1

    def test_cancel_keeps_held_credit(self, db_session, make_order):
        clearance = _open(db_session, make_order())
        clearance_service.cancel(clearance.id, T0)

        wallet = db.session.get(CookWallet, clearance.cook_wallet_id)
        assert wallet.unwithdrawable_balance == 10000

    def test_cancelled_is_terminal(self, db_session, make_order):
        clearance = _open(db_session, make_order())
        clearance_service.cancel(clearance.id, T0)

        for signal in (clearance_service.pause, clearance_service.resume, clearance_service.cancel):
            with pytest.raises(InvalidTransition):
                signal(clearance.id, T0)

    def test_order_wrappers(self, db_session, make_order):
        order = make_order()
        _open(db_session, order)

        assert clearance_service.pause_for_order(order.id, T0).is_paused is True
        assert clearance_service.resume_for_order(order.id, T0).is_paused is False
        assert clearance_service.cancel_for_order(order.id, T0).is_cancelled is True

        with pytest.raises(NotFoundError):
            clearance_service.pause_for_order(999999, T0)


class TestAuditSink:
    def test_custom_sink_receives_events(self, app, db_session, make_order, monkeypatch):
        recorded = []

        class RecordingSink(AuditSink):
            def record(self, entry):
                recorded.append(entry)

        monkeypatch.setitem(app.extensions, "audit_sink", RecordingSink())

        clearance = _open(db_session, make_order())

        assert [(r.event_type, r.entity_id) for r in recorded] == [("clearance.opened", clearance.id)]
        assert recorded[0].payload["hold_hours"] == 3
        assert db_session.query(AuditEvent).count() == 0
