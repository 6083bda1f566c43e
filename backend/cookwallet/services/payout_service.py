# Overview: Service-layer operations for failed payouts; bounded retries, manual completion and webhook reconciliation.

"""
Payout Retry Coordinator

WHY: A mobile-money transfer that fails must never silently lose the cook's
money. Every failed transfer becomes a PayoutTask that an admin (or the retry
sweep) drives to a terminal state.

STATE MACHINE:
    pending (retry_count 0..3) --(retry succeeds)--> completed
    pending --(admin records out-of-band transfer)--> manually_completed
    pending --(provider webhook confirms success)--> completed

- retry_count only increases, and only when a retry actually calls the
  provider; at MAX_RETRIES only manual completion remains
- A retry claims its attempt (retry_count + 1, attempt_started_at) with a
  conditional UPDATE committed before the provider call; a concurrent retry
  that loses the claim is rejected without calling the provider
- The same idempotency key is sent every time, so two admins clicking
  "retry" can never produce two transfers
- Every retry invocation is audited, including rejected ones
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from flask import current_app
from sqlalchemy import func, or_

from ..extensions import db
from ..models import PayoutTask, WithdrawalRequest
from ..validation import (
    AlreadyResolved,
    ConflictError,
    NotFoundError,
    RetryInProgress,
    RetryLimitExceeded,
    require_reference,
)
from cookwallet.time_utils import utcnow
from .audit_service import (
    EVENT_PAYOUT_DUPLICATE_SETTLEMENT,
    EVENT_PAYOUT_MANUALLY_COMPLETED,
    EVENT_PAYOUT_RETRY,
    EVENT_PAYOUT_RETRY_REJECTED,
    EVENT_PAYOUT_TASK_OPENED,
    EVENT_PAYOUT_WEBHOOK_COMPLETED,
    emit,
)
from .concurrency import lock_for_update, run_with_retry
from .payment_gateway import TransferResult, get_gateway


MAX_RETRIES = 3


# =============================================================================
# PAYOUT TASK STATUS (CONSTANTS)
# =============================================================================

PAYOUT_STATUS_PENDING = "pending"
PAYOUT_STATUS_COMPLETED = "completed"
PAYOUT_STATUS_MANUALLY_COMPLETED = "manually_completed"

VALID_PAYOUT_STATUSES = [
    PAYOUT_STATUS_PENDING,
    PAYOUT_STATUS_COMPLETED,
    PAYOUT_STATUS_MANUALLY_COMPLETED,
]


# =============================================================================
# WITHDRAWAL STATUS (CONSTANTS)
# =============================================================================

WITHDRAWAL_STATUS_PENDING = "pending"
WITHDRAWAL_STATUS_PROCESSING = "processing"
WITHDRAWAL_STATUS_COMPLETED = "completed"
WITHDRAWAL_STATUS_FAILED = "failed"


# Withdrawal provider -> payout task payment method
PAYMENT_METHODS = {
    "mtn_momo": "mtn_mobile_money",
    "orange_money": "orange_money",
}


# =============================================================================
# WEBHOOK RECONCILIATION OUTCOMES
# =============================================================================

RECONCILE_COMPLETED = "completed"
RECONCILE_ALREADY_COMPLETED = "already_completed"
RECONCILE_DUPLICATE_SETTLEMENT = "duplicate_settlement"
RECONCILE_FAILURE_RECORDED = "failure_recorded"
RECONCILE_IGNORED = "ignored"


@dataclass
class PayoutOutcome:
    task: PayoutTask
    succeeded: bool
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "task": self.task.to_dict(),
            "succeeded": self.succeeded,
            "error": self.error,
        }


def _get_task_locked(task_id: int) -> PayoutTask:
    task = (
        lock_for_update(db.session.query(PayoutTask).filter_by(id=task_id))
        .populate_existing()
        .first()
    )
    if not task:
        raise NotFoundError(f"Payout task {task_id} not found")
    return task


def _complete_withdrawal(withdrawal_id: int | None, now: datetime, provider_reference: str | None) -> None:
    if withdrawal_id is None:
        return
    withdrawal = db.session.get(WithdrawalRequest, withdrawal_id)
    if withdrawal is None or withdrawal.status == WITHDRAWAL_STATUS_COMPLETED:
        return
    withdrawal.status = WITHDRAWAL_STATUS_COMPLETED
    withdrawal.completed_at = now
    if provider_reference:
        withdrawal.provider_reference = provider_reference


# =============================================================================
# TASK CREATION
# =============================================================================

def on_transfer_failure(withdrawal: WithdrawalRequest, result: TransferResult, now: datetime | None = None) -> PayoutTask:
    """
    Open (or refresh) the payout task for a failed withdrawal transfer.

    Flush only; the withdrawal processor commits. A repeat failure for the
    same withdrawal updates the failure metadata and never touches
    retry_count.
    """
    now = now or utcnow()
    failure_reason = (result.error or "Transfer failed")[:255]

    task = db.session.query(PayoutTask).filter_by(withdrawal_request_id=withdrawal.id).first()
    if task:
        task.failure_reason = failure_reason
        task.provider_response = result.raw_response or None
        db.session.flush()
        return task

    task = PayoutTask(
        withdrawal_request_id=withdrawal.id,
        tenant_id=withdrawal.tenant_id,
        cook_id=withdrawal.cook_id,
        amount=withdrawal.amount,
        currency=withdrawal.currency,
        mobile_money_number=withdrawal.mobile_money_number,
        payment_method=PAYMENT_METHODS.get(withdrawal.mobile_money_provider, "mtn_mobile_money"),
        status=PAYOUT_STATUS_PENDING,
        retry_count=0,
        failure_reason=failure_reason,
        idempotency_key=withdrawal.idempotency_key,
        provider_response=result.raw_response or None,
        requested_at=withdrawal.requested_at,
        created_at=now,
    )
    db.session.add(task)
    db.session.flush()

    emit(
        EVENT_PAYOUT_TASK_OPENED,
        entity_type="payout_task",
        entity_id=task.id,
        tenant_id=task.tenant_id,
        occurred_at=now,
        withdrawal_request_id=withdrawal.id,
        amount=task.amount,
        failure_reason=failure_reason,
        is_timeout=result.is_timeout,
    )
    current_app.logger.warning(
        "Payout task %s opened for withdrawal %s: %s", task.id, withdrawal.id, failure_reason
    )
    return task


# =============================================================================
# RETRY
# =============================================================================

def _reject(task: PayoutTask, actor_id: int | None, now: datetime, reason: str) -> None:
    emit(
        EVENT_PAYOUT_RETRY_REJECTED,
        entity_type="payout_task",
        entity_id=task.id,
        actor_id=actor_id,
        tenant_id=task.tenant_id,
        occurred_at=now,
        reason=reason,
        status=task.status,
        retry_count=task.retry_count,
    )
    db.session.commit()


def _stale_before(now: datetime) -> datetime:
    return now - timedelta(minutes=int(current_app.config["PAYOUT_ATTEMPT_STALE_MINUTES"]))


def _attempt_in_flight(task: PayoutTask, now: datetime) -> bool:
    return task.attempt_started_at is not None and task.attempt_started_at > _stale_before(now)


def _rejection(task: PayoutTask, now: datetime) -> tuple[str, ConflictError] | None:
    if task.status != PAYOUT_STATUS_PENDING:
        return "already_resolved", AlreadyResolved(f"Payout task {task.id} is already {task.status}")
    if task.retry_count >= MAX_RETRIES:
        return "retry_limit_exceeded", RetryLimitExceeded(
            f"Payout task {task.id} has used all {MAX_RETRIES} retries; complete it manually"
        )
    if _attempt_in_flight(task, now):
        return "attempt_in_progress", RetryInProgress(
            f"Payout task {task.id} already has a transfer attempt in progress"
        )
    return None


def _claim_attempt(task: PayoutTask, now: datetime) -> bool:
    """
    Reserve the next retry slot with a conditional UPDATE and commit it
    before the provider is called.

    Matches no row when a concurrent retry claimed the task first, or the
    task was resolved or exhausted since it was read.
    """
    claimed = (
        db.session.query(PayoutTask)
        .filter(
            PayoutTask.id == task.id,
            PayoutTask.status == PAYOUT_STATUS_PENDING,
            PayoutTask.retry_count == task.retry_count,
            PayoutTask.retry_count < MAX_RETRIES,
            or_(
                PayoutTask.attempt_started_at.is_(None),
                PayoutTask.attempt_started_at <= _stale_before(now),
            ),
        )
        .update(
            {
                PayoutTask.retry_count: PayoutTask.retry_count + 1,
                PayoutTask.last_retry_at: now,
                PayoutTask.attempt_started_at: now,
            },
            synchronize_session=False,
        )
    )
    if claimed == 0:
        db.session.rollback()
        return False
    db.session.commit()
    return True


def _release_attempt(task_id: int) -> None:
    task = _get_task_locked(task_id)
    task.attempt_started_at = None
    db.session.commit()


def retry(task_id: int, actor_id: int | None, now: datetime | None = None) -> PayoutOutcome:
    """
    Re-attempt a failed transfer with its original parameters.

    The attempt is claimed and committed before the provider call, so at most
    one transfer per task is ever in flight, even on databases that ignore
    row locks. Deliberately not wrapped in run_with_retry: a replayed
    transaction would call the provider a second time.

    Raises:
        NotFoundError: unknown task
        AlreadyResolved: task is completed or manually_completed
        RetryLimitExceeded: retry_count already at MAX_RETRIES
        RetryInProgress: another attempt for the task has not returned yet
    """
    now = now or utcnow()
    task = _get_task_locked(task_id)

    rejection = _rejection(task, now)
    if rejection is None and not _claim_attempt(task, now):
        task = _get_task_locked(task_id)
        rejection = _rejection(task, now) or (
            "attempt_in_progress",
            RetryInProgress(f"Payout task {task_id} already has a transfer attempt in progress"),
        )
    if rejection is not None:
        reason, exc = rejection
        _reject(task, actor_id, now, reason)
        raise exc

    task = _get_task_locked(task_id)
    try:
        result = get_gateway().initiate_transfer(
            amount=task.amount,
            currency=task.currency,
            destination_account=task.mobile_money_number,
            idempotency_key=task.idempotency_key,
            provider=task.payment_method,
        )
    except Exception:
        db.session.rollback()
        _release_attempt(task_id)
        raise

    # A webhook or an admin may have resolved the task during the call
    task = _get_task_locked(task_id)
    task.attempt_started_at = None
    task.provider_response = result.raw_response or None

    if task.status == PAYOUT_STATUS_PENDING:
        if result.succeeded:
            task.status = PAYOUT_STATUS_COMPLETED
            task.completed_at = now
            task.provider_reference = result.provider_reference
            _complete_withdrawal(task.withdrawal_request_id, now, result.provider_reference)
        else:
            task.failure_reason = (result.error or "Transfer failed")[:255]

    emit(
        EVENT_PAYOUT_RETRY,
        entity_type="payout_task",
        entity_id=task.id,
        actor_id=actor_id,
        tenant_id=task.tenant_id,
        occurred_at=now,
        outcome="success" if result.succeeded else "failed",
        retry_count=task.retry_count,
        error=result.error,
        is_timeout=result.is_timeout,
    )
    if result.succeeded and task.status == PAYOUT_STATUS_MANUALLY_COMPLETED:
        emit(
            EVENT_PAYOUT_DUPLICATE_SETTLEMENT,
            entity_type="payout_task",
            entity_id=task.id,
            tenant_id=task.tenant_id,
            occurred_at=now,
            provider_reference=result.provider_reference,
            manual_reference=task.reference_number,
            amount=task.amount,
        )
        current_app.logger.warning(
            "Duplicate settlement: payout task %s was manually completed (ref %s) "
            "while retry transfer %s was in flight",
            task.id, task.reference_number, result.provider_reference,
        )
    db.session.commit()

    if not result.succeeded:
        current_app.logger.warning(
            "Payout task %s retry %s/%s failed: %s",
            task.id, task.retry_count, MAX_RETRIES, result.error,
        )
    return PayoutOutcome(task=task, succeeded=result.succeeded, error=result.error)


def retry_sweep(now: datetime | None = None) -> list[PayoutOutcome]:
    """
    Automatic retries for pending tasks whose last attempt is older than
    PAYOUT_RETRY_INTERVAL_MINUTES. One task failing does not stop the batch.
    """
    now = now or utcnow()
    interval = timedelta(minutes=int(current_app.config["PAYOUT_RETRY_INTERVAL_MINUTES"]))
    cutoff = now - interval

    candidate_ids = [
        row.id
        for row in db.session.query(PayoutTask.id)
        .filter(
            PayoutTask.status == PAYOUT_STATUS_PENDING,
            PayoutTask.retry_count < MAX_RETRIES,
            func.coalesce(PayoutTask.last_retry_at, PayoutTask.created_at) <= cutoff,
            or_(
                PayoutTask.attempt_started_at.is_(None),
                PayoutTask.attempt_started_at <= _stale_before(now),
            ),
        )
        .order_by(PayoutTask.created_at.asc(), PayoutTask.id.asc())
        .all()
    ]

    outcomes = []
    for task_id in candidate_ids:
        try:
            outcomes.append(retry(task_id, None, now))
        except ConflictError as exc:
            # Resolved or exhausted between selection and lock
            current_app.logger.info("Skipping payout task %s: %s", task_id, exc)
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Automatic retry failed for payout task %s", task_id)

    if candidate_ids:
        current_app.logger.info(
            "Payout retry sweep: %s due, %s succeeded",
            len(candidate_ids), sum(1 for o in outcomes if o.succeeded),
        )
    return outcomes


# =============================================================================
# MANUAL COMPLETION
# =============================================================================

def mark_manually_completed(
    task_id: int,
    reference_number: Any,
    notes: str | None,
    actor_id: int,
    now: datetime | None = None,
) -> PayoutTask:
    """
    Record that an admin paid the cook outside the automatic flow.

    Allowed at any retry_count while the task is pending.

    Raises:
        MissingReference: blank reference_number
        NotFoundError: unknown task
        AlreadyResolved: task no longer pending
    """
    reference = require_reference(reference_number)
    now = now or utcnow()

    def _op():
        task = _get_task_locked(task_id)
        if task.status != PAYOUT_STATUS_PENDING:
            raise AlreadyResolved(f"Payout task {task_id} is already {task.status}")

        task.status = PAYOUT_STATUS_MANUALLY_COMPLETED
        task.reference_number = reference
        task.resolution_notes = (notes or "").strip() or None
        task.completed_by = actor_id
        task.completed_at = now
        _complete_withdrawal(task.withdrawal_request_id, now, None)

        emit(
            EVENT_PAYOUT_MANUALLY_COMPLETED,
            entity_type="payout_task",
            entity_id=task.id,
            actor_id=actor_id,
            tenant_id=task.tenant_id,
            occurred_at=now,
            reference_number=reference,
            retry_count=task.retry_count,
        )
        db.session.commit()
        return task

    task = run_with_retry(_op)
    current_app.logger.info("Payout task %s manually completed by %s (ref %s)", task.id, actor_id, reference)
    return task


# =============================================================================
# WEBHOOK RECONCILIATION
# =============================================================================

def reconcile_transfer_webhook(
    idempotency_key: str,
    status: str,
    provider_reference: str | None = None,
    raw: dict | None = None,
    now: datetime | None = None,
) -> str:
    """
    Apply a provider transfer notification.

    - success on a pending task closes it as completed
    - success after an admin already paid manually is a duplicate settlement:
      state is left alone and an alert is recorded for finance
    - failure only refreshes the failure metadata of a pending task
    """
    now = now or utcnow()
    succeeded = (status or "").strip().lower() in ("success", "successful")

    def _op():
        withdrawal = (
            lock_for_update(db.session.query(WithdrawalRequest).filter_by(idempotency_key=idempotency_key))
            .first()
        )
        if withdrawal is None:
            return RECONCILE_IGNORED

        task = (
            lock_for_update(db.session.query(PayoutTask).filter_by(withdrawal_request_id=withdrawal.id))
            .populate_existing()
            .first()
        )

        if not succeeded:
            if task is None or task.status != PAYOUT_STATUS_PENDING:
                return RECONCILE_IGNORED
            task.failure_reason = ((raw or {}).get("complete_message") or "Transfer failed")[:255]
            task.provider_response = raw
            db.session.commit()
            return RECONCILE_FAILURE_RECORDED

        if task is None:
            if withdrawal.status == WITHDRAWAL_STATUS_COMPLETED:
                return RECONCILE_ALREADY_COMPLETED
            _complete_withdrawal(withdrawal.id, now, provider_reference)
            db.session.commit()
            return RECONCILE_COMPLETED

        if task.status == PAYOUT_STATUS_PENDING:
            task.status = PAYOUT_STATUS_COMPLETED
            task.completed_at = now
            task.provider_reference = provider_reference
            task.provider_response = raw
            _complete_withdrawal(withdrawal.id, now, provider_reference)
            emit(
                EVENT_PAYOUT_WEBHOOK_COMPLETED,
                entity_type="payout_task",
                entity_id=task.id,
                tenant_id=task.tenant_id,
                occurred_at=now,
                provider_reference=provider_reference,
                retry_count=task.retry_count,
            )
            db.session.commit()
            return RECONCILE_COMPLETED

        if task.status == PAYOUT_STATUS_COMPLETED:
            # Same transfer as the successful retry (same idempotency key)
            return RECONCILE_ALREADY_COMPLETED

        emit(
            EVENT_PAYOUT_DUPLICATE_SETTLEMENT,
            entity_type="payout_task",
            entity_id=task.id,
            tenant_id=task.tenant_id,
            occurred_at=now,
            provider_reference=provider_reference,
            manual_reference=task.reference_number,
            amount=task.amount,
        )
        db.session.commit()
        current_app.logger.warning(
            "Duplicate settlement: payout task %s was manually completed (ref %s) "
            "but provider confirmed transfer %s",
            task.id, task.reference_number, provider_reference,
        )
        return RECONCILE_DUPLICATE_SETTLEMENT

    outcome = run_with_retry(_op)
    if outcome in (RECONCILE_IGNORED, RECONCILE_ALREADY_COMPLETED):
        db.session.rollback()
    return outcome


# =============================================================================
# BACKLOG QUERIES
# =============================================================================

def pending_count() -> int:
    return db.session.query(func.count(PayoutTask.id)).filter(PayoutTask.status == PAYOUT_STATUS_PENDING).scalar() or 0


def list_tasks(status: str | None = None, search: str | None = None) -> list[PayoutTask]:
    query = db.session.query(PayoutTask)
    if status:
        query = query.filter(PayoutTask.status == status)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            or_(
                PayoutTask.mobile_money_number.ilike(pattern),
                PayoutTask.idempotency_key.ilike(pattern),
                PayoutTask.reference_number.ilike(pattern),
                PayoutTask.failure_reason.ilike(pattern),
            )
        )
    return query.order_by(PayoutTask.created_at.desc(), PayoutTask.id.desc()).all()


def get_task(task_id: int) -> PayoutTask:
    task = db.session.get(PayoutTask, task_id)
    if not task:
        raise NotFoundError(f"Payout task {task_id} not found")
    return task
