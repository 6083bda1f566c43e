# Overview: Service-layer audit sink; records every state-changing wallet operation.

"""
Audit Sink

WHY: Every balance movement, clearance transition, payout attempt and
commission change must be reconstructable after the fact (who, when, what).

DESIGN:
- Services build an AuditRecord and hand it to the configured sink
- DatabaseAuditSink appends an AuditEvent row in the caller's transaction,
  so the audit trail commits or rolls back together with the change it records
- The sink lives in app.extensions["audit_sink"] and can be swapped (tests,
  external log shipping) without touching the services
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from flask import current_app

from ..extensions import db
from ..models import AuditEvent
from cookwallet.time_utils import utcnow


# =============================================================================
# EVENT TYPES (CONSTANTS)
# =============================================================================

EVENT_CLEARANCE_OPENED = "clearance.opened"
EVENT_CLEARANCE_CLEARED = "clearance.cleared"
EVENT_CLEARANCE_PAUSED = "clearance.paused"
EVENT_CLEARANCE_RESUMED = "clearance.resumed"
EVENT_CLEARANCE_CANCELLED = "clearance.cancelled"

EVENT_DEDUCTION_RECORDED = "deduction.recorded"
EVENT_DEDUCTION_APPLIED = "deduction.applied"
EVENT_DEDUCTION_CANCELLED = "deduction.cancelled"

EVENT_PAYOUT_TASK_OPENED = "payout.task_opened"
EVENT_PAYOUT_RETRY = "payout.retry"
EVENT_PAYOUT_RETRY_REJECTED = "payout.retry_rejected"
EVENT_PAYOUT_MANUALLY_COMPLETED = "payout.manually_completed"
EVENT_PAYOUT_WEBHOOK_COMPLETED = "payout.webhook_completed"
EVENT_PAYOUT_DUPLICATE_SETTLEMENT = "payout.duplicate_settlement"

EVENT_WITHDRAWAL_REQUESTED = "withdrawal.requested"
EVENT_WITHDRAWAL_COMPLETED = "withdrawal.completed"
EVENT_WITHDRAWAL_FAILED = "withdrawal.failed"

EVENT_ORDER_SETTLED = "order.settled"
EVENT_ORDER_REFUNDED = "order.refunded"

EVENT_COMMISSION_CHANGED = "commission.changed"


@dataclass
class AuditRecord:
    event_type: str
    entity_type: str
    entity_id: Optional[int]
    actor_id: Optional[int] = None
    tenant_id: Optional[int] = None
    occurred_at: Optional[datetime] = None
    payload: dict[str, Any] = field(default_factory=dict)


class AuditSink:
    """Destination for audit records."""

    def record(self, entry: AuditRecord) -> None:
        raise NotImplementedError


class DatabaseAuditSink(AuditSink):
    """Appends AuditEvent rows to the current session (flush, no commit)."""

    def record(self, entry: AuditRecord) -> None:
        ev = AuditEvent(
            event_type=entry.event_type,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            actor_id=entry.actor_id,
            tenant_id=entry.tenant_id,
            occurred_at=entry.occurred_at or utcnow(),
            payload=entry.payload or None,
        )
        db.session.add(ev)
        db.session.flush()


def get_sink() -> AuditSink:
    sink = current_app.extensions.get("audit_sink")
    if sink is None:
        sink = DatabaseAuditSink()
        current_app.extensions["audit_sink"] = sink
    return sink


def emit(
    event_type: str,
    *,
    entity_type: str,
    entity_id: int | None,
    actor_id: int | None = None,
    tenant_id: int | None = None,
    occurred_at: datetime | None = None,
    **payload: Any,
) -> AuditRecord:
    """Build an AuditRecord and hand it to the configured sink."""
    entry = AuditRecord(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        tenant_id=tenant_id,
        occurred_at=occurred_at,
        payload=payload,
    )
    get_sink().record(entry)
    return entry


def list_events(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    event_type: str | None = None,
) -> list[AuditEvent]:
    query = db.session.query(AuditEvent)
    if entity_type:
        query = query.filter(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditEvent.entity_id == entity_id)
    if event_type:
        query = query.filter(AuditEvent.event_type == event_type)
    # Insertion order; occurred_at may be backdated by callers that pass an explicit clock
    return query.order_by(AuditEvent.id.asc()).all()
