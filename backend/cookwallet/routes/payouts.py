# Overview: Flask API routes for payout tasks; backlog, retry and manual completion.

# backend/cookwallet/routes/payouts.py
"""
Payout Task API Routes

WHY: Admins work the failed-transfer backlog: retry up to 3 times, or pay
out of band and record the proof.

DESIGN:
- Rejected retries (resolved / exhausted) return 409 and are still audited
- A retry that reaches the provider but fails returns 200 with
  succeeded=false; the task stays pending
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import payout_service
from ..services.audit_service import list_events
from ..validation import ConflictError, NotFoundError, ValidationError, parse_actor_id


payouts_bp = Blueprint("payouts", __name__, url_prefix="/api/payouts")


# =============================================================================
# BACKLOG
# =============================================================================

@payouts_bp.get("/")
def list_tasks_route():
    """
    Query params:
    - status: pending | completed | manually_completed
    - search: matches phone, idempotency key, reference or failure reason
    """
    status = request.args.get("status")
    if status and status not in payout_service.VALID_PAYOUT_STATUSES:
        return jsonify({"error": f"Invalid status: {status}"}), 400

    tasks = payout_service.list_tasks(status=status, search=request.args.get("search"))
    return jsonify({
        "tasks": [t.to_dict() for t in tasks],
        "pending_count": payout_service.pending_count(),
    }), 200


@payouts_bp.get("/pending-count")
def pending_count_route():
    return jsonify({"pending_count": payout_service.pending_count()}), 200


@payouts_bp.get("/<int:task_id>")
def get_task_route(task_id: int):
    try:
        task = payout_service.get_task(task_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    payload = task.to_dict()
    payload["retries_remaining"] = max(0, payout_service.MAX_RETRIES - task.retry_count)
    return jsonify({"task": payload}), 200


@payouts_bp.get("/<int:task_id>/history")
def task_history_route(task_id: int):
    """Audit trail for a task: opening, every retry (rejected ones too), resolution."""
    try:
        payout_service.get_task(task_id)
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404

    events = list_events(entity_type="payout_task", entity_id=task_id)
    return jsonify({"events": [ev.to_dict() for ev in events]}), 200


# =============================================================================
# RESOLUTION
# =============================================================================

@payouts_bp.post("/<int:task_id>/retry")
def retry_task_route(task_id: int):
    """
    Request body:
    {
        "actor_id": 7
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        actor_id = parse_actor_id(data.get("actor_id"))

        outcome = payout_service.retry(task_id, actor_id)
        return jsonify(outcome.to_dict()), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to retry payout task")
        return jsonify({"error": "Internal server error"}), 500


@payouts_bp.post("/<int:task_id>/complete")
def complete_task_route(task_id: int):
    """
    Record an out-of-band transfer.

    Request body:
    {
        "reference_number": "MAN-001",
        "notes": "Paid via agent",  (optional)
        "actor_id": 7
    }
    """
    try:
        data = request.get_json() or {}
        actor_id = parse_actor_id(data.get("actor_id"))

        task = payout_service.mark_manually_completed(
            task_id,
            data.get("reference_number"),
            data.get("notes"),
            actor_id,
        )
        return jsonify({"task": task.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to complete payout task")
        return jsonify({"error": "Internal server error"}), 500
