# Overview: Flask API routes for clearances; complaint signals and manual sweep trigger.

# backend/cookwallet/routes/clearances.py
"""
Clearance API Routes

WHY: The complaint subsystem freezes, releases or cancels held earnings.

DESIGN:
- Signals address the clearance by order id (complaints know the order)
- Illegal transitions (e.g. pausing a cleared clearance) return 409
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import clearance_service
from ..validation import ConflictError, NotFoundError, ValidationError, parse_actor_id


clearances_bp = Blueprint("clearances", __name__, url_prefix="/api/clearances")

_SIGNALS = {
    "pause": clearance_service.pause_for_order,
    "resume": clearance_service.resume_for_order,
    "cancel": clearance_service.cancel_for_order,
}


@clearances_bp.get("/orders/<int:order_id>")
def get_order_clearance_route(order_id: int):
    clearance = clearance_service.get_clearance_for_order(order_id)
    if not clearance:
        return jsonify({"error": "Clearance not found"}), 404

    payload = clearance.to_dict()
    payload["state"] = clearance_service.clearance_state(clearance)
    return jsonify({"clearance": payload}), 200


@clearances_bp.post("/orders/<int:order_id>/<string:signal>")
def clearance_signal_route(order_id: int, signal: str):
    """
    Complaint signal: pause | resume | cancel.

    Request body (optional):
    {
        "actor_id": 7
    }
    """
    handler = _SIGNALS.get(signal)
    if handler is None:
        return jsonify({"error": f"Unknown signal: {signal}"}), 404

    try:
        data = request.get_json(silent=True) or {}
        actor_id = parse_actor_id(data.get("actor_id"), required=False)

        clearance = handler(order_id, actor_id=actor_id)
        payload = clearance.to_dict()
        payload["state"] = clearance_service.clearance_state(clearance)
        return jsonify({"clearance": payload}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to apply clearance signal %s", signal)
        return jsonify({"error": "Internal server error"}), 500


@clearances_bp.post("/sweep")
def sweep_route():
    """Run the clearance sweep now (normally cron via `flask clearances sweep`)."""
    try:
        cleared = clearance_service.sweep()
        return jsonify({
            "cleared_count": len(cleared),
            "cleared": [c.to_dict() for c in cleared],
        }), 200
    except Exception:
        current_app.logger.exception("Clearance sweep failed")
        return jsonify({"error": "Internal server error"}), 500
