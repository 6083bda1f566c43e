# Overview: Flask API routes for order settlement; completion split and refunds.

# backend/cookwallet/routes/orders.py
"""
Order Settlement API Routes

Called by the order subsystem when an order is completed or refunded.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import order_settlement_service
from ..validation import ConflictError, NotFoundError, ValidationError, parse_actor_id


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("/<int:order_id>/complete")
def complete_order_route(order_id: int):
    """
    Apply commission and hold the cook's earnings.

    Returns:
        201: Clearance opened
        404: Order not found
        409: Order not completed, or already settled
    """
    try:
        clearance = order_settlement_service.complete_order(order_id)
        return jsonify({"clearance": clearance.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to settle order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/refund")
def refund_order_route(order_id: int):
    """
    Refund a client.

    Request body:
    {
        "amount": 3000,
        "source": "complaint_refund",  (or cancellation_refund)
        "reason": "Meal arrived cold",
        "actor_id": 7  (optional)
    }
    """
    try:
        data = request.get_json() or {}

        if data.get("amount") is None or not data.get("source") or not data.get("reason"):
            return jsonify({"error": "amount, source, and reason required"}), 400

        result = order_settlement_service.refund_order(
            order_id,
            data.get("amount"),
            data.get("source"),
            data.get("reason"),
            actor_id=parse_actor_id(data.get("actor_id"), required=False),
        )
        return jsonify(result.to_dict()), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to refund order")
        return jsonify({"error": "Internal server error"}), 500
