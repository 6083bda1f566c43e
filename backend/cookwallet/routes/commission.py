# Overview: Flask API routes for tenant commission rates and their change history.

# backend/cookwallet/routes/commission.py
"""
Commission API Routes

DESIGN:
- PUT with the current rate is accepted and reports changed=false
- review_payment_split=true tells the admin UI to prompt for a review of
  in-flight orders; nothing is recalculated automatically
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..models import Tenant
from ..services import commission_service
from ..validation import NotFoundError, ValidationError, parse_actor_id


commission_bp = Blueprint("commission", __name__, url_prefix="/api/tenants")


@commission_bp.get("/<int:tenant_id>/commission")
def get_commission_route(tenant_id: int):
    if not db.session.get(Tenant, tenant_id):
        return jsonify({"error": "Tenant not found"}), 404

    return jsonify({
        "tenant_id": tenant_id,
        "rate": float(commission_service.current_rate(tenant_id)),
        "default_rate": float(commission_service.default_rate()),
        "history": [c.to_dict() for c in commission_service.rate_history(tenant_id)],
    }), 200


@commission_bp.put("/<int:tenant_id>/commission")
def set_commission_route(tenant_id: int):
    """
    Request body:
    {
        "rate": 12.5,
        "actor_id": 7,
        "reason": "Negotiated volume discount"  (optional)
    }
    """
    try:
        data = request.get_json() or {}
        actor_id = parse_actor_id(data.get("actor_id"))

        result = commission_service.set_rate(tenant_id, data.get("rate"), actor_id, data.get("reason"))
        return jsonify(result.to_dict()), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to set commission rate")
        return jsonify({"error": "Internal server error"}), 500


@commission_bp.post("/<int:tenant_id>/commission/reset")
def reset_commission_route(tenant_id: int):
    try:
        data = request.get_json(silent=True) or {}
        actor_id = parse_actor_id(data.get("actor_id"))

        result = commission_service.reset_to_default(tenant_id, actor_id, data.get("reason"))
        return jsonify(result.to_dict()), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to reset commission rate")
        return jsonify({"error": "Internal server error"}), 500
