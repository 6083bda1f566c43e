# Overview: Flask API route for provider transfer webhooks.

# backend/cookwallet/routes/webhooks.py
"""
Transfer Webhook Route

SECURITY:
- The provider signs nothing; it echoes a shared secret in the verif-hash
  header, compared in constant time against GATEWAY_WEBHOOK_HASH
- Unknown references are acknowledged (200) so the provider stops retrying
"""

import hmac

from flask import Blueprint, request, jsonify, current_app

from ..services import payout_service


webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


@webhooks_bp.post("/transfers")
def transfer_webhook_route():
    """
    Flutterwave transfer notification.

    Request body:
    {
        "event": "transfer.completed",
        "data": {
            "id": 123456,
            "reference": "WD-42",
            "status": "SUCCESSFUL",  (or FAILED)
            "complete_message": "..."
        }
    }
    """
    expected = current_app.config.get("GATEWAY_WEBHOOK_HASH") or ""
    provided = request.headers.get("verif-hash", "")
    if not expected or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        return jsonify({"error": "Invalid signature"}), 401

    data = (request.get_json(silent=True) or {}).get("data") or {}
    reference = data.get("reference")
    if not reference:
        return jsonify({"error": "data.reference required"}), 400

    try:
        transfer_id = data.get("id")
        outcome = payout_service.reconcile_transfer_webhook(
            reference,
            data.get("status") or "",
            provider_reference=str(transfer_id) if transfer_id is not None else None,
            raw=data,
        )
        return jsonify({"outcome": outcome}), 200

    except Exception:
        current_app.logger.exception("Failed to reconcile transfer webhook")
        return jsonify({"error": "Internal server error"}), 500
