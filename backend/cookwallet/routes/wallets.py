# Overview: Flask API routes for wallet operations; balances, history, withdrawals and deductions.

# backend/cookwallet/routes/wallets.py
"""
Wallet API Routes

WHY: Cooks see their balances and cash out; admins inspect wallet history
and write off erroneous deductions.

DESIGN:
- Balances are read straight from the wallet row (ledger-backed)
- Withdrawals debit immediately; the transfer runs via /process or the
  `flask payouts process-withdrawals` batch
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..models import ClientWallet, CookWallet
from ..services import clearance_service, deduction_service, wallet_ledger, withdrawal_service
from ..validation import ConflictError, NotFoundError, ValidationError, parse_actor_id


wallets_bp = Blueprint("wallets", __name__, url_prefix="/api/wallets")


def _find_cook_wallet(tenant_id: int, cook_id: int):
    return db.session.query(CookWallet).filter_by(tenant_id=tenant_id, cook_id=cook_id).first()


# =============================================================================
# BALANCES
# =============================================================================

@wallets_bp.get("/cooks/<int:tenant_id>/<int:cook_id>")
def get_cook_wallet_route(tenant_id: int, cook_id: int):
    """
    Cook wallet summary.

    Returns balances, clearances still on hold and outstanding deductions.
    """
    wallet = _find_cook_wallet(tenant_id, cook_id)
    if not wallet:
        return jsonify({"error": "Wallet not found"}), 404

    return jsonify({
        "wallet": wallet.to_dict(),
        "pending_clearances": [c.to_dict() for c in clearance_service.list_pending_clearances(wallet)],
        "outstanding_deductions": deduction_service.total_outstanding(wallet),
    }), 200


@wallets_bp.get("/cooks/<int:tenant_id>/<int:cook_id>/transactions")
def list_cook_transactions_route(tenant_id: int, cook_id: int):
    """
    Query params:
    - limit: max rows (default 100, max 500)
    """
    wallet = _find_cook_wallet(tenant_id, cook_id)
    if not wallet:
        return jsonify({"error": "Wallet not found"}), 404

    limit = min(request.args.get("limit", 100, type=int) or 100, 500)
    transactions = wallet_ledger.list_transactions(wallet, limit=limit)
    return jsonify({"transactions": [t.to_dict() for t in transactions]}), 200


@wallets_bp.get("/clients/<int:client_id>")
def get_client_wallet_route(client_id: int):
    wallet = db.session.query(ClientWallet).filter_by(client_id=client_id).first()
    if not wallet:
        return jsonify({"error": "Wallet not found"}), 404

    return jsonify({
        "wallet": wallet.to_dict(),
        "transactions": [t.to_dict() for t in wallet_ledger.list_transactions(wallet, limit=50)],
    }), 200


# =============================================================================
# WITHDRAWALS
# =============================================================================

@wallets_bp.post("/cooks/<int:tenant_id>/<int:cook_id>/withdrawals")
def submit_withdrawal_route(tenant_id: int, cook_id: int):
    """
    Request a cash-out.

    Request body:
    {
        "amount": 5000,
        "mobile_money_number": "+237 670 000 000",
        "provider": "mtn_momo"  (optional, detected from the number)
    }

    Returns:
        201: Withdrawal created (wallet already debited)
        400: Invalid amount / phone / provider
        409: Insufficient funds or daily limit reached
    """
    try:
        data = request.get_json() or {}

        if data.get("amount") is None or not data.get("mobile_money_number"):
            return jsonify({"error": "amount and mobile_money_number required"}), 400

        withdrawal = withdrawal_service.submit_withdrawal(
            tenant_id=tenant_id,
            cook_id=cook_id,
            amount=data.get("amount"),
            mobile_money_number=data.get("mobile_money_number"),
            provider=data.get("provider"),
        )
        return jsonify({"withdrawal": withdrawal.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to submit withdrawal")
        return jsonify({"error": "Internal server error"}), 500


@wallets_bp.get("/cooks/<int:tenant_id>/<int:cook_id>/withdrawals")
def list_withdrawals_route(tenant_id: int, cook_id: int):
    wallet = _find_cook_wallet(tenant_id, cook_id)
    if not wallet:
        return jsonify({"error": "Wallet not found"}), 404

    withdrawals = withdrawal_service.list_withdrawals(wallet, status=request.args.get("status"))
    return jsonify({"withdrawals": [w.to_dict() for w in withdrawals]}), 200


@wallets_bp.post("/withdrawals/<int:withdrawal_id>/process")
def process_withdrawal_route(withdrawal_id: int):
    """
    Send a pending withdrawal to the provider now.

    A failed transfer still returns 200: the outcome carries the
    user-facing message and a payout task has been opened.
    """
    try:
        outcome = withdrawal_service.process_withdrawal(withdrawal_id)
        return jsonify(outcome.to_dict()), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to process withdrawal")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# DEDUCTIONS
# =============================================================================

@wallets_bp.get("/cooks/<int:tenant_id>/<int:cook_id>/deductions")
def list_deductions_route(tenant_id: int, cook_id: int):
    wallet = _find_cook_wallet(tenant_id, cook_id)
    if not wallet:
        return jsonify({"error": "Wallet not found"}), 404

    deductions = deduction_service.list_deductions(wallet)
    return jsonify({
        "deductions": [d.to_dict() for d in deductions],
        "total_outstanding": deduction_service.total_outstanding(wallet),
    }), 200


@wallets_bp.post("/deductions/<int:deduction_id>/cancel")
def cancel_deduction_route(deduction_id: int):
    """
    Write off an erroneous deduction.

    Request body:
    {
        "actor_id": 7
    }
    """
    try:
        data = request.get_json() or {}
        actor_id = parse_actor_id(data.get("actor_id"))

        deduction = deduction_service.cancel_deduction(deduction_id, actor_id)
        return jsonify({"deduction": deduction.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to cancel deduction")
        return jsonify({"error": "Internal server error"}), 500
