# Overview: Flask API routes for pending commissions and commission payouts.

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..models import User
from ..services import commission_service, reporting_service
from ..services.auth_service import ROLE_ADMIN, ROLE_MANAGER
from ..services.change_feed import load_snapshot
from ..services.commission_service import CommissionError
from ..decorators import require_auth, require_role


commissions_bp = Blueprint("commissions", __name__, url_prefix="/api/commissions")


@commissions_bp.get("/summary")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def commission_summary_route():
    """Unpaid commission per seller over delivered orders."""
    snapshot = load_snapshot()
    return jsonify(reporting_service.commission_summary(snapshot.order_list())), 200


@commissions_bp.get("/payments")
@require_auth
def list_payments_route():
    """Sellers only see their own payouts."""
    user = g.current_user
    seller_id = request.args.get("seller_id", type=int)
    if user.role not in (ROLE_ADMIN, ROLE_MANAGER):
        seller_id = user.id
    payments = commission_service.list_commission_payments(seller_id)
    return jsonify({"items": [p.to_dict() for p in payments], "count": len(payments)}), 200


@commissions_bp.post("/payments")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def pay_commissions_route():
    """
    Request body:
    {
        "seller_id": 3,
        "order_ids": ["PED-123456", "PED-654321"],
        "period": "2024-01",
        "amount_cents": 4500      (optional, defaults to the orders' commission)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        seller_id = data.get("seller_id")
        seller = db.session.get(User, seller_id) if seller_id is not None else None
        if seller is None:
            return jsonify({"error": "Seller not found"}), 404

        payment = commission_service.pay_commissions(
            seller_id=seller.id,
            seller_name=seller.name,
            order_ids=data.get("order_ids") or [],
            period=data.get("period"),
            amount_cents=data.get("amount_cents"),
            actor=g.current_user,
        )
        return jsonify({"payment": payment.to_dict()}), 201

    except CommissionError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to pay commissions")
        return jsonify({"error": "Internal server error"}), 500


@commissions_bp.delete("/payments/<int:payment_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def reverse_payment_route(payment_id: int):
    try:
        reversed_ = commission_service.reverse_commission_payment(payment_id, actor=g.current_user)
        return jsonify({"ok": True, "reversed": reversed_}), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reverse commission payment %s", payment_id)
        return jsonify({"error": "Internal server error"}), 500
