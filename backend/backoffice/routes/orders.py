# Overview: Flask API routes for orders, installments and installment payments.

# backend/backoffice/routes/orders.py
"""
Order API Routes

- Create orders from a cart (stock is reserved atomically)
- Status transitions, trash, restore and purge
- Partial edits with total / schedule / commission recalculation
- Installment payments and reversals, due date and amount edits

Money is always in cents.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..services import order_service, payment_service
from ..services.order_service import OrderError
from ..services.payment_service import PaymentError
from ..services.stock_service import InsufficientStockError
from ..validation import ValidationError, ConflictError
from ..decorators import require_auth


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _stock_error(e: InsufficientStockError):
    return jsonify({"error": str(e), "details": e.to_dict()}), 409


# =============================================================================
# ORDERS
# =============================================================================

@orders_bp.get("")
@require_auth
def list_orders_route():
    """
    Query params:
    - status: PROCESSING | DELIVERED | CANCELED | TRASHED
    - seller_id: int
    - include_trashed: true/false (default false; ignored when status is given)
    """
    status = request.args.get("status")
    seller_id = request.args.get("seller_id", type=int)
    include_trashed = request.args.get("include_trashed", "false").lower() == "true"

    orders = order_service.list_orders(status=status, seller_id=seller_id, include_trashed=include_trashed)
    return jsonify({"items": [o.to_dict() for o in orders], "count": len(orders)}), 200


@orders_bp.get("/<order_id>")
@require_auth
def get_order_route(order_id: str):
    order = order_service.get_order(order_id)
    if not order:
        return jsonify({"error": "Order not found"}), 404
    return jsonify({"order": order.to_dict()}), 200


@orders_bp.post("")
@require_auth
def create_order_route():
    """
    Create an order.

    Request body:
    {
        "customer": {"cpf": "123.456.789-09", "name": "Ana", "phone": "..."},
        "items": [{"product_id": 1, "quantity": 2}],
        "payment_method": "INSTALLMENT_CREDIT",
        "installment_count": 3,
        "first_due_date": "2024-01-15",
        "discount_cents": 0,
        "down_payment_cents": 0,
        "seller_id": 2            (optional, defaults to caller)
    }

    Returns:
        201: Order created
        400: Invalid input
        409: Insufficient stock
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.create_order(data, actor=g.current_user)
        return jsonify({"order": order.to_dict()}), 201

    except InsufficientStockError as e:
        return _stock_error(e)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except OrderError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<order_id>")
@require_auth
def update_order_details_route(order_id: str):
    """Partial edit; see order_service.update_order_details for accepted keys."""
    try:
        details = request.get_json(silent=True) or {}
        order = order_service.update_order_details(order_id, details, actor=g.current_user)
        if not order:
            return jsonify({"error": "Order not found"}), 404
        return jsonify({"order": order.to_dict()}), 200

    except InsufficientStockError as e:
        return _stock_error(e)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except OrderError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<order_id>/status")
@require_auth
def update_order_status_route(order_id: str):
    """
    Request body: {"status": "DELIVERED"}

    Returns:
        200: Updated order
        400: Transition not allowed
        404: Order not found
        409: Insufficient stock to reactivate a canceled order
    """
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("status")
        if not status:
            return jsonify({"error": "status required"}), 400

        order = order_service.update_order_status(order_id, status, actor=g.current_user)
        if not order:
            return jsonify({"error": "Order not found"}), 404
        return jsonify({"order": order.to_dict()}), 200

    except InsufficientStockError as e:
        return _stock_error(e)
    except OrderError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update status of order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<order_id>/trash")
@require_auth
def trash_order_route(order_id: str):
    try:
        order = order_service.move_order_to_trash(order_id, actor=g.current_user)
        if not order:
            return jsonify({"error": "Order not found"}), 404
        return jsonify({"order": order.to_dict()}), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to trash order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<order_id>/restore")
@require_auth
def restore_order_route(order_id: str):
    try:
        order = order_service.restore_order_from_trash(order_id, actor=g.current_user)
        if not order:
            return jsonify({"error": "Order not found"}), 404
        return jsonify({"order": order.to_dict()}), 200

    except InsufficientStockError as e:
        return _stock_error(e)
    except OrderError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to restore order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<order_id>")
@require_auth
def purge_order_route(order_id: str):
    """Permanently delete an order. Only orders in the trash can be purged."""
    try:
        purged = order_service.purge_order(order_id, actor=g.current_user)
        if not purged:
            return jsonify({"error": "Order not found"}), 404
        return jsonify({"ok": True}), 200

    except OrderError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to purge order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# INSTALLMENTS
# =============================================================================

@orders_bp.post("/<order_id>/installments/<int:installment_number>/payments")
@require_auth
def record_payment_route(order_id: str, installment_number: int):
    """
    Request body:
    {
        "amount_cents": 3334,
        "method": "CASH",          (CASH | INSTANT_TRANSFER | CARD | BANK_SLIP)
        "received_by": "Maria"     (optional, defaults to caller name)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        installment = payment_service.record_payment(
            order_id,
            installment_number,
            data.get("amount_cents"),
            data.get("method"),
            received_by=data.get("received_by") or g.current_user.name,
            actor=g.current_user,
        )
        if not installment:
            return jsonify({"error": "Installment not found"}), 404
        return jsonify({"installment": installment.to_dict()}), 201

    except PaymentError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record payment on %s/%s", order_id, installment_number)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<order_id>/installments/<int:installment_number>/payments/<int:payment_id>")
@require_auth
def reverse_payment_route(order_id: str, installment_number: int, payment_id: int):
    """Reverse a payment. Unknown payments are ignored (200 with reversed=false)."""
    try:
        installment = payment_service.reverse_payment(
            order_id, installment_number, payment_id, actor=g.current_user
        )
        if not installment:
            return jsonify({"ok": True, "reversed": False}), 200
        return jsonify({"ok": True, "reversed": True, "installment": installment.to_dict()}), 200

    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reverse payment %s", payment_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<order_id>/installments/<int:installment_number>")
@require_auth
def update_installment_route(order_id: str, installment_number: int):
    """Request body: {"due_date": "2024-02-20"} and/or {"amount_cents": 5000}"""
    try:
        data = request.get_json(silent=True) or {}
        if "due_date" not in data and "amount_cents" not in data:
            return jsonify({"error": "due_date or amount_cents required"}), 400

        installment = None
        if "due_date" in data:
            installment = payment_service.update_installment_due_date(
                order_id, installment_number, data["due_date"], actor=g.current_user
            )
            if not installment:
                return jsonify({"error": "Installment not found"}), 404
        if "amount_cents" in data:
            installment = payment_service.update_installment_amount(
                order_id, installment_number, data["amount_cents"], actor=g.current_user
            )
            if not installment:
                return jsonify({"error": "Installment not found"}), 404

        return jsonify({"installment": installment.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update installment %s/%s", order_id, installment_number)
        return jsonify({"error": "Internal server error"}), 500
