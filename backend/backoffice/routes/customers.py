# Overview: Flask API routes for customers, customer trash, import and code backfill.

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..services import customer_service
from ..services.auth_service import AuthorizationError, ROLE_ADMIN, ROLE_MANAGER
from ..validation import ValidationError, ConflictError
from ..decorators import require_auth, require_role


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
def list_customers_route():
    """
    Query params:
    - q: search by name, code, phone or CPF digits
    """
    customers = customer_service.list_customers(search=request.args.get("q"))
    return jsonify({"items": [c.to_dict() for c in customers], "count": len(customers)}), 200


@customers_bp.get("/lookup")
@require_auth
def lookup_customer_route():
    """Find a customer by CPF; "source" tells whether it sits in the trash."""
    customer, source = customer_service.find_customer_by_cpf(request.args.get("cpf"))
    if not customer:
        return jsonify({"error": "Customer not found"}), 404
    return jsonify({"customer": customer.to_dict(), "source": source}), 200


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer_route(customer_id: int):
    customer = customer_service.get_customer(customer_id)
    if not customer:
        return jsonify({"error": "Customer not found"}), 404
    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.post("")
@require_auth
def add_customer_route():
    payload = request.get_json(silent=True) or {}
    try:
        customer = customer_service.add_customer(payload, actor=g.current_user)
        return jsonify({"customer": customer.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to add customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.patch("/<int:customer_id>")
@require_auth
def update_customer_route(customer_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        customer = customer_service.update_customer(customer_id, payload, actor=g.current_user)
        if not customer:
            return jsonify({"error": "Customer not found"}), 404
        return jsonify({"customer": customer.to_dict()}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update customer %s", customer_id)
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.delete("/<int:customer_id>")
@require_auth
def delete_customer_route(customer_id: int):
    """Move a customer to the customer trash."""
    customer = customer_service.delete_customer(customer_id, actor=g.current_user)
    if not customer:
        return jsonify({"error": "Customer not found"}), 404
    return jsonify({"customer": customer.to_dict()}), 200


# =============================================================================
# TRASH
# =============================================================================

@customers_bp.get("/trash")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def list_trash_route():
    try:
        customers = customer_service.list_customer_trash(g.current_user)
    except AuthorizationError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    return jsonify({"items": [c.to_dict() for c in customers], "count": len(customers)}), 200


@customers_bp.post("/<int:customer_id>/restore")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def restore_customer_route(customer_id: int):
    try:
        customer = customer_service.restore_customer(customer_id, g.current_user)
    except AuthorizationError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    if not customer:
        return jsonify({"error": "Customer not found in trash"}), 404
    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.delete("/trash/<int:customer_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def purge_customer_route(customer_id: int):
    try:
        purged = customer_service.purge_customer(customer_id, g.current_user)
    except AuthorizationError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    if not purged:
        return jsonify({"error": "Customer not found in trash"}), 404
    return jsonify({"ok": True}), 200


# =============================================================================
# ADMIN
# =============================================================================

@customers_bp.post("/import")
@require_auth
@require_role(ROLE_ADMIN)
def import_customers_route():
    """
    Request body: {"rows": [{"cpf": "...", "name": "...", "phone": "..."}]}

    Rows without an 11-digit CPF or with an already registered CPF are skipped.
    """
    payload = request.get_json(silent=True) or {}
    try:
        result = customer_service.import_customers(payload.get("rows"), g.current_user)
        return jsonify(result), 200
    except AuthorizationError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to import customers")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/generate-codes")
@require_auth
@require_role(ROLE_ADMIN)
def generate_codes_route():
    try:
        result = customer_service.generate_customer_codes(g.current_user)
        return jsonify(result), 200
    except AuthorizationError as e:
        return jsonify({"error": "Permission denied", "message": str(e)}), 403
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to generate customer codes")
        return jsonify({"error": "Internal server error"}), 500
