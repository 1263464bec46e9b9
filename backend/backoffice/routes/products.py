# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/backoffice/routes/products.py
"""
Product management routes.

SECURITY: All routes require authentication.
- Read operations are open to every role
- Write operations require admin or gerente
"""
from flask import Blueprint, request, g, current_app

from ..extensions import db
from ..services import catalog_service
from ..services.auth_service import ROLE_ADMIN, ROLE_MANAGER
from ..services.catalog_service import PRODUCT_POLICY
from ..models import Product
from ..validation import (
    validate_payload,
    enforce_rules_product,
    ValidationError,
)
from ..decorators import require_auth, require_role

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    """
    Query params:
    - category: str (optional)
    - include_hidden: true/false (default true)
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    return catalog_service.list_products(
        include_hidden=request.args.get("include_hidden", "true").lower() == "true",
        category=request.args.get("category"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.get("/<int:product_id>")
@require_auth
def get_product(product_id: int):
    p = catalog_service.get_product(product_id)
    if p is None:
        return {"error": "Product not found"}, 404
    return p.to_dict()


@products_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    created = catalog_service.create_product(patch=patch, actor=g.current_user)
    return created, 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    updated = catalog_service.update_product(product_id, patch=patch, actor=g.current_user)
    if updated is None:
        return {"error": "Product not found"}, 404
    return updated


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_product_route(product_id: int):
    """Soft delete (moves the product to the trash)."""
    if not catalog_service.delete_product(product_id, actor=g.current_user):
        return {"error": "Product not found"}, 404
    return {"ok": True}, 200


# =============================================================================
# TRASH
# =============================================================================

@products_bp.get("/trash")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def list_trash_route():
    products = catalog_service.list_deleted_products()
    return {"items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.post("/<int:product_id>/restore")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def restore_product_route(product_id: int):
    restored = catalog_service.restore_product(product_id, actor=g.current_user)
    if restored is None:
        return {"error": "Product not found in trash"}, 404
    return restored


@products_bp.delete("/trash/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def purge_product_route(product_id: int):
    if not catalog_service.purge_product(product_id, actor=g.current_user):
        return {"error": "Product not found in trash"}, 404
    return {"ok": True}, 200


@products_bp.delete("/trash")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def empty_trash_route():
    removed = catalog_service.empty_trash(actor=g.current_user)
    return {"ok": True, "removed": removed}, 200


@products_bp.post("/import")
@require_auth
@require_role(ROLE_ADMIN)
def import_products_route():
    """Request body: {"rows": [{"name": "...", "price_cents": 1000, ...}]}"""
    payload = request.get_json(silent=True) or {}
    try:
        return catalog_service.import_products(payload.get("rows"), actor=g.current_user), 200
    except ValidationError as e:
        return {"error": str(e)}, 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to import products")
        return {"error": "Internal server error"}, 500
