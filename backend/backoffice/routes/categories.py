# Overview: Flask API routes for product categories and subcategories.

from flask import Blueprint, request, jsonify, g

from ..services import catalog_service
from ..services.auth_service import ROLE_ADMIN, ROLE_MANAGER
from ..validation import ValidationError, ConflictError
from ..decorators import require_auth, require_role


categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@categories_bp.get("")
@require_auth
def list_categories_route():
    categories = catalog_service.list_categories()
    return jsonify({"items": [c.to_dict() for c in categories], "count": len(categories)}), 200


@categories_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_category_route():
    data = request.get_json(silent=True) or {}
    try:
        category = catalog_service.create_category(data.get("name"), actor=g.current_user)
        return jsonify({"category": category.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409


@categories_bp.patch("/<int:category_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def rename_category_route(category_id: int):
    data = request.get_json(silent=True) or {}
    try:
        category = catalog_service.rename_category(category_id, data.get("name"), actor=g.current_user)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    if category is None:
        return jsonify({"error": "Category not found"}), 404
    return jsonify({"category": category.to_dict()}), 200


@categories_bp.delete("/<int:category_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_category_route(category_id: int):
    try:
        deleted = catalog_service.delete_category(category_id, actor=g.current_user)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    if not deleted:
        return jsonify({"error": "Category not found"}), 404
    return jsonify({"ok": True}), 200


@categories_bp.post("/<int:category_id>/subcategories")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def add_subcategory_route(category_id: int):
    data = request.get_json(silent=True) or {}
    try:
        category = catalog_service.add_subcategory(category_id, data.get("name"), actor=g.current_user)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    if category is None:
        return jsonify({"error": "Category not found"}), 404
    return jsonify({"category": category.to_dict()}), 201


@categories_bp.patch("/<int:category_id>/subcategories")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def rename_subcategory_route(category_id: int):
    """Request body: {"old_name": "...", "new_name": "..."}"""
    data = request.get_json(silent=True) or {}
    try:
        category = catalog_service.rename_subcategory(
            category_id, data.get("old_name"), data.get("new_name"), actor=g.current_user
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    if category is None:
        return jsonify({"error": "Category or subcategory not found"}), 404
    return jsonify({"category": category.to_dict()}), 200


@categories_bp.delete("/<int:category_id>/subcategories/<path:name>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_subcategory_route(category_id: int, name: str):
    try:
        category = catalog_service.delete_subcategory(category_id, name, actor=g.current_user)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    if category is None:
        return jsonify({"error": "Category or subcategory not found"}), 404
    return jsonify({"category": category.to_dict()}), 200
