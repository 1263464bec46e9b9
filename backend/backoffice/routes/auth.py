# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services.auth_service import ROLE_ADMIN, UserError
from ..decorators import require_auth, require_role


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be sent as "Authorization: Bearer <token>" on protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "username and password required"}), 400

        user = auth_service.authenticate(username, password)
        if not user:
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = auth_service.create_session(user.id)

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "expires_at": session.expires_at.isoformat() + "Z",
        }), 200

    except Exception:
        current_app.logger.exception("Login failed")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    auth_service.revoke_session(g.session_token)
    return jsonify({"ok": True}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@auth_bp.get("/sellers")
@require_auth
def sellers_route():
    sellers = auth_service.list_sellers()
    return jsonify({"items": [u.to_dict() for u in sellers], "count": len(sellers)}), 200


@auth_bp.post("/users")
@require_auth
@require_role(ROLE_ADMIN)
def create_user_route():
    """
    Create a back-office user.

    Request body:
    {
        "username": "maria",
        "name": "Maria Souza",
        "password": "secret123",
        "role": "vendedor"   (admin | gerente | vendedor)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.create_user(
            username=data.get("username"),
            name=data.get("name"),
            password=data.get("password"),
            role=data.get("role") or auth_service.ROLE_SELLER,
        )
        return jsonify({"user": user.to_dict()}), 201
    except UserError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500
