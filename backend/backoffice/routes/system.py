# Overview: Flask API routes for health, the change feed and the audit trail.

import time
from flask import Blueprint, current_app, jsonify, request

from ..extensions import db, change_feed
from ..models import User, Order
from ..services import audit_service
from ..services.auth_service import ROLE_ADMIN, ROLE_MANAGER
from ..decorators import require_auth, require_role
from backoffice.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        order_count = db.session.query(Order).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"users": user_count, "orders": order_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unhealthy
    """
    database_health = check_database_health()
    http_status = 200 if database_health["status"] == "healthy" else 503

    return {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "change_feed_seq": change_feed.latest_seq,
        "checks": {"database": database_health},
    }, http_status


@system_bp.get("/changes")
@require_auth
def changes():
    """
    Change events after a sequence number.

    Query params:
    - since: int (default 0)

    "complete": false means events were evicted from the feed history since
    that cursor; the client must reload its data instead of replaying.
    """
    since = request.args.get("since", default=0, type=int)
    events, complete = change_feed.events_since(since)
    return jsonify({
        "events": [e.to_dict() for e in events],
        "latest_seq": change_feed.latest_seq,
        "complete": complete,
    }), 200


@system_bp.get("/audit")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def audit_log():
    limit = min(request.args.get("limit", default=100, type=int), 500)
    offset = max(request.args.get("offset", default=0, type=int), 0)
    action = request.args.get("action")
    entries = audit_service.list_entries(limit=limit, offset=offset, action=action)
    return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)}), 200
