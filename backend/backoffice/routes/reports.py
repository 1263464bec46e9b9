# Overview: Flask API routes for financial reports derived from the current order set.

# backend/backoffice/routes/reports.py
"""
Reporting API Routes

Every report is recomputed from a fresh snapshot of orders and products;
nothing here is cached or stored.

SECURITY: admin and gerente only.
"""

from flask import Blueprint, request, jsonify

from ..services import reporting_service
from ..services.auth_service import ROLE_ADMIN, ROLE_MANAGER
from ..services.change_feed import load_snapshot
from ..decorators import require_auth, require_role
from backoffice.time_utils import parse_date, utcnow


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/financial-summary")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def financial_summary_route():
    """
    Query params:
    - today: YYYY-MM-DD (optional, defaults to the current UTC date)
    """
    try:
        today = parse_date(request.args.get("today")) or utcnow().date()
    except ValueError:
        return jsonify({"error": "today must be YYYY-MM-DD"}), 400

    snapshot = load_snapshot()
    summary = reporting_service.financial_summary(
        snapshot.order_list(),
        {p["id"]: p for p in snapshot.product_list()},
        today,
    )
    return jsonify(summary), 200


@reports_bp.get("/customers")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def customer_financials_route():
    """Balances per customer identity, highest balance due first."""
    snapshot = load_snapshot()
    rows = list(reporting_service.customer_financials(snapshot.order_list()).values())
    rows.sort(key=lambda r: (-r["balance_due_cents"], r["identity_key"]))
    return jsonify({"items": rows, "count": len(rows)}), 200


@reports_bp.get("/customers/<identity_key>/orders")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def customer_orders_route(identity_key: str):
    snapshot = load_snapshot()
    groups = reporting_service.group_orders_by_customer(snapshot.order_list())
    orders = groups.get(identity_key, [])
    return jsonify({"identity_key": identity_key, "items": orders, "count": len(orders)}), 200


@reports_bp.get("/sellers")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def seller_performance_route():
    """
    Query params:
    - month: YYYY-MM (optional)
    """
    snapshot = load_snapshot()
    rows = reporting_service.seller_performance(snapshot.order_list(), month=request.args.get("month"))
    return jsonify({"items": rows, "count": len(rows)}), 200
