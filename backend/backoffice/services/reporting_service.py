# Overview: Financial aggregator; derives customer balances, monthly sales and commission views from order data.

"""
Financial Aggregator

Pure, read-only functions over order dicts (Order.to_dict() shape) and
product dicts. Nothing here touches the database; callers pass a snapshot
(see change_feed.load_snapshot).

Active orders are those not CANCELED and not TRASHED.

Amount considered paid, per payment method:
- INSTALLMENT_CREDIT: sum of installment paid_cents plus the down payment
- CASH: the full total
- INSTANT_TRANSFER: the full total when transfer_confirmed is true, or null
  (orders from before transfer confirmation was tracked)
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import date, datetime

from dateutil.relativedelta import relativedelta

from backoffice.identity import identity_key_for
from backoffice.time_utils import parse_iso_datetime


INACTIVE = ("CANCELED", "TRASHED")


def is_active(order: dict) -> bool:
    return order.get("status") not in INACTIVE


def _created_at(order: dict) -> datetime | None:
    value = order.get("created_at")
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return parse_iso_datetime(value)
    return None


def month_key(value: date | datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def amount_paid_cents(order: dict) -> int:
    method = order.get("payment_method")
    total = order.get("total_cents") or 0
    if method == "INSTALLMENT_CREDIT":
        paid = sum(inst.get("paid_cents") or 0 for inst in order.get("installments") or [])
        return paid + (order.get("down_payment_cents") or 0)
    if method == "CASH":
        return total
    if method == "INSTANT_TRANSFER":
        return total if order.get("transfer_confirmed") in (True, None) else 0
    return 0


def amount_pending_cents(order: dict) -> int:
    return max((order.get("total_cents") or 0) - amount_paid_cents(order), 0)


# =============================================================================
# CUSTOMERS
# =============================================================================

def group_orders_by_customer(orders: list[dict], *, active_only: bool = False) -> "OrderedDict[str, list[dict]]":
    """Orders bucketed by customer identity key, in first-seen order."""
    groups: OrderedDict = OrderedDict()
    for order in orders:
        if active_only and not is_active(order):
            continue
        groups.setdefault(identity_key_for(order), []).append(order)
    return groups


def customer_financials(orders: list[dict]) -> dict[str, dict]:
    """
    Per identity key: total purchased, total paid and balance due (cents)
    over the customer's active orders.
    """
    result: dict[str, dict] = {}
    for key, bucket in group_orders_by_customer(orders, active_only=True).items():
        purchased = sum(o.get("total_cents") or 0 for o in bucket)
        paid = sum(amount_paid_cents(o) for o in bucket)
        latest = max(bucket, key=lambda o: _created_at(o) or datetime.min)
        snapshot = latest.get("customer") or {}
        result[key] = {
            "identity_key": key,
            "customer_name": snapshot.get("name"),
            "customer_code": snapshot.get("code"),
            "order_count": len(bucket),
            "total_purchased_cents": purchased,
            "total_paid_cents": paid,
            "balance_due_cents": purchased - paid,
        }
    return result


# =============================================================================
# STORE-WIDE
# =============================================================================

def _gross_profit_cents(order: dict, products: dict) -> int:
    profit = 0
    for item in order.get("items") or []:
        product = products.get(item.get("product_id")) or products.get(str(item.get("product_id"))) or {}
        cost = product.get("cost_cents") or 0
        profit += ((item.get("unit_price_cents") or 0) - cost) * (item.get("quantity") or 0)
    return profit


def financial_summary(orders: list[dict], products, today: date, *, months: int = 12) -> dict:
    """
    Rolling monthly sales over the last `months` months (ending with the
    month of today) plus totals for the current month.
    """
    if not isinstance(products, dict):
        products = {p.get("id"): p for p in products}

    current = date(today.year, today.month, 1)
    window = [month_key(current - relativedelta(months=i)) for i in range(months - 1, -1, -1)]
    series = OrderedDict((m, {"month": m, "total_cents": 0, "order_count": 0}) for m in window)

    this_month = month_key(current)
    totals = {
        "month": this_month,
        "order_count": 0,
        "total_sold_cents": 0,
        "total_received_cents": 0,
        "total_pending_cents": 0,
        "gross_profit_cents": 0,
    }

    for order in orders:
        if not is_active(order):
            continue
        created = _created_at(order)
        if created is None:
            continue
        key = month_key(created)
        bucket = series.get(key)
        if bucket is not None:
            bucket["total_cents"] += order.get("total_cents") or 0
            bucket["order_count"] += 1

        if key == this_month:
            paid = min(amount_paid_cents(order), order.get("total_cents") or 0)
            totals["order_count"] += 1
            totals["total_sold_cents"] += order.get("total_cents") or 0
            totals["total_received_cents"] += paid
            totals["total_pending_cents"] += amount_pending_cents(order)
            totals["gross_profit_cents"] += _gross_profit_cents(order, products)

    return {"sales_by_month": list(series.values()), "current_month": totals}


# =============================================================================
# COMMISSIONS
# =============================================================================

def _delivered(order: dict) -> bool:
    return order.get("status") == "DELIVERED"


def commission_summary(orders: list[dict]) -> dict:
    """
    Unpaid commission owed per seller, over delivered orders with a positive,
    unpaid commission. Sellers sorted by amount owed, highest first.
    """
    sellers: dict = {}
    for order in orders:
        commission = order.get("commission_cents") or 0
        if not _delivered(order) or order.get("commission_paid") or commission <= 0:
            continue
        seller_id = order.get("seller_id")
        if seller_id is None:
            continue
        entry = sellers.setdefault(seller_id, {
            "seller_id": seller_id,
            "seller_name": order.get("seller_name"),
            "total_owed_cents": 0,
            "order_count": 0,
            "order_ids": [],
        })
        entry["total_owed_cents"] += commission
        entry["order_count"] += 1
        entry["order_ids"].append(order.get("id"))

    ranked = sorted(sellers.values(), key=lambda s: (-s["total_owed_cents"], str(s["seller_name"] or "")))
    return {
        "sellers": ranked,
        "total_pending_commission_cents": sum(s["total_owed_cents"] for s in ranked),
    }


def seller_performance(orders: list[dict], *, month: str | None = None) -> list[dict]:
    """
    Delivered orders per seller: count, sales and commission (paid and
    pending). month ("YYYY-MM") restricts to orders created that month.
    """
    stats: dict = {}
    for order in orders:
        if not _delivered(order) or order.get("seller_id") is None:
            continue
        if month is not None:
            created = _created_at(order)
            if created is None or month_key(created) != month:
                continue
        entry = stats.setdefault(order["seller_id"], {
            "seller_id": order["seller_id"],
            "seller_name": order.get("seller_name"),
            "order_count": 0,
            "total_sold_cents": 0,
            "total_commission_cents": 0,
            "commission_paid_cents": 0,
            "commission_pending_cents": 0,
        })
        commission = order.get("commission_cents") or 0
        entry["order_count"] += 1
        entry["total_sold_cents"] += order.get("total_cents") or 0
        entry["total_commission_cents"] += commission
        if order.get("commission_paid"):
            entry["commission_paid_cents"] += commission
        else:
            entry["commission_pending_cents"] += commission

    return sorted(stats.values(), key=lambda s: (-s["total_sold_cents"], str(s["seller_name"] or "")))
