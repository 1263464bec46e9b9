# Overview: Seller commission calculation plus commission payout and payout reversal.

"""
Commission Calculator

calculate_commission is pure: it reads the order (ORM object or dict) and a
product lookup and returns cents. Rules, first match wins:

1. commission_manual set      -> the stored commission_cents, untouched
2. no seller                  -> 0
3. per item: product carries a numeric commission_value
       -> (commission_type or "percentage", commission_value)
   otherwise the fallback percentage (5% unless configured)
4. fixed:      value (currency per unit) * quantity
   percentage: unit price * quantity * value / 100
   summed in fractional cents, rounded half-up once.

Payouts (pay_commissions / reverse_commission_payment) persist and are
audited; they never recompute commission.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Order, CommissionPayment
from backoffice.money import MoneyError, to_decimal, round_cents, format_money
from backoffice.time_utils import utcnow
from .audit_service import log_action
from .change_feed import ENTITY_ORDER, ENTITY_COMMISSION_PAYMENT, publish_upsert, publish_delete
from .concurrency import lock_for_update, run_in_transaction


COMMISSION_FIXED = "fixed"
COMMISSION_PERCENTAGE = "percentage"

DEFAULT_FALLBACK_PERCENT = Decimal("5")


class CommissionError(Exception):
    """Raised for commission payout errors."""
    pass


def _get(record, key, default=None):
    if isinstance(record, dict):
        return record.get(key, default)
    return getattr(record, key, default)


def _rule_for(product, fallback_percent: Decimal) -> tuple[str, Decimal]:
    if product is not None:
        raw = _get(product, "commission_value")
        if raw is not None and raw != "":
            try:
                value = to_decimal(raw)
            except MoneyError:
                value = None
            if value is not None and value.is_finite():
                return (_get(product, "commission_type") or COMMISSION_PERCENTAGE), value
    return COMMISSION_PERCENTAGE, fallback_percent


def calculate_commission(order, products, *, fallback_percent=None) -> int:
    """
    Commission in cents for an order.

    products: mapping of product_id -> Product/dict, or an iterable of them.
    """
    if _get(order, "commission_manual"):
        return int(_get(order, "commission_cents") or 0)

    if not _get(order, "seller_id"):
        return 0

    if not isinstance(products, dict):
        products = {_get(p, "id"): p for p in products}

    fallback = DEFAULT_FALLBACK_PERCENT if fallback_percent is None else to_decimal(fallback_percent)

    total = Decimal(0)
    for item in _get(order, "items") or []:
        quantity = int(_get(item, "quantity") or 0)
        price_cents = int(_get(item, "unit_price_cents") or 0)
        commission_type, value = _rule_for(products.get(_get(item, "product_id")), fallback)

        if commission_type == COMMISSION_FIXED:
            total += value * 100 * quantity
        else:
            total += Decimal(price_cents) * quantity * value / 100

    return round_cents(total)


def configured_fallback_percent() -> Decimal:
    return to_decimal(current_app.config.get("COMMISSION_FALLBACK_PERCENT", DEFAULT_FALLBACK_PERCENT))


# =============================================================================
# PAYOUTS
# =============================================================================

def pay_commissions(
    *,
    seller_id: int,
    seller_name: str | None,
    order_ids: list[str],
    period: str,
    amount_cents: int | None = None,
    actor=None,
) -> CommissionPayment:
    """
    Record a commission payout covering order_ids and mark them paid.

    amount_cents defaults to the sum of the orders' cached commission.
    """
    if not order_ids:
        raise CommissionError("order_ids is required")
    if not period or not str(period).strip():
        raise CommissionError("period is required")

    def _op():
        orders = lock_for_update(
            db.session.query(Order).filter(Order.id.in_(order_ids))
        ).all()
        found = {o.id for o in orders}
        missing = [oid for oid in order_ids if oid not in found]
        if missing:
            raise CommissionError(f"Orders not found: {', '.join(missing)}")

        for order in orders:
            if order.seller_id != seller_id:
                raise CommissionError(f"Order {order.id} does not belong to seller {seller_id}")

        amount = sum(o.commission_cents for o in orders) if amount_cents is None else amount_cents
        if amount < 0:
            raise CommissionError("amount_cents must be >= 0")

        now = utcnow()
        payment = CommissionPayment(
            seller_id=seller_id,
            seller_name=seller_name,
            amount_cents=amount,
            period=str(period).strip(),
            order_ids=list(order_ids),
            payment_date=now,
            paid_by_id=getattr(actor, "id", None),
        )
        db.session.add(payment)
        for order in orders:
            order.commission_paid = True
            order.commission_paid_at = now

        db.session.commit()
        return payment, orders

    payment, orders = run_in_transaction(_op)

    publish_upsert(ENTITY_COMMISSION_PAYMENT, payment)
    for order in orders:
        publish_upsert(ENTITY_ORDER, order)
    log_action(
        "Pagamento de Comissão",
        f"{seller_name or seller_id}: {format_money(payment.amount_cents)} ({payment.period}, {len(orders)} pedidos)",
        actor,
    )
    return payment


def reverse_commission_payment(payment_id: int, *, actor=None) -> bool:
    """
    Delete a payout and flip commission_paid back on the orders it covered.

    Returns False (no-op) when the payout does not exist. Orders that were
    purged since the payout are skipped.
    """
    def _op():
        payment = lock_for_update(
            db.session.query(CommissionPayment).filter_by(id=payment_id)
        ).first()
        if payment is None:
            return None, []

        order_ids = list(payment.order_ids or [])
        orders = []
        if order_ids:
            orders = lock_for_update(
                db.session.query(Order).filter(Order.id.in_(order_ids))
            ).all()
        for order in orders:
            order.commission_paid = False
            order.commission_paid_at = None

        snapshot = payment.to_dict()
        db.session.delete(payment)
        db.session.commit()
        return snapshot, orders

    snapshot, orders = run_in_transaction(_op)
    if snapshot is None:
        return False

    publish_delete(ENTITY_COMMISSION_PAYMENT, payment_id)
    for order in orders:
        publish_upsert(ENTITY_ORDER, order)
    log_action(
        "Estorno de Comissão",
        f"{snapshot['seller_name'] or snapshot['seller_id']}: {format_money(snapshot['amount_cents'])} ({snapshot['period']})",
        actor,
    )
    return True


def list_commission_payments(seller_id: int | None = None) -> list[CommissionPayment]:
    query = db.session.query(CommissionPayment)
    if seller_id is not None:
        query = query.filter(CommissionPayment.seller_id == seller_id)
    return query.order_by(CommissionPayment.payment_date.desc(), CommissionPayment.id.desc()).all()
