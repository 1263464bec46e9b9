# Overview: Order lifecycle controller; creates orders, moves them through their status machine and edits them.

"""
Order Lifecycle Controller

Orchestrates the scheduler, commission calculator, stock reservation and
customer code allocator around the Order record.

STATUS MACHINE:
    PROCESSING -> DELIVERED | CANCELED | TRASHED
    DELIVERED  -> CANCELED | TRASHED
    CANCELED   -> PROCESSING | DELIVERED | TRASHED
    TRASHED    -> restored to status_before_trash, or purged

Entering CANCELED/TRASHED releases stock, leaving them reserves it again;
order.stock_reserved keeps each transition from applying twice.

Every operation runs in one DB transaction: a failed reservation (or any
other error) rolls back all stock writes made by the same operation.
"""

from __future__ import annotations

import secrets
from datetime import date

from dateutil.relativedelta import relativedelta
from flask import current_app

from ..extensions import db
from ..models import Order, OrderItem, Installment, Product, User
from backoffice.money import format_money
from backoffice.time_utils import utcnow
from backoffice.validation import (
    ValidationError,
    coerce_due_date,
    require_non_negative_int,
    require_positive_int,
)
from .audit_service import log_action
from .change_feed import ENTITY_CUSTOMER, ENTITY_ORDER, ENTITY_PRODUCT, publish_delete, publish_upsert
from .commission_service import calculate_commission, configured_fallback_percent
from .concurrency import lock_for_update, run_in_transaction
from .customer_service import resolve_order_customer
from .installment_service import generate_installments_cents
from .payment_service import INSTALLMENT_PENDING
from .stock_service import release_stock, reserve_stock


class OrderError(Exception):
    """Raised for order operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


# =============================================================================
# ORDER STATUS (CONSTANTS)
# =============================================================================

ORDER_PROCESSING = "PROCESSING"
ORDER_DELIVERED = "DELIVERED"
ORDER_CANCELED = "CANCELED"
ORDER_TRASHED = "TRASHED"

VALID_ORDER_STATUSES = [ORDER_PROCESSING, ORDER_DELIVERED, ORDER_CANCELED, ORDER_TRASHED]

ALLOWED_TRANSITIONS = {
    ORDER_PROCESSING: {ORDER_DELIVERED, ORDER_CANCELED, ORDER_TRASHED},
    ORDER_DELIVERED: {ORDER_CANCELED, ORDER_TRASHED},
    ORDER_CANCELED: {ORDER_PROCESSING, ORDER_DELIVERED, ORDER_TRASHED},
    ORDER_TRASHED: set(),
}

# Orders in these statuses hold no stock
INACTIVE_STATUSES = {ORDER_CANCELED, ORDER_TRASHED}


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

PAYMENT_CASH = "CASH"
PAYMENT_INSTANT_TRANSFER = "INSTANT_TRANSFER"
PAYMENT_INSTALLMENT_CREDIT = "INSTALLMENT_CREDIT"

VALID_PAYMENT_METHODS = [PAYMENT_CASH, PAYMENT_INSTANT_TRANSFER, PAYMENT_INSTALLMENT_CREDIT]

ORDER_ID_DIGITS = 6


# =============================================================================
# HELPERS
# =============================================================================

def _generate_order_id() -> str:
    prefix = current_app.config.get("ORDER_ID_PREFIX", "PED")
    for _ in range(20):
        candidate = f"{prefix}-{secrets.randbelow(10 ** ORDER_ID_DIGITS):0{ORDER_ID_DIGITS}d}"
        if db.session.get(Order, candidate) is None:
            return candidate
    raise OrderError("Could not allocate a unique order id")


def _load_products(product_ids) -> dict:
    ids = list({pid for pid in product_ids if pid is not None})
    if not ids:
        return {}
    return {p.id: p for p in db.session.query(Product).filter(Product.id.in_(ids)).all()}


def _build_items(raw_items) -> list[OrderItem]:
    """
    Validate cart lines and freeze their prices.

    Each line: {"product_id", "quantity", optional "unit_price_cents"}.
    The catalog price is used when no unit price is given.
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")

    products = _load_products(
        line.get("product_id") for line in raw_items if isinstance(line, dict)
    )

    items = []
    for position, line in enumerate(raw_items):
        if not isinstance(line, dict):
            raise ValidationError("each item must be an object")
        product = products.get(line.get("product_id"))
        if product is None:
            raise ValidationError(f"Product {line.get('product_id')} not found")
        quantity = require_positive_int(line.get("quantity"), "quantity")
        unit_price = line.get("unit_price_cents")
        unit_price = product.price_cents if unit_price is None else require_non_negative_int(unit_price, "unit_price_cents")

        items.append(OrderItem(
            position=position,
            product_id=product.id,
            name=product.name,
            quantity=quantity,
            unit_price_cents=unit_price,
            line_total_cents=unit_price * quantity,
        ))
    return items


def _recompute_totals(order: Order) -> None:
    order.subtotal_cents = sum(item.line_total_cents for item in order.items)
    order.total_cents = order.subtotal_cents - (order.discount_cents or 0)
    if order.total_cents < 0:
        raise OrderError("Discount exceeds order subtotal", {
            "subtotal_cents": order.subtotal_cents,
            "discount_cents": order.discount_cents,
        })
    if (order.down_payment_cents or 0) > order.total_cents:
        raise OrderError("Down payment exceeds order total", {
            "total_cents": order.total_cents,
            "down_payment_cents": order.down_payment_cents,
        })


def _first_due_date(order: Order) -> date:
    if order.first_due_date is not None:
        return order.first_due_date
    if order.installments:
        return order.installments[0].due_date
    return utcnow().date() + relativedelta(months=1)


def _rebuild_schedule(order: Order) -> None:
    """Replace the installment plan (and its payment history) with a fresh one."""
    if order.installments:
        order.installments = []
        # Old rows share primary keys with the new ones; delete them first
        db.session.flush()

    if order.payment_method != PAYMENT_INSTALLMENT_CREDIT:
        return

    first_due = _first_due_date(order)
    order.first_due_date = first_due
    financed = order.total_cents - (order.down_payment_cents or 0)
    for scheduled in generate_installments_cents(financed, order.installment_count, order.id, first_due):
        order.installments.append(Installment(
            id=scheduled.id,
            installment_number=scheduled.installment_number,
            amount_cents=scheduled.amount_cents,
            due_date=scheduled.due_date,
            status=INSTALLMENT_PENDING,
            paid_cents=0,
        ))


def _recompute_commission(order: Order) -> None:
    products = _load_products(item.product_id for item in order.items)
    order.commission_cents = calculate_commission(
        order, products, fallback_percent=configured_fallback_percent()
    )


def _resolve_seller(seller_id) -> User | None:
    if seller_id is None:
        return None
    seller = db.session.get(User, seller_id)
    if seller is None:
        raise ValidationError(f"Seller {seller_id} not found")
    return seller


def _locked_order(order_id: str) -> Order | None:
    return lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()


def _publish_order_effects(order: Order, touched_products=()) -> None:
    publish_upsert(ENTITY_ORDER, order)
    if touched_products:
        for product in db.session.query(Product).filter(Product.id.in_(list(touched_products))).all():
            publish_upsert(ENTITY_PRODUCT, product)


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: str) -> Order | None:
    return db.session.get(Order, order_id)


def list_orders(
    *,
    status: str | None = None,
    seller_id: int | None = None,
    include_trashed: bool = False,
) -> list[Order]:
    query = db.session.query(Order)
    if status:
        query = query.filter(Order.status == status)
    elif not include_trashed:
        query = query.filter(Order.status != ORDER_TRASHED)
    if seller_id is not None:
        query = query.filter(Order.seller_id == seller_id)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


# =============================================================================
# CREATE
# =============================================================================

def create_order(data: dict, actor=None) -> Order:
    """
    Create an order from a cart.

    data:
        customer: {"cpf", "name", "phone", ...}
        items: [{"product_id", "quantity", "unit_price_cents"?}]
        payment_method: CASH | INSTANT_TRANSFER | INSTALLMENT_CREDIT
        installment_count, first_due_date: required for INSTALLMENT_CREDIT
        discount_cents, down_payment_cents: optional, default 0
        seller_id: optional, defaults to the acting user
        commission_cents: optional manual commission
        transfer_confirmed, observations, source: optional

    Raises:
        ValidationError: malformed input
        OrderError: inconsistent amounts
        InsufficientStockError: not enough stock; nothing is persisted
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")

    payment_method = data.get("payment_method")
    if payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {VALID_PAYMENT_METHODS}")

    discount = require_non_negative_int(data.get("discount_cents", 0), "discount_cents")
    down_payment = require_non_negative_int(data.get("down_payment_cents", 0), "down_payment_cents")

    installment_count = 0
    first_due = None
    if payment_method == PAYMENT_INSTALLMENT_CREDIT:
        installment_count = require_positive_int(data.get("installment_count"), "installment_count")
        first_due = coerce_due_date(data.get("first_due_date"))

    manual_commission = data.get("commission_cents")
    if manual_commission is not None:
        require_non_negative_int(manual_commission, "commission_cents")

    def _op():
        seller = _resolve_seller(data["seller_id"]) if data.get("seller_id") is not None else actor
        customer = resolve_order_customer(data.get("customer"), seller=seller)

        order = Order(
            id=_generate_order_id(),
            status=ORDER_PROCESSING,
            payment_method=payment_method,
            installment_count=installment_count,
            first_due_date=first_due,
            discount_cents=discount,
            down_payment_cents=down_payment,
            seller_id=getattr(seller, "id", None),
            seller_name=getattr(seller, "name", None),
            commission_manual=manual_commission is not None,
            commission_cents=manual_commission or 0,
            commission_paid=False,
            transfer_confirmed=bool(data.get("transfer_confirmed")) if payment_method == PAYMENT_INSTANT_TRANSFER else None,
            stock_reserved=False,
            customer_id=customer.id,
            customer=customer.snapshot(),
            observations=data.get("observations"),
            source=data.get("source"),
            created_at=utcnow(),
            created_by_id=getattr(actor, "id", None),
            created_by_name=getattr(actor, "name", None),
        )
        order.items = _build_items(data.get("items"))
        _recompute_totals(order)
        _recompute_commission(order)
        _rebuild_schedule(order)

        db.session.add(order)
        reserved = reserve_stock(order)

        db.session.commit()
        return order, customer, reserved

    order, customer, reserved = run_in_transaction(_op)

    _publish_order_effects(order, reserved.keys())
    publish_upsert(ENTITY_CUSTOMER, customer)
    log_action(
        "Criação de Pedido",
        f"Pedido {order.id} criado: {format_money(order.total_cents)} ({order.payment_method}).",
        actor,
    )
    return order


# =============================================================================
# STATUS
# =============================================================================

def update_order_status(order_id: str, status: str, actor=None) -> Order | None:
    """
    Move an order to a new status, releasing or reserving stock as needed.

    Delivering an order with a seller re-prices its commission and marks it
    unpaid. TRASHED delegates to move_order_to_trash.

    Returns None when the order does not exist.
    """
    status = (status or "").strip().upper()
    if status not in VALID_ORDER_STATUSES:
        raise OrderError(f"Invalid status: {status}. Must be one of {VALID_ORDER_STATUSES}")
    if status == ORDER_TRASHED:
        return move_order_to_trash(order_id, actor)

    def _op():
        order = _locked_order(order_id)
        if order is None:
            return None, None, {}

        current = order.status
        if current == status:
            return order, current, {}
        if status not in ALLOWED_TRANSITIONS.get(current, set()):
            raise OrderError(
                f"Cannot change order from {current} to {status}",
                {"from": current, "to": status},
            )

        if status in INACTIVE_STATUSES:
            touched = release_stock(order)
        elif current in INACTIVE_STATUSES:
            touched = reserve_stock(order)
        else:
            touched = {}

        order.status = status

        if status == ORDER_DELIVERED and order.seller_id:
            _recompute_commission(order)
            order.commission_paid = False
            order.commission_paid_at = None

        db.session.commit()
        return order, current, touched

    order, previous, touched = run_in_transaction(_op)
    if order is None:
        return None

    if previous != status:
        _publish_order_effects(order, touched.keys())
        log_action("Status Atualizado", f"Pedido {order_id} alterado de {previous} para {status}.", actor)
    return order


def move_order_to_trash(order_id: str, actor=None) -> Order | None:
    def _op():
        order = _locked_order(order_id)
        if order is None:
            return None, {}
        if order.status == ORDER_TRASHED:
            return order, None

        touched = release_stock(order)
        order.status_before_trash = order.status
        order.status = ORDER_TRASHED
        order.trashed_at = utcnow()

        db.session.commit()
        return order, touched

    order, touched = run_in_transaction(_op)
    if order is None:
        return None

    if touched is not None:
        _publish_order_effects(order, touched.keys())
        log_action("Exclusão de Pedido", f"Pedido {order_id} movido para lixeira.", actor)
    return order


def restore_order_from_trash(order_id: str, actor=None) -> Order | None:
    """Return a trashed order to the status it had, reserving stock again when active."""
    def _op():
        order = _locked_order(order_id)
        if order is None:
            return None, {}
        if order.status != ORDER_TRASHED:
            raise OrderError(f"Order {order_id} is not in the trash")

        target = order.status_before_trash or ORDER_PROCESSING
        touched = {} if target in INACTIVE_STATUSES else reserve_stock(order)

        order.status = target
        order.status_before_trash = None
        order.trashed_at = None

        db.session.commit()
        return order, touched

    order, touched = run_in_transaction(_op)
    if order is None:
        return None

    _publish_order_effects(order, touched.keys())
    log_action("Pedido Restaurado", f"Pedido {order_id} restaurado como {order.status}.", actor)
    return order


def purge_order(order_id: str, actor=None) -> bool:
    """Permanently delete a trashed order with its items, installments and payments."""
    def _op():
        order = _locked_order(order_id)
        if order is None:
            return False, {}
        if order.status != ORDER_TRASHED:
            raise OrderError("Only orders in the trash can be permanently deleted")

        touched = release_stock(order)
        db.session.delete(order)
        db.session.commit()
        return True, touched

    purged, touched = run_in_transaction(_op)
    if not purged:
        return False

    publish_delete(ENTITY_ORDER, order_id)
    if touched:
        for product in db.session.query(Product).filter(Product.id.in_(list(touched))).all():
            publish_upsert(ENTITY_PRODUCT, product)
    log_action("Exclusão Permanente", f"Pedido {order_id} excluído.", actor)
    return True


# =============================================================================
# DETAILS
# =============================================================================

EDITABLE_DETAILS = {
    "items",
    "discount_cents",
    "installment_count",
    "down_payment_cents",
    "reset_down_payment",
    "payment_method",
    "seller_id",
    "commission_cents",
    "recalculate_commission",
    "transfer_confirmed",
    "observations",
}


def update_order_details(order_id: str, details: dict, actor=None) -> Order | None:
    """
    Partial edit of an order.

    details keys (all optional):
        items: replaces the cart; stock follows when the order holds stock
        discount_cents
        installment_count
        down_payment_cents: amount ADDED to the current down payment
        reset_down_payment: true sets the down payment back to 0 first
        payment_method
        seller_id: null removes the seller
        commission_cents: manual commission (marks it manual)
        recalculate_commission: true drops the manual flag and re-prices
        transfer_confirmed, observations

    Discount, installment count, down payment, items, or a switch to
    INSTALLMENT_CREDIT rebuild the schedule from the original first due date
    (payments on the old schedule are discarded). Leaving INSTALLMENT_CREDIT
    clears the schedule. Seller, items and manual-commission edits re-price
    commission; a seller change also marks it unpaid.

    Returns None when the order does not exist.
    """
    if not isinstance(details, dict):
        raise ValidationError("Invalid JSON payload")
    unknown = sorted(set(details) - EDITABLE_DETAILS)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")

    new_method = details.get("payment_method")
    if "payment_method" in details and new_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {VALID_PAYMENT_METHODS}")
    if "discount_cents" in details:
        require_non_negative_int(details["discount_cents"], "discount_cents")
    if "installment_count" in details:
        require_positive_int(details["installment_count"], "installment_count")
    if "down_payment_cents" in details:
        require_non_negative_int(details["down_payment_cents"], "down_payment_cents")
    if details.get("commission_cents") is not None:
        require_non_negative_int(details["commission_cents"], "commission_cents")

    def _op():
        order = _locked_order(order_id)
        if order is None:
            return None, {}
        if order.status == ORDER_TRASHED:
            raise OrderError("Restore the order from the trash before editing it")

        previous_method = order.payment_method
        rebuild_schedule = False
        reprice = False
        touched: dict = {}

        if "items" in details:
            new_items = _build_items(details["items"])
            if order.stock_reserved:
                old_lines = [
                    {"product_id": i.product_id, "quantity": i.quantity, "name": i.name}
                    for i in order.items
                ]
                touched.update(release_stock(order, items=old_lines))
                order.items = new_items
                touched.update(reserve_stock(order))
            else:
                order.items = new_items
            rebuild_schedule = reprice = True

        if "discount_cents" in details:
            order.discount_cents = details["discount_cents"]
            rebuild_schedule = True

        if details.get("reset_down_payment"):
            order.down_payment_cents = 0
            rebuild_schedule = True
        if "down_payment_cents" in details:
            order.down_payment_cents = (order.down_payment_cents or 0) + details["down_payment_cents"]
            rebuild_schedule = True

        if "payment_method" in details:
            order.payment_method = new_method
            if new_method == PAYMENT_INSTALLMENT_CREDIT and previous_method != PAYMENT_INSTALLMENT_CREDIT:
                rebuild_schedule = True
            if new_method == PAYMENT_INSTANT_TRANSFER and previous_method != PAYMENT_INSTANT_TRANSFER:
                order.transfer_confirmed = False

        if "installment_count" in details:
            order.installment_count = details["installment_count"]
            rebuild_schedule = True

        if "seller_id" in details:
            seller = _resolve_seller(details["seller_id"])
            new_seller_id = getattr(seller, "id", None)
            if new_seller_id != order.seller_id:
                order.seller_id = new_seller_id
                order.seller_name = getattr(seller, "name", None)
                order.commission_paid = False
                order.commission_paid_at = None
                reprice = True

        if details.get("commission_cents") is not None:
            order.commission_manual = True
            order.commission_cents = details["commission_cents"]
        elif details.get("recalculate_commission"):
            order.commission_manual = False
            reprice = True

        if "transfer_confirmed" in details:
            order.transfer_confirmed = bool(details["transfer_confirmed"])
        if "observations" in details:
            order.observations = details["observations"]

        _recompute_totals(order)

        if order.payment_method != PAYMENT_INSTALLMENT_CREDIT:
            order.installment_count = 0
            if order.installments:
                _rebuild_schedule(order)
        elif rebuild_schedule:
            if not order.installment_count:
                order.installment_count = 1
            _rebuild_schedule(order)

        if reprice:
            _recompute_commission(order)

        db.session.commit()
        return order, touched

    order, touched = run_in_transaction(_op)
    if order is None:
        return None

    _publish_order_effects(order, touched.keys())
    log_action("Atualização de Pedido", f"Detalhes do pedido {order_id} atualizados.", actor)
    return order
