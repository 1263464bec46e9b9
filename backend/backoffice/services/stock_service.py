# Overview: Stock reservation; moves product stock in lockstep with an order's active/inactive status.

"""
Stock Reservation

apply_stock_delta(order, direction):
- "subtract" reserves the order's quantities (creation, un-cancel, restore)
- "add" releases them (cancel, trash)

All new stock levels are computed before any product is written. A subtract
that would take any product below zero raises InsufficientStockError and
leaves every product untouched. Nothing is committed here: the caller's
transaction commits (or rolls back) the stock writes together with the
order change.

order.stock_reserved records whether the order currently holds stock, so a
second reserve or release for the same state is a no-op.
"""

from __future__ import annotations

from collections import OrderedDict

from flask import current_app

from ..extensions import db
from ..models import Product
from .concurrency import lock_for_update


STOCK_SUBTRACT = "subtract"
STOCK_ADD = "add"


class InsufficientStockError(Exception):
    """Raised when reserving more units than a product has in stock."""

    def __init__(self, product_id, product_name: str | None, available: int, requested: int):
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for {product_name or product_id}: "
            f"available {available}, requested {requested}"
        )

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "available": self.available,
            "requested": self.requested,
        }


def _get(record, key):
    if isinstance(record, dict):
        return record.get(key)
    return getattr(record, key, None)


def _quantities(items) -> "OrderedDict[int, tuple[int, str | None]]":
    """product_id -> (total quantity, item name), in first-seen order."""
    totals: OrderedDict = OrderedDict()
    for item in items or []:
        product_id = _get(item, "product_id")
        quantity = int(_get(item, "quantity") or 0)
        if product_id is None or quantity <= 0:
            continue
        prev_qty, name = totals.get(product_id, (0, _get(item, "name")))
        totals[product_id] = (prev_qty + quantity, name)
    return totals


def apply_stock_delta(order, direction: str, *, items=None) -> dict:
    """
    Reserve or release stock for an order's items.

    items overrides the order's own items (used when editing items of an
    order that holds stock). Returns {product_id: new_stock} for the
    products written; an empty dict when the call was a no-op.
    """
    if direction not in (STOCK_SUBTRACT, STOCK_ADD):
        raise ValueError(f"Invalid stock direction: {direction}")

    if direction == STOCK_SUBTRACT and order.stock_reserved:
        return {}
    if direction == STOCK_ADD and not order.stock_reserved:
        return {}

    wanted = _quantities(order.items if items is None else items)

    products = {}
    if wanted:
        rows = lock_for_update(
            db.session.query(Product).filter(Product.id.in_(list(wanted.keys())))
        ).all()
        products = {p.id: p for p in rows}

    # Validate every line before writing any
    new_levels: dict = {}
    for product_id, (quantity, name) in wanted.items():
        product = products.get(product_id)
        if product is None:
            if direction == STOCK_SUBTRACT:
                raise InsufficientStockError(product_id, name, 0, quantity)
            current_app.logger.warning(
                "Stock release skipped for order %s: product %s no longer exists", order.id, product_id
            )
            continue

        if direction == STOCK_SUBTRACT:
            if product.stock < quantity:
                raise InsufficientStockError(product.id, product.name, product.stock, quantity)
            new_levels[product_id] = product.stock - quantity
        else:
            new_levels[product_id] = product.stock + quantity

    for product_id, level in new_levels.items():
        products[product_id].stock = level

    order.stock_reserved = direction == STOCK_SUBTRACT
    return new_levels


def reserve_stock(order, *, items=None) -> dict:
    return apply_stock_delta(order, STOCK_SUBTRACT, items=items)


def release_stock(order, *, items=None) -> dict:
    return apply_stock_delta(order, STOCK_ADD, items=items)
