"""Stock reservation: all-or-nothing subtraction and guarded release."""

from types import SimpleNamespace

import pytest

from backoffice.models import Product
from backoffice.services.stock_service import (
    InsufficientStockError,
    release_stock,
    reserve_stock,
)


def _order(*lines, reserved=False):
    return SimpleNamespace(
        id="PED-TEST",
        stock_reserved=reserved,
        items=[{"product_id": pid, "quantity": qty, "name": f"P{pid}"} for pid, qty in lines],
    )


def test_reserve_subtracts_and_marks_order(db_session, make_product):
    chair = make_product(name="Cadeira", stock=5)
    table = make_product(name="Mesa", stock=2)
    order = _order((chair.id, 2), (table.id, 1), (chair.id, 1))

    levels = reserve_stock(order)

    assert levels == {chair.id: 2, table.id: 1}
    assert order.stock_reserved is True
    assert db_session.get(Product, chair.id).stock == 2


def test_second_reserve_is_noop(db_session, make_product):
    chair = make_product(stock=5)
    order = _order((chair.id, 2))

    reserve_stock(order)
    assert reserve_stock(order) == {}
    assert db_session.get(Product, chair.id).stock == 3


def test_insufficient_stock_writes_nothing(db_session, make_product):
    chair = make_product(name="Cadeira", stock=5)
    table = make_product(name="Mesa", stock=1)
    order = _order((chair.id, 2), (table.id, 3))

    with pytest.raises(InsufficientStockError) as exc:
        reserve_stock(order)

    assert exc.value.to_dict() == {
        "product_id": table.id,
        "product_name": "Mesa",
        "available": 1,
        "requested": 3,
    }
    assert order.stock_reserved is False
    assert db_session.get(Product, chair.id).stock == 5
    assert db_session.get(Product, table.id).stock == 1


def test_reserving_a_missing_product_fails(db_session):
    with pytest.raises(InsufficientStockError) as exc:
        reserve_stock(_order((424242, 1)))
    assert exc.value.available == 0


def test_release_restores_quantities(db_session, make_product):
    chair = make_product(stock=5)
    order = _order((chair.id, 4))
    reserve_stock(order)

    levels = release_stock(order)

    assert levels == {chair.id: 5}
    assert order.stock_reserved is False
    assert release_stock(order) == {}


def test_release_skips_products_that_no_longer_exist(db_session, make_product):
    chair = make_product(stock=1)
    order = _order((chair.id, 2), (424242, 1), reserved=True)

    assert release_stock(order) == {chair.id: 3}
