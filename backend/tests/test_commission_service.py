"""Commission calculation rules, payouts and payout reversal."""

from decimal import Decimal

import pytest

from backoffice.models import CommissionPayment, Order
from backoffice.services import order_service
from backoffice.services.commission_service import (
    CommissionError,
    calculate_commission,
    configured_fallback_percent,
    pay_commissions,
    reverse_commission_payment,
)


def _item(product_id, quantity, unit_price_cents):
    return {"product_id": product_id, "quantity": quantity, "unit_price_cents": unit_price_cents}


# =============================================================================
# CALCULATION
# =============================================================================


class TestCalculateCommission:
    def test_manual_commission_is_kept(self):
        order = {"commission_manual": True, "commission_cents": 1234, "seller_id": None, "items": []}
        assert calculate_commission(order, {}) == 1234

    def test_no_seller_means_no_commission(self):
        order = {"seller_id": None, "items": [_item(1, 1, 10000)]}
        assert calculate_commission(order, {1: {"id": 1, "commission_value": "10"}}) == 0

    def test_fallback_percentage_for_products_without_rule(self):
        order = {"seller_id": 7, "items": [_item(1, 2, 10000)]}
        assert calculate_commission(order, {1: {"id": 1}}) == 1000
        assert calculate_commission(order, {}, fallback_percent=10) == 2000

    def test_fixed_commission_is_per_unit(self):
        order = {"seller_id": 7, "items": [_item(1, 2, 10000)]}
        products = {1: {"id": 1, "commission_type": "fixed", "commission_value": "15.50"}}
        assert calculate_commission(order, products) == 3100

    def test_percentage_commission_rounds_half_up(self):
        order = {"seller_id": 7, "items": [_item(1, 1, 2999)]}
        products = [{"id": 1, "commission_type": "percentage", "commission_value": Decimal("10")}]
        assert calculate_commission(order, products) == 300

    def test_rounding_happens_once_on_the_total(self):
        # Two lines of half a cent each add up to one cent
        order = {"seller_id": 7, "items": [_item(1, 1, 10), _item(2, 1, 10)]}
        assert calculate_commission(order, {}) == 1

    def test_missing_type_defaults_to_percentage(self):
        order = {"seller_id": 7, "items": [_item(1, 3, 1000)]}
        assert calculate_commission(order, {1: {"id": 1, "commission_value": "2"}}) == 60


def test_configured_fallback_percent(app):
    assert configured_fallback_percent() == Decimal("5")


# =============================================================================
# PAYOUTS
# =============================================================================


def _delivered_order(seller, make_product, price_cents=10000):
    product = make_product(price_cents=price_cents, stock=5)
    order = order_service.create_order({
        "customer": {"name": "Ana", "phone": "5555"},
        "items": [{"product_id": product.id, "quantity": 1}],
        "payment_method": "CASH",
    }, actor=seller)
    return order_service.update_order_status(order.id, "DELIVERED", actor=seller)


class TestPayouts:
    def test_pay_and_reverse(self, db_session, admin_user, seller_user, make_product):
        first = _delivered_order(seller_user, make_product)
        second = _delivered_order(seller_user, make_product, price_cents=2000)
        assert first.commission_cents == 500
        assert second.commission_cents == 100

        payment = pay_commissions(
            seller_id=seller_user.id,
            seller_name=seller_user.name,
            order_ids=[first.id, second.id],
            period="2024-03",
            actor=admin_user,
        )
        assert payment.amount_cents == 600
        assert db_session.get(Order, first.id).commission_paid is True
        assert db_session.get(Order, second.id).commission_paid_at is not None

        assert reverse_commission_payment(payment.id, actor=admin_user) is True
        assert db_session.query(CommissionPayment).count() == 0
        assert db_session.get(Order, first.id).commission_paid is False

    def test_reverse_unknown_payment_is_noop(self, db_session, admin_user):
        assert reverse_commission_payment(9999, actor=admin_user) is False

    def test_rejects_orders_of_another_seller(self, db_session, admin_user, seller_user, manager_user, make_product):
        order = _delivered_order(seller_user, make_product)

        with pytest.raises(CommissionError):
            pay_commissions(
                seller_id=manager_user.id,
                seller_name=manager_user.name,
                order_ids=[order.id],
                period="2024-03",
                actor=admin_user,
            )

        assert db_session.query(CommissionPayment).count() == 0
        assert db_session.get(Order, order.id).commission_paid is False

    def test_rejects_unknown_orders(self, db_session, admin_user, seller_user):
        with pytest.raises(CommissionError):
            pay_commissions(
                seller_id=seller_user.id,
                seller_name=seller_user.name,
                order_ids=["PED-000000"],
                period="2024-03",
                actor=admin_user,
            )
