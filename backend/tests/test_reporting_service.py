"""Financial aggregator over plain order dicts."""

from datetime import date

from backoffice.services.reporting_service import (
    amount_paid_cents,
    amount_pending_cents,
    commission_summary,
    customer_financials,
    financial_summary,
    group_orders_by_customer,
    seller_performance,
)


def _order(order_id, **overrides):
    order = {
        "id": order_id,
        "status": "PROCESSING",
        "payment_method": "CASH",
        "total_cents": 1000,
        "down_payment_cents": 0,
        "transfer_confirmed": None,
        "installments": [],
        "items": [],
        "seller_id": None,
        "seller_name": None,
        "commission_cents": 0,
        "commission_paid": False,
        "customer": {"cpf": "111.111.111-11", "name": "Ana", "phone": "9999", "code": "00001"},
        "created_at": "2024-03-10T12:00:00Z",
    }
    order.update(overrides)
    return order


# =============================================================================
# AMOUNT PAID
# =============================================================================


class TestAmountPaid:
    def test_cash_is_paid_in_full(self):
        assert amount_paid_cents(_order("A", total_cents=2500)) == 2500

    def test_instant_transfer_depends_on_confirmation(self):
        assert amount_paid_cents(_order("A", payment_method="INSTANT_TRANSFER", transfer_confirmed=True)) == 1000
        assert amount_paid_cents(_order("A", payment_method="INSTANT_TRANSFER", transfer_confirmed=None)) == 1000
        assert amount_paid_cents(_order("A", payment_method="INSTANT_TRANSFER", transfer_confirmed=False)) == 0

    def test_installment_credit_sums_payments_and_down_payment(self):
        order = _order(
            "A",
            payment_method="INSTALLMENT_CREDIT",
            total_cents=10000,
            down_payment_cents=1000,
            installments=[{"paid_cents": 3000}, {"paid_cents": 500}, {"paid_cents": 0}],
        )
        assert amount_paid_cents(order) == 4500
        assert amount_pending_cents(order) == 5500


# =============================================================================
# CUSTOMERS
# =============================================================================


def test_orders_group_by_normalized_cpf_and_fallback_identity():
    orders = [
        _order("A", customer={"cpf": "111.111.111-11", "name": "Ana"}),
        _order("B", customer={"cpf": "11111111111", "name": "Ana Maria"}),
        _order("C", customer={"cpf": "", "name": "Bia", "phone": "555"}),
    ]
    groups = group_orders_by_customer(orders)

    assert list(groups) == ["11111111111", "Bia-555"]
    assert [o["id"] for o in groups["11111111111"]] == ["A", "B"]


def test_customer_financials_ignore_inactive_orders():
    orders = [
        _order("A", total_cents=3000),
        _order(
            "B",
            payment_method="INSTALLMENT_CREDIT",
            total_cents=6000,
            installments=[{"paid_cents": 2000}, {"paid_cents": 0}],
        ),
        _order("C", status="CANCELED", total_cents=99999),
        _order("D", status="TRASHED", total_cents=99999),
    ]
    row = customer_financials(orders)["11111111111"]

    assert row["order_count"] == 2
    assert row["total_purchased_cents"] == 9000
    assert row["total_paid_cents"] == 5000
    assert row["balance_due_cents"] == 4000
    assert row["customer_code"] == "00001"


# =============================================================================
# STORE-WIDE
# =============================================================================


def test_financial_summary_rolls_twelve_months_and_current_month():
    products = [{"id": 1, "cost_cents": 600}]
    orders = [
        _order("A", total_cents=2000, items=[{"product_id": 1, "quantity": 2, "unit_price_cents": 1000}]),
        _order("B", total_cents=5000, created_at="2024-01-05T08:00:00Z"),
        _order("C", total_cents=7000, status="CANCELED"),
        _order("D", total_cents=4000, created_at="2022-01-01T00:00:00Z"),
    ]
    summary = financial_summary(orders, products, date(2024, 3, 20))

    months = summary["sales_by_month"]
    assert len(months) == 12
    assert months[0]["month"] == "2023-04"
    assert months[-1] == {"month": "2024-03", "total_cents": 2000, "order_count": 1}
    assert {"month": "2024-01", "total_cents": 5000, "order_count": 1} in months

    current = summary["current_month"]
    assert current["order_count"] == 1
    assert current["total_sold_cents"] == 2000
    assert current["total_received_cents"] == 2000
    assert current["total_pending_cents"] == 0
    assert current["gross_profit_cents"] == 800


# =============================================================================
# COMMISSIONS
# =============================================================================


def test_commission_summary_counts_delivered_unpaid_orders_only():
    orders = [
        _order("A", status="DELIVERED", seller_id=1, seller_name="Ana", commission_cents=500),
        _order("B", status="DELIVERED", seller_id=1, seller_name="Ana", commission_cents=300),
        _order("C", status="DELIVERED", seller_id=2, seller_name="Caio", commission_cents=900),
        _order("D", status="DELIVERED", seller_id=2, seller_name="Caio", commission_cents=900, commission_paid=True),
        _order("E", status="PROCESSING", seller_id=2, seller_name="Caio", commission_cents=900),
        _order("F", status="DELIVERED", seller_id=3, seller_name="Duda", commission_cents=0),
    ]
    summary = commission_summary(orders)

    assert [s["seller_id"] for s in summary["sellers"]] == [2, 1]
    assert summary["sellers"][1]["order_ids"] == ["A", "B"]
    assert summary["sellers"][1]["total_owed_cents"] == 800
    assert summary["total_pending_commission_cents"] == 1700


def test_seller_performance_filters_by_month():
    orders = [
        _order("A", status="DELIVERED", seller_id=1, seller_name="Ana", total_cents=1000, commission_cents=50),
        _order("B", status="DELIVERED", seller_id=1, seller_name="Ana", total_cents=3000, commission_cents=150,
               commission_paid=True, created_at="2024-02-01T10:00:00Z"),
    ]

    all_time = seller_performance(orders)
    assert all_time[0]["order_count"] == 2
    assert all_time[0]["commission_paid_cents"] == 150
    assert all_time[0]["commission_pending_cents"] == 50

    march = seller_performance(orders, month="2024-03")
    assert march[0]["total_sold_cents"] == 1000
