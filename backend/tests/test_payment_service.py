"""Installment payment ledger."""

from datetime import date

import pytest

from backoffice.models import Installment, InstallmentPayment
from backoffice.services import order_service, payment_service
from backoffice.services.payment_service import (
    INSTALLMENT_PAID,
    INSTALLMENT_PENDING,
    PaymentError,
    status_after_credit,
    status_after_reversal,
)


@pytest.fixture
def credit_order(db_session, seller_user, make_product):
    """R$ 100.00 financed in 3 installments: 33.34, 33.33, 33.33."""
    product = make_product(name="Sofa", price_cents=10000, stock=3)
    return order_service.create_order({
        "customer": {"cpf": "123.456.789-09", "name": "Ana"},
        "items": [{"product_id": product.id, "quantity": 1}],
        "payment_method": "INSTALLMENT_CREDIT",
        "installment_count": 3,
        "first_due_date": "2024-01-15",
    }, actor=seller_user)


def test_status_rules():
    assert status_after_credit(3334, 3334) == INSTALLMENT_PAID
    assert status_after_credit(3000, 3334) == INSTALLMENT_PENDING
    assert status_after_credit(4000, 3334) == INSTALLMENT_PENDING
    assert status_after_reversal(4000, 3334) == INSTALLMENT_PAID
    assert status_after_reversal(3333, 3334) == INSTALLMENT_PENDING


def test_record_then_reverse_restores_installment(db_session, credit_order, seller_user):
    installment = payment_service.record_payment(credit_order.id, 1, 3334, "CASH", actor=seller_user)

    assert installment.status == INSTALLMENT_PAID
    assert installment.paid_cents == 3334
    assert len(installment.payments) == 1
    payment_id = installment.payments[0].id

    installment = payment_service.reverse_payment(credit_order.id, 1, payment_id, actor=seller_user)

    assert installment.status == INSTALLMENT_PENDING
    assert installment.paid_cents == 0
    assert installment.payments == []
    assert db_session.query(InstallmentPayment).count() == 0


def test_partial_payments_accumulate(db_session, credit_order):
    payment_service.record_payment(credit_order.id, 2, 2000, "INSTANT_TRANSFER")
    installment = payment_service.record_payment(credit_order.id, 2, 1333, "CARD", received_by="Maria")

    assert installment.paid_cents == 3333
    assert installment.status == INSTALLMENT_PAID
    assert [p.received_by for p in installment.payments] == [None, "Maria"]


def test_reversal_uses_greater_or_equal_rule(db_session, credit_order):
    payment_service.record_payment(credit_order.id, 1, 4000, "CASH")
    installment = payment_service.record_payment(credit_order.id, 1, 500, "CASH")
    assert installment.status == INSTALLMENT_PENDING

    extra = installment.payments[-1]
    installment = payment_service.reverse_payment(credit_order.id, 1, extra.id)

    # Overpaid after the reversal: PAID, although the same total was PENDING when credited
    assert installment.paid_cents == 4000
    assert installment.status == INSTALLMENT_PAID


def test_reverse_unknown_payment_is_noop(db_session, credit_order):
    payment_service.record_payment(credit_order.id, 1, 1000, "CASH")

    assert payment_service.reverse_payment(credit_order.id, 1, 999999) is None
    assert payment_service.reverse_payment("PED-NOPE", 1, 1) is None

    installment = db_session.query(Installment).filter_by(order_id=credit_order.id, installment_number=1).one()
    assert installment.paid_cents == 1000


def test_record_payment_validation(db_session, credit_order):
    with pytest.raises(PaymentError):
        payment_service.record_payment(credit_order.id, 1, 0, "CASH")
    with pytest.raises(PaymentError):
        payment_service.record_payment(credit_order.id, 1, 10.5, "CASH")
    with pytest.raises(PaymentError):
        payment_service.record_payment(credit_order.id, 1, 100, "CHEQUE")

    assert payment_service.record_payment(credit_order.id, 9, 100, "CASH") is None


def test_first_installment_due_date_moves_order_first_due_date(db_session, credit_order):
    installment = payment_service.update_installment_due_date(credit_order.id, 1, "2024-01-20")

    assert installment.due_date == date(2024, 1, 20)
    assert credit_order.first_due_date == date(2024, 1, 20)

    payment_service.update_installment_due_date(credit_order.id, 2, "2024-03-01")
    assert credit_order.first_due_date == date(2024, 1, 20)


def test_update_installment_amount_rederives_status(db_session, credit_order):
    payment_service.record_payment(credit_order.id, 3, 3000, "CASH")

    installment = payment_service.update_installment_amount(credit_order.id, 3, 3000)

    assert installment.amount_cents == 3000
    assert installment.status == INSTALLMENT_PAID


def test_payment_summary(db_session, credit_order):
    payment_service.record_payment(credit_order.id, 1, 3334, "CASH")

    summary = payment_service.payment_summary(credit_order)

    assert summary["scheduled_cents"] == 10000
    assert summary["paid_cents"] == 3334
    assert summary["remaining_cents"] == 6666
    assert summary["installments_paid"] == 1
    assert summary["installments_total"] == 3


def test_installment_version_advances_on_payment(db_session, credit_order):
    before = db_session.query(Installment).filter_by(order_id=credit_order.id, installment_number=1).one().version_id

    installment = payment_service.record_payment(credit_order.id, 1, 1000, "CASH")

    assert installment.version_id == before + 1
    assert installment.to_dict()["version_id"] == installment.version_id
