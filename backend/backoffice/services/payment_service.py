# Overview: Installment payment ledger; records and reverses payments and edits scheduled installments.

"""
Payment Ledger

Payments are applied to one installment of an installment-credit order.

- record_payment adds a payment row and credits paid_cents. The installment
  is PAID when paid_cents lands within one cent of amount_cents, PENDING
  otherwise. Partial payments accumulate; overpayments are accepted.
- reverse_payment deletes the payment row and debits paid_cents. The status
  is then PAID when paid_cents >= amount_cents, PENDING otherwise.

The crediting rule (near-equality) and the reversal rule (>=) differ on
purpose: after reversing part of an overpayment the installment stays PAID.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Order, Installment, InstallmentPayment
from backoffice.money import format_money
from backoffice.time_utils import utcnow
from backoffice.validation import coerce_due_date, require_positive_int
from .audit_service import log_action
from .change_feed import ENTITY_ORDER, publish_upsert
from .concurrency import lock_for_update, run_with_retry


class PaymentError(Exception):
    """Raised for payment operation errors."""
    pass


# =============================================================================
# INSTALLMENT STATUS (CONSTANTS)
# =============================================================================

INSTALLMENT_PENDING = "PENDING"
INSTALLMENT_PAID = "PAID"


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "CASH"
METHOD_INSTANT_TRANSFER = "INSTANT_TRANSFER"
METHOD_CARD = "CARD"
METHOD_BANK_SLIP = "BANK_SLIP"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_INSTANT_TRANSFER,
    METHOD_CARD,
    METHOD_BANK_SLIP,
]


def status_after_credit(paid_cents: int, amount_cents: int) -> str:
    # |paid - amount| < 0.01 in currency units
    return INSTALLMENT_PAID if abs(paid_cents - amount_cents) < 1 else INSTALLMENT_PENDING


def status_after_reversal(paid_cents: int, amount_cents: int) -> str:
    return INSTALLMENT_PAID if paid_cents >= amount_cents else INSTALLMENT_PENDING


def _locked_installment(order_id: str, installment_number: int):
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        return None, None
    installment = lock_for_update(
        db.session.query(Installment).filter_by(order_id=order_id, installment_number=installment_number)
    ).first()
    return order, installment


def record_payment(
    order_id: str,
    installment_number: int,
    amount_cents: int,
    method: str,
    received_by: str | None = None,
    actor=None,
) -> Installment | None:
    """
    Apply a payment to one installment.

    Returns the updated installment, or None when the order or installment
    does not exist.

    Raises:
        PaymentError: amount not positive or unknown method
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise PaymentError("Payment amount must be a positive integer (cents)")
    if method not in VALID_PAYMENT_METHODS:
        raise PaymentError(f"Invalid payment method: {method}. Must be one of {VALID_PAYMENT_METHODS}")

    def _op():
        order, installment = _locked_installment(order_id, installment_number)
        if installment is None:
            return None, None

        payment = InstallmentPayment(
            amount_cents=amount_cents,
            method=method,
            received_by=received_by,
            created_at=utcnow(),
        )
        installment.payments.append(payment)
        installment.paid_cents += amount_cents
        installment.status = status_after_credit(installment.paid_cents, installment.amount_cents)

        db.session.commit()
        return order, installment

    order, installment = run_with_retry(_op)
    if installment is None:
        return None

    publish_upsert(ENTITY_ORDER, order)
    log_action(
        "Pagamento Registrado",
        f"Pedido {order_id}, parcela {installment_number}: {format_money(amount_cents)} ({method}).",
        actor,
    )
    return installment


def reverse_payment(order_id: str, installment_number: int, payment_id: int, actor=None) -> Installment | None:
    """
    Remove a payment from an installment's history.

    Silent no-op (returns None) when the order, installment or payment does
    not exist.
    """
    def _op():
        order, installment = _locked_installment(order_id, installment_number)
        if installment is None:
            return None, None, None

        payment = next((p for p in installment.payments if p.id == payment_id), None)
        if payment is None:
            return None, None, None

        amount = payment.amount_cents
        installment.payments.remove(payment)
        installment.paid_cents -= amount
        installment.status = status_after_reversal(installment.paid_cents, installment.amount_cents)

        db.session.commit()
        return order, installment, amount

    order, installment, amount = run_with_retry(_op)
    if installment is None:
        return None

    publish_upsert(ENTITY_ORDER, order)
    log_action(
        "Pagamento Estornado",
        f"Pedido {order_id}, parcela {installment_number}: estorno de {format_money(amount)}.",
        actor,
    )
    return installment


def update_installment_due_date(order_id: str, installment_number: int, due_date, actor=None) -> Installment | None:
    new_due = coerce_due_date(due_date, "due_date")

    def _op():
        order, installment = _locked_installment(order_id, installment_number)
        if installment is None:
            return None, None
        installment.due_date = new_due
        if installment_number == 1:
            order.first_due_date = new_due
        db.session.commit()
        return order, installment

    order, installment = run_with_retry(_op)
    if installment is None:
        return None

    publish_upsert(ENTITY_ORDER, order)
    log_action(
        "Vencimento Alterado",
        f"Pedido {order_id}, parcela {installment_number}: vencimento {new_due.isoformat()}.",
        actor,
    )
    return installment


def update_installment_amount(order_id: str, installment_number: int, amount_cents: int, actor=None) -> Installment | None:
    """
    Override one installment's amount. Status is re-derived with the
    crediting rule. Other installments are left as they are.
    """
    require_positive_int(amount_cents, "amount_cents")

    def _op():
        order, installment = _locked_installment(order_id, installment_number)
        if installment is None:
            return None, None
        installment.amount_cents = amount_cents
        installment.status = status_after_credit(installment.paid_cents, installment.amount_cents)
        db.session.commit()
        return order, installment

    order, installment = run_with_retry(_op)
    if installment is None:
        return None

    publish_upsert(ENTITY_ORDER, order)
    log_action(
        "Valor de Parcela Alterado",
        f"Pedido {order_id}, parcela {installment_number}: {format_money(amount_cents)}.",
        actor,
    )
    return installment


def payment_summary(order: Order) -> dict:
    """Paid / pending totals of an order's installment plan, in cents."""
    scheduled = sum(i.amount_cents for i in order.installments)
    paid = sum(i.paid_cents for i in order.installments)
    return {
        "order_id": order.id,
        "scheduled_cents": scheduled,
        "paid_cents": paid,
        "down_payment_cents": order.down_payment_cents,
        "remaining_cents": max(scheduled - paid, 0),
        "installments_paid": sum(1 for i in order.installments if i.status == INSTALLMENT_PAID),
        "installments_total": len(order.installments),
    }
