# Overview: Installment scheduler; splits a financed amount into cent-exact monthly installments.

"""
Installment Scheduler

Splits a financed amount into N installments so that the amounts add up to
the financed cents exactly:

    base, remainder = divmod(cents, N)
    installments 1..remainder get base + 1, the rest get base

Installment i (0-based) is due on the first due date plus i calendar months.
The day of month is kept when the target month has it and clamped to the
last day otherwise (Jan 31 -> Feb 29/28 -> Mar 31).

Non-positive counts and negative amounts yield an empty schedule; callers
validate upstream when that is unexpected.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from dateutil.relativedelta import relativedelta

from backoffice.money import to_cents, from_cents


@dataclass(frozen=True)
class ScheduledInstallment:
    id: str
    order_id: str
    installment_number: int
    amount_cents: int
    due_date: date

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "installment_number": self.installment_number,
            "amount_cents": self.amount_cents,
            "amount": str(from_cents(self.amount_cents)),
            "due_date": self.due_date.isoformat(),
        }


def installment_id(order_id: str, number: int) -> str:
    return f"inst-{order_id}-{number}"


def split_cents(total_cents: int, count: int) -> list[int]:
    if count <= 0 or total_cents < 0:
        return []
    base, remainder = divmod(total_cents, count)
    return [base + 1 if i < remainder else base for i in range(count)]


def due_dates(first_due_date: date, count: int) -> list[date]:
    return [first_due_date + relativedelta(months=i) for i in range(max(count, 0))]


def generate_installments_cents(
    financed_cents: int,
    count: int,
    order_id: str,
    first_due_date: date,
) -> list[ScheduledInstallment]:
    amounts = split_cents(financed_cents, count)
    return [
        ScheduledInstallment(
            id=installment_id(order_id, i + 1),
            order_id=order_id,
            installment_number=i + 1,
            amount_cents=amount,
            due_date=due,
        )
        for i, (amount, due) in enumerate(zip(amounts, due_dates(first_due_date, len(amounts))))
    ]


def generate_installments(
    financed_amount,
    count: int,
    order_id: str,
    first_due_date: date,
) -> list[ScheduledInstallment]:
    """
    Schedule for a financed amount given in currency units (e.g. "100.00").

    The amount is converted to cents once, rounding half-up.
    """
    if count <= 0:
        return []
    cents = to_cents(financed_amount)
    if cents < 0:
        return []
    return generate_installments_cents(cents, count, order_id, first_due_date)
