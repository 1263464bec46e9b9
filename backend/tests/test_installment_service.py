"""Installment scheduler: cent-exact splits and monthly due dates."""

from datetime import date

from backoffice.services.installment_service import (
    due_dates,
    generate_installments,
    generate_installments_cents,
    installment_id,
    split_cents,
)


def test_split_gives_extra_cents_to_first_installments():
    assert split_cents(10000, 3) == [3334, 3333, 3333]
    assert split_cents(3000, 3) == [1000, 1000, 1000]
    assert split_cents(1, 3) == [1, 0, 0]


def test_split_always_sums_to_total():
    for total in (0, 1, 99, 10001, 123457):
        for count in (1, 2, 3, 7, 12):
            assert sum(split_cents(total, count)) == total


def test_split_rejects_empty_inputs():
    assert split_cents(10000, 0) == []
    assert split_cents(10000, -2) == []
    assert split_cents(-1, 3) == []


def test_generate_installments_from_currency_amount():
    schedule = generate_installments("100.00", 3, "PED-000001", date(2024, 1, 15))

    assert [i.amount_cents for i in schedule] == [3334, 3333, 3333]
    assert [i.due_date for i in schedule] == [date(2024, 1, 15), date(2024, 2, 15), date(2024, 3, 15)]
    assert [i.installment_number for i in schedule] == [1, 2, 3]
    assert schedule[0].id == "inst-PED-000001-1"
    assert schedule[0].to_dict()["amount"] == "33.34"


def test_generate_installments_empty_cases():
    assert generate_installments("100.00", 0, "PED-1", date(2024, 1, 15)) == []
    assert generate_installments("-5.00", 2, "PED-1", date(2024, 1, 15)) == []
    assert generate_installments_cents(0, 2, "PED-1", date(2024, 1, 15))[0].amount_cents == 0


def test_due_dates_clamp_to_month_end():
    assert due_dates(date(2024, 1, 31), 4) == [
        date(2024, 1, 31),
        date(2024, 2, 29),
        date(2024, 3, 31),
        date(2024, 4, 30),
    ]
    assert due_dates(date(2023, 12, 15), 2) == [date(2023, 12, 15), date(2024, 1, 15)]


def test_installment_id_format():
    assert installment_id("PED-123456", 2) == "inst-PED-123456-2"
