from decimal import Decimal

import pytest

from coachhq import bookings, payments
from coachhq.errors import ValidationError
from coachhq.utils import parse_id, parse_int, parse_money, safe_execute


@pytest.mark.parametrize("raw", ["1e30", "-1e30", "100000000", "99999999.999", 1e12])
def test_parse_money_rejects_amounts_the_column_cannot_hold(raw):
    with pytest.raises(ValidationError):
        parse_money(raw, "price")


@pytest.mark.parametrize(
    "raw,expected",
    [("40", Decimal("40.00")), (" 12.345 ", Decimal("12.34")), (7, Decimal("7.00")), ("99999999.99", Decimal("99999999.99"))],
)
def test_parse_money_quantizes_to_cents(raw, expected):
    assert parse_money(raw) == expected


@pytest.mark.parametrize("raw", ["nan", "inf", "abc", True])
def test_parse_money_rejects_non_numbers(raw):
    with pytest.raises(ValidationError):
        parse_money(raw)


def test_huge_price_is_a_validation_error(make_contact):
    contact_id = make_contact()
    with pytest.raises(ValidationError):
        bookings.create_booking("trial", contact_id, scheduled="2026-03-10T15:00", price="1e30")
    with pytest.raises(ValidationError):
        bookings.create_booking("trial", contact_id, scheduled="2026-03-10T15:00", deposit={"amount": "1e30"})
    with pytest.raises(ValidationError):
        payments.create_package(contact_id, "12_week_1x", price="1e9")


def test_parse_int_keeps_large_ids_exact():
    big = 2 ** 53 + 1
    assert parse_int(str(big), "id") == big
    assert parse_int(big, "id") == big
    assert parse_id(" 42 ", "id") == 42
    assert parse_int(3.0, "days") == 3


@pytest.mark.parametrize("raw", ["3.5", 3.5, "abc", None, False, "1e3"])
def test_parse_int_rejects_non_integers(raw):
    with pytest.raises(ValidationError):
        parse_int(raw, "n")


def test_parse_id_requires_a_positive_value():
    for raw in ("", None, 0, "-4"):
        with pytest.raises(ValidationError):
            parse_id(raw, "id")


def test_safe_execute_returns_none_on_failure():
    def boom():
        raise RuntimeError("store gone")

    assert safe_execute(boom, label="boom") is None
    assert safe_execute(lambda x: x + 1, 1, label="inc") == 2
