"""Calcul des montants : ordre des étapes, arrondis et bornes."""
from decimal import Decimal

import pytest

from facturflow.errors import InvalidInput
from facturflow.services.totals import compute_line, compute_totals, format_currency

D = Decimal


def _line(qty, price):
    return {"quantity": qty, "unit_price": price}


def test_basic_invoice_scenario():
    t = compute_totals([_line(2, 100)], 20)
    assert t.subtotal == D("200.00")
    assert t.tax_total == D("40.00")
    assert t.total_ttc == D("240.00")
    assert t.net_to_pay == D("240.00")


def test_total_is_net_plus_tax_and_two_decimals():
    t = compute_totals([_line("3", "19.99"), _line("0.5", "7.333"), _line(1, "0.01")], "5.5", {"type": "percentage", "value": "12.5"})
    assert t.total_ttc == t.net_ht + t.tax_total
    assert t.net_ht == t.subtotal - t.discount_amount
    for value in t.model_dump().values():
        assert value.as_tuple().exponent == -2


def test_percentage_discount_is_clamped():
    t = compute_totals([_line(1, 100)], 20, {"type": "percentage", "value": 150})
    assert t.discount_amount == D("100.00")
    assert t.net_ht == D("0.00")
    assert t.total_ttc == D("0.00")


def test_amount_discount_is_clamped():
    t = compute_totals([_line(1, 100)], 20, {"type": "amount", "value": 500})
    assert t.discount_amount == D("100.00")


def test_negative_discount_is_clamped_to_zero():
    t = compute_totals([_line(1, 100)], 20, {"type": "amount", "value": -30})
    assert t.discount_amount == D("0.00")
    assert t.net_ht == D("100.00")


def test_percentage_discount_applies_before_tax():
    t = compute_totals([_line(2, 100)], 20, {"type": "percentage", "value": 10})
    assert t.discount_amount == D("20.00")
    assert t.net_ht == D("180.00")
    assert t.tax_total == D("36.00")
    assert t.total_ttc == D("216.00")


def test_deposit_is_clamped_to_total():
    t = compute_totals([_line(1, 50)], 0, deposit_amount=9999)
    assert t.total_ttc == D("50.00")
    assert t.deposit_amount == D("50.00")
    assert t.net_to_pay == D("0.00")


def test_partial_deposit():
    t = compute_totals([_line(1, 100)], 20, deposit_amount="36")
    assert t.deposit_amount == D("36.00")
    assert t.net_to_pay == D("84.00")


def test_zero_lines_gives_zero_everywhere():
    t = compute_totals([], 20)
    assert all(v == 0 for v in t.model_dump().values())


def test_zero_rate_is_a_real_rate():
    t = compute_totals([_line(1, 100)], 0)
    assert t.tax_total == D("0.00")
    assert t.total_ttc == D("100.00")


def test_each_stage_is_rounded_half_up():
    # 10.005 → 10.01 avant le calcul de la TVA (2.002 → 2.00)
    t = compute_totals([_line(1, "10.005")], 20)
    assert t.subtotal == D("10.01")
    assert t.tax_total == D("2.00")
    assert t.total_ttc == D("12.01")


def test_float_inputs_use_their_decimal_repr():
    t = compute_totals([_line(3, 0.335)], 0)
    assert t.subtotal == D("1.01")


def test_comma_decimal_separator_is_accepted():
    t = compute_totals([_line("2", "12,5")], "20")
    assert t.subtotal == D("25.00")


def test_same_inputs_same_result():
    lines = [_line(3, "33.33")]
    assert compute_totals(lines, 20) == compute_totals(lines, 20)


@pytest.mark.parametrize(
    "lines, rate, discount",
    [
        ([_line(-1, 10)], 20, None),
        ([_line(1, -10)], 20, None),
        ([_line("abc", 10)], 20, None),
        ([_line(None, 10)], 20, None),
        ([_line(1, 10)], 120, None),
        ([_line(1, 10)], -1, None),
        ([_line(1, 10)], None, None),
        ([_line(1, 10)], 20, {"type": "bonus", "value": 5}),
        ([_line(1, "NaN")], 20, None),
    ],
)
def test_invalid_input_is_rejected(lines, rate, discount):
    with pytest.raises(InvalidInput):
        compute_totals(lines, rate, discount)


def test_invalid_input_message_names_the_line():
    with pytest.raises(InvalidInput, match="ligne 2"):
        compute_totals([_line(1, 1), _line(-2, 1)], 20)


def test_compute_line():
    assert compute_line(3, "12.50", 20) == (D("37.50"), D("7.50"), D("45.00"))


def test_format_currency():
    assert format_currency(D("1234.5")) == "1 234,50 €"


@pytest.mark.parametrize("qty, price", [("1e27", "1"), ("1", "1e16"), ("99999999999999", "99999999999999")])
def test_out_of_range_amounts_are_rejected(qty, price):
    with pytest.raises(InvalidInput):
        compute_totals([{"quantity": qty, "unit_price": price}], 20)
