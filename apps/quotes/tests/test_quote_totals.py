"""
Tests for line and quote totals.
"""
from decimal import Decimal

import pytest
from hypothesis import given, strategies as st

from apps.quotes.totals import calculate_line, calculate_totals, to_cents


class TestCalculateLine:

    def test_plain_line(self):
        line = calculate_line(2, '100.00')
        assert line.subtotal == Decimal('200.00')
        assert line.discount == Decimal('0.00')
        assert line.tax == Decimal('0.00')
        assert line.total == Decimal('200.00')

    def test_discount_applies_before_tax(self):
        line = calculate_line(3, '100.00', discount_percent=10, tax_rate=16)
        assert line.subtotal == Decimal('300.00')
        assert line.discount == Decimal('30.00')
        assert line.tax == Decimal('43.20')
        assert line.total == Decimal('313.20')

    def test_rounds_half_up_to_cents(self):
        line = calculate_line(1, '0.05', tax_rate=50)
        assert line.tax == Decimal('0.03')
        assert to_cents(Decimal('2.675')) == Decimal('2.68')

    def test_fractional_quantity(self):
        assert calculate_line('1.5', '9.99').subtotal == Decimal('14.99')

    @pytest.mark.parametrize('kwargs', [
        {'quantity': 0, 'unit_price': 1},
        {'quantity': -1, 'unit_price': 1},
        {'quantity': 1, 'unit_price': -1},
        {'quantity': 1, 'unit_price': 1, 'discount_percent': 101},
        {'quantity': 1, 'unit_price': 1, 'tax_rate': -5},
    ])
    def test_invalid_input(self, kwargs):
        with pytest.raises(ValueError):
            calculate_line(**kwargs)

    @given(
        quantity=st.integers(min_value=1, max_value=1000),
        cents=st.integers(min_value=0, max_value=10_000_000),
        discount=st.integers(min_value=0, max_value=100),
        tax=st.integers(min_value=0, max_value=100),
    )
    def test_line_components_are_consistent(self, quantity, cents, discount, tax):
        line = calculate_line(quantity, Decimal(cents) / 100, discount, tax)

        assert line.total == line.subtotal - line.discount + line.tax
        assert Decimal('0') <= line.discount <= line.subtotal
        assert line.tax >= 0
        for amount in (line.subtotal, line.discount, line.tax, line.total):
            assert amount == to_cents(amount)


class TestCalculateTotals:

    def test_sums_lines(self):
        totals = calculate_totals([
            calculate_line(1, '100.00', tax_rate=10),
            calculate_line(2, '50.00', discount_percent=50),
        ])
        assert totals.subtotal == Decimal('200.00')
        assert totals.discount_amount == Decimal('50.00')
        assert totals.tax_amount == Decimal('10.00')
        assert totals.total_amount == Decimal('160.00')

    def test_empty(self):
        assert calculate_totals([]).total_amount == Decimal('0.00')

    def test_as_fields(self):
        fields = calculate_totals([calculate_line(1, 5)]).as_fields()
        assert set(fields) == {'subtotal', 'discount_amount', 'tax_amount', 'total_amount'}
