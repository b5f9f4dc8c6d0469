"""
Quote totals.

All amounts are Decimal and rounded half-up to cents per line; quote
totals are the sums of the rounded line amounts.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

CENTS = Decimal('0.01')
HUNDRED = Decimal('100')
ZERO = Decimal('0.00')


def to_cents(value) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineTotals:
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal


@dataclass(frozen=True)
class QuoteTotals:
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal

    def as_fields(self):
        return {
            'subtotal': self.subtotal,
            'discount_amount': self.discount_amount,
            'tax_amount': self.tax_amount,
            'total_amount': self.total_amount,
        }


def calculate_line(quantity, unit_price, discount_percent=0, tax_rate=0) -> LineTotals:
    """
    Totals for one line.

    subtotal = quantity x unit_price
    discount = subtotal x discount% / 100
    tax      = (subtotal - discount) x tax% / 100
    """
    quantity = Decimal(str(quantity))
    unit_price = Decimal(str(unit_price))
    discount_percent = Decimal(str(discount_percent or 0))
    tax_rate = Decimal(str(tax_rate or 0))

    if quantity <= 0:
        raise ValueError("Quantity must be positive")
    if unit_price < 0:
        raise ValueError("Unit price cannot be negative")
    if not (0 <= discount_percent <= 100):
        raise ValueError("Discount must be between 0 and 100 percent")
    if tax_rate < 0:
        raise ValueError("Tax rate cannot be negative")

    subtotal = to_cents(quantity * unit_price)
    discount = to_cents(subtotal * discount_percent / HUNDRED)
    tax = to_cents((subtotal - discount) * tax_rate / HUNDRED)
    return LineTotals(
        subtotal=subtotal,
        discount=discount,
        tax=tax,
        total=subtotal - discount + tax,
    )


def calculate_totals(lines: Iterable[LineTotals]) -> QuoteTotals:
    subtotal = discount = tax = ZERO
    for line in lines:
        subtotal += line.subtotal
        discount += line.discount
        tax += line.tax
    return QuoteTotals(
        subtotal=subtotal,
        discount_amount=discount,
        tax_amount=tax,
        total_amount=subtotal - discount + tax,
    )
