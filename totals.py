"""Line item valuation and document totals.

All amounts are plain floats; rounding only happens when a value is
formatted for display.
"""

import math
from collections import namedtuple

from errors import ValidationError

TotalsBreakdown = namedtuple("TotalsBreakdown", ["subtotal", "taxable_base", "tax", "total"])


def _finite(value, field):
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError({field: f"must be a finite number, got {value!r}"})
    return value


def extended_amount(item):
    quantity = _finite(item.quantity, "quantity")
    unit_price = _finite(item.unit_price, "unit_price")
    return quantity * unit_price


def taxable_amount(item):
    amount = extended_amount(item)
    return amount if item.taxable else 0.0


def compute_subtotal(items):
    return sum((extended_amount(i) for i in items), 0.0)


def compute_taxable_base(items):
    return sum((taxable_amount(i) for i in items), 0.0)


def compute_tax(items, tax_rate_percent):
    rate = _finite(tax_rate_percent, "tax_rate")
    return compute_taxable_base(items) * (rate / 100)


def compute_total(items, tax_rate_percent):
    """Subtotal of every item plus tax on the taxable ones."""
    return compute_subtotal(items) + compute_tax(items, tax_rate_percent)


def compute_breakdown(items, tax_rate_percent):
    items = list(items)
    subtotal = compute_subtotal(items)
    taxable_base = compute_taxable_base(items)
    tax = compute_tax(items, tax_rate_percent)
    return TotalsBreakdown(subtotal, taxable_base, tax, subtotal + tax)
