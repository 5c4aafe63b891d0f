"""Human-readable estimate and invoice numbers backed by persistent counters."""

import db_manager

ESTIMATE_PREFIX = "EST"
INVOICE_PREFIX = "INV"


def format_number(prefix, counter, width=4):
    return f"{prefix}-{counter:0{width}d}"


def next_estimate_number():
    return format_number(ESTIMATE_PREFIX, db_manager.increment_counter("estimate"))


def next_invoice_number():
    return format_number(INVOICE_PREFIX, db_manager.increment_counter("invoice"))
