"""Estimate/invoice lifecycle: new drafts, edits, sending, conversion, payment.

Functions that only derive a new value (``new_line_item``, ``update_estimate``,
``update_invoice``, ``is_overdue``) leave storage alone. ``mark_sent``,
``set_paid``, ``toggle_paid`` and ``convert_to_invoice`` persist their result
through ``db_manager`` and return the saved value.
"""

import datetime
import logging
from dataclasses import replace

import db_manager
from documents import DocumentCore, Estimate, EstimateState, Invoice, LineItem, new_id
from errors import InvalidTransitionError, ValidationError
from formatting import add_days, get_current_date
from numbering import next_estimate_number, next_invoice_number

logger = logging.getLogger(__name__)

VALID_DAYS = 30
PAYMENT_TERMS_DAYS = 30

_CORE_FIELDS = {"client_id", "issue_date", "items", "tax_rate", "notes"}
_LOCKED_WHEN_CONVERTED = {"client_id", "items", "tax_rate"}


def new_line_item(description, quantity, unit="hours", unit_price=0.0, taxable=True, settings=None):
    # with per-item taxability switched off every item is taxed
    if settings is not None and not settings.enable_item_taxable:
        taxable = True
    return LineItem(new_id(), description, quantity, unit, unit_price, taxable)


def new_estimate(client_id, settings=None, today=None, items=(), notes=None, tax_rate=None):
    """A draft estimate seeded from settings. Issues (and consumes) a number."""
    settings = settings or db_manager.get_settings()
    today = today or get_current_date()
    core = DocumentCore(
        client_id=client_id,
        issue_date=today,
        items=tuple(items),
        tax_rate=settings.default_tax_rate if tax_rate is None else tax_rate,
        notes=(settings.default_note or "") if notes is None else notes,
    )
    return Estimate(
        id=new_id(),
        core=core,
        estimate_number=next_estimate_number(),
        valid_until=add_days(today, VALID_DAYS),
    ).with_total()


def new_invoice(client_id, settings=None, today=None, items=(), notes=None, tax_rate=None):
    """An invoice created without an estimate. Issues (and consumes) a number."""
    settings = settings or db_manager.get_settings()
    today = today or get_current_date()
    core = DocumentCore(
        client_id=client_id,
        issue_date=today,
        items=tuple(items),
        tax_rate=settings.default_tax_rate if tax_rate is None else tax_rate,
        notes=(settings.default_note or "") if notes is None else notes,
    )
    return Invoice(
        id=new_id(),
        core=core,
        invoice_number=next_invoice_number(),
        due_date=add_days(today, PAYMENT_TERMS_DAYS),
    ).with_total()


def _apply(document, changes, own_fields):
    unknown = set(changes) - _CORE_FIELDS - own_fields
    if unknown:
        raise ValidationError({name: "Unknown field" for name in sorted(unknown)})
    core_changes = {k: v for k, v in changes.items() if k in _CORE_FIELDS}
    if "items" in core_changes:
        core_changes["items"] = tuple(core_changes["items"])
    own_changes = {k: v for k, v in changes.items() if k in own_fields}
    updated = replace(document, core=replace(document.core, **core_changes), **own_changes)
    return updated.with_total()


def update_estimate(estimate, **changes):
    if estimate.state.is_converted:
        locked = [k for k in _LOCKED_WHEN_CONVERTED
                  if k in changes and getattr(estimate, k) != _normalized(k, changes[k])]
        if locked:
            raise InvalidTransitionError(
                f"Estimate {estimate.estimate_number} has been converted; "
                f"{', '.join(sorted(locked))} can no longer change")
    return _apply(estimate, changes, {"estimate_number", "valid_until"})


def update_invoice(invoice, **changes):
    return _apply(invoice, changes, {"invoice_number", "due_date", "paid", "estimate_number", "valid_until"})


def _normalized(name, value):
    return tuple(value) if name == "items" else value


def mark_sent(estimate):
    if estimate.state.is_converted:
        raise InvalidTransitionError(f"Estimate {estimate.estimate_number} is already converted")
    if estimate.status == "sent":
        return estimate
    return db_manager.save_estimate(replace(estimate, state=EstimateState.sent()))


def convert_to_invoice(estimate, client, today=None):
    """Turn an estimate into a linked invoice.

    The stored estimate is the source, and the check, number issue and both
    writes run under the repository lock, so a repeated convert of the same
    estimate fails instead of producing a second invoice. Returns
    ``(converted_estimate, invoice)``.
    """
    with db_manager.transaction():
        stored = db_manager.get_estimate(estimate.id)
        db_manager.get_client(client.id)
        if stored.state.is_converted:
            raise InvalidTransitionError(
                f"Estimate {stored.estimate_number} was already converted to invoice {stored.converted_invoice_id}")
        if stored.client_id != client.id:
            raise ValidationError({"client": f"Estimate {stored.estimate_number} belongs to another client"})

        today = today or get_current_date()
        source = stored.core
        invoice = Invoice(
            id=new_id(),
            core=DocumentCore(
                client_id=source.client_id,
                issue_date=today,
                items=source.items,
                tax_rate=source.tax_rate,
                notes=source.notes,
            ),
            invoice_number=next_invoice_number(),
            due_date=add_days(today, PAYMENT_TERMS_DAYS),
            paid=False,
            estimate_number=stored.estimate_number,
            valid_until=stored.valid_until,
        ).with_total()
        converted = replace(stored, state=EstimateState.converted(invoice.id)).with_total()

        converted, invoice = db_manager.save_conversion(invoice, converted)
    logger.info("Converted estimate %s into invoice %s", converted.estimate_number, invoice.invoice_number)
    return converted, invoice


def set_paid(invoice, paid):
    return db_manager.save_invoice(replace(invoice, paid=bool(paid)))


def toggle_paid(invoice):
    return set_paid(invoice, not invoice.paid)


def is_overdue(invoice, today=None):
    if invoice.paid or not invoice.due_date:
        return False
    if today is None:
        today = datetime.date.today()
    elif isinstance(today, str):
        today = datetime.date.fromisoformat(today)
    return datetime.date.fromisoformat(invoice.due_date) < today
