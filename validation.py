"""Input checks applied where user data enters the system (API, CLI, import)."""

import math
import re
from datetime import date

from documents import UNITS
from errors import ValidationError

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _is_iso_date(value):
    try:
        date.fromisoformat(value)
    except (TypeError, ValueError):
        return False
    return True


def validate_client(client):
    errors = {}
    if not (client.name or "").strip():
        errors["name"] = "Client name is required"
    if client.email and not EMAIL_RE.match(client.email):
        errors["email"] = "Invalid email address"
    if errors:
        raise ValidationError(errors)
    return client


def validate_line_item(item, prefix="item"):
    errors = {}
    if not _is_number(item.quantity) or item.quantity <= 0:
        errors[f"{prefix}.quantity"] = "Quantity must be a positive number"
    if not _is_number(item.unit_price) or item.unit_price < 0:
        errors[f"{prefix}.unit_price"] = "Unit price must be zero or more"
    if item.unit not in UNITS:
        errors[f"{prefix}.unit"] = f"Unit must be one of {', '.join(UNITS)}"
    if errors:
        raise ValidationError(errors)
    return item


def validate_document(document, require_items=True):
    """Validate an estimate or invoice before it is saved."""
    errors = {}
    core = document.core
    if not core.client_id:
        errors["client_id"] = "A client must be selected"
    if require_items and not core.items:
        errors["items"] = "Add at least one line item"
    if not _is_number(core.tax_rate) or core.tax_rate < 0:
        errors["tax_rate"] = "Tax rate must be zero or more"
    if not _is_iso_date(core.issue_date):
        errors["issue_date"] = "Issue date must be YYYY-MM-DD"
    due_date = getattr(document, "due_date", None)
    if due_date is not None and not _is_iso_date(due_date):
        errors["due_date"] = "Due date must be YYYY-MM-DD"

    seen = set()
    for index, item in enumerate(core.items):
        try:
            validate_line_item(item, prefix=f"items[{index}]")
        except ValidationError as exc:
            errors.update(exc.errors)
        if item.id in seen:
            errors[f"items[{index}].id"] = "Duplicate line item id"
        seen.add(item.id)

    if errors:
        raise ValidationError(errors)
    return document
