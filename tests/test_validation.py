import math

import pytest

from documents import Client, DocumentCore, Estimate, Invoice, LineItem
from errors import ValidationError
from validation import validate_client, validate_document, validate_line_item


def test_client_requires_name_and_valid_email():
    assert validate_client(Client("c1", "Acme", email="a@b.co")).name == "Acme"
    assert validate_client(Client("c1", "Acme", email="")).email == ""

    with pytest.raises(ValidationError) as exc:
        validate_client(Client("c1", "  ", email="not-an-email"))
    assert set(exc.value.errors) == {"name", "email"}


@pytest.mark.parametrize("qty,price,unit", [
    (0, 10, "hours"),
    (-1, 10, "hours"),
    (1, -0.01, "hours"),
    (math.nan, 10, "hours"),
    (1, math.inf, "days"),
    (1, 10, "weeks"),
])
def test_line_item_rejects_bad_values(qty, price, unit):
    with pytest.raises(ValidationError):
        validate_line_item(LineItem("i1", "Work", qty, unit, price, True))


def test_line_item_accepts_free_work():
    item = LineItem("i1", "Warranty visit", 1, "days", 0, False)
    assert validate_line_item(item) is item


def test_document_checks():
    core = DocumentCore("c1", "2024-01-01", [LineItem("a", "x", 1, "hours", 5, True)], 8, "")
    assert validate_document(Estimate("e1", core, "EST-0001"))

    empty = Estimate("e1", DocumentCore("c1", "2024-01-01"), "EST-0001")
    with pytest.raises(ValidationError) as exc:
        validate_document(empty)
    assert "items" in exc.value.errors
    assert validate_document(empty, require_items=False) is empty

    duplicate = DocumentCore("", "01/02/2024", [LineItem("a", "x", 1, "hours", 5, True)] * 2, -1, "")
    with pytest.raises(ValidationError) as exc:
        validate_document(Invoice("i1", duplicate, "INV-0001", "soon"))
    assert {"client_id", "issue_date", "tax_rate", "due_date", "items[1].id"} <= set(exc.value.errors)
