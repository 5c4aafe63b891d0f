import pytest

from documents import AppSettings, Client, DocumentCore, Estimate, Invoice, LineItem
from pdf_builder import DocumentPDF, build_document_context


def _core():
    items = [
        LineItem("i1", "Consulting", 2, "hours", 50, True),
        LineItem("i2", "Site visit", 1, "days", 200, False),
    ]
    return DocumentCore("c1", "2024-05-01", items, 8, "Thank you").recomputed()


SETTINGS = AppSettings(company_name="Builder Co", address="1 Main St\nSpringfield", email="hi@builder.test")
CLIENT = Client("c1", "Acme", company="Acme Corp", address="2 Side St")


def test_estimate_context():
    estimate = Estimate("e1", _core(), "EST-0007", valid_until="2024-05-31")
    context = build_document_context(estimate, CLIENT, SETTINGS, "estimate")

    assert context["company"]["name"] == "Builder Co"
    assert context["client"]["company"] == "Acme Corp"
    assert context["meta"] == {
        "title": "ESTIMATE",
        "number": "EST-0007",
        "issue_date": "2024-05-01",
        "valid_until": "2024-05-31",
    }
    assert [row["amount"] for row in context["items"]] == [100, 200]
    assert context["items"][1]["unit"] == "days"
    assert context["totals"] == {
        "subtotal": 300.0,
        "taxable_base": 100.0,
        "tax_rate": 8,
        "tax": 8.0,
        "total": 308.0,
    }
    assert context["totals"]["total"] == estimate.total


def test_invoice_context_carries_due_date_and_payment():
    invoice = Invoice("inv1", _core(), "INV-0002", "2024-05-31", paid=True)
    meta = build_document_context(invoice, CLIENT, SETTINGS, "invoice")["meta"]

    assert meta["title"] == "INVOICE"
    assert meta["number"] == "INV-0002"
    assert meta["due_date"] == "2024-05-31"
    assert meta["paid"] is True
    assert "valid_until" not in meta


def test_unknown_kind_rejected():
    with pytest.raises(ValueError):
        build_document_context(Invoice("inv1", _core(), "INV-1", "2024-01-01"), CLIENT, SETTINGS, "receipt")


def test_generate_pdf(tmp_path):
    invoice = Invoice("inv1", _core(), "INV-0002", "2024-05-31")
    context = build_document_context(invoice, CLIENT, SETTINGS, "invoice")
    path = DocumentPDF(context).generate(str(tmp_path / "INV-0002.pdf"))

    with open(path, "rb") as f:
        assert f.read(5) == b"%PDF-"


def test_markup_characters_in_user_text_are_rendered_literally(tmp_path):
    client = Client("c1", "Ben <Smith> & Co", address="1 <Main> St")
    items = [LineItem("i1", "a<b", 1, "hours", 10, True)]
    core = DocumentCore("c1", "2024-05-01", items, 8, "x < y & z").recomputed()
    estimate = Estimate("e1", core, "EST-0001", valid_until="2024-05-31")
    settings = AppSettings(company_name="R&D <Labs>")

    context = build_document_context(estimate, client, settings, "estimate")
    path = DocumentPDF(context).generate(str(tmp_path / "EST-0001.pdf"))

    with open(path, "rb") as f:
        assert f.read(5) == b"%PDF-"
