import io
import json
import os

import db_manager
import pdf_builder


def _client(client, name="Acme", **extra):
    resp = client.post("/api/clients", json={"name": name, **extra})
    assert resp.status_code == 201
    return resp.get_json()


def _estimate(client, client_id, **extra):
    payload = {
        "clientId": client_id,
        "issueDate": "2024-05-01",
        "taxRate": 10,
        "items": [
            {"description": "Design", "quantity": 2, "unit": "hours", "unitPrice": 50, "taxable": True},
            {"description": "Hosting", "quantity": 1, "unit": "days", "unitPrice": 100, "taxable": False},
        ],
    }
    payload.update(extra)
    resp = client.post("/api/estimates", json=payload)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


def test_client_crud(client):
    created = _client(client, company="Acme Corp", email="ops@acme.test")
    assert "phone" not in created

    assert client.get(f"/api/clients/{created['id']}").get_json()["company"] == "Acme Corp"

    resp = client.put(f"/api/clients/{created['id']}", json={"name": "Acme Ltd", "phone": ""})
    assert resp.status_code == 200
    assert resp.get_json()["phone"] == ""

    assert [c["name"] for c in client.get("/api/clients?q=ltd").get_json()] == ["Acme Ltd"]
    assert client.get("/api/clients?q=nobody").get_json() == []


def test_client_validation_errors(client):
    resp = client.post("/api/clients", json={"name": "  "})
    assert resp.status_code == 400
    assert "name" in resp.get_json()["fields"]

    resp = client.post("/api/clients", json={"name": "Bob", "email": "not-an-email"})
    assert resp.status_code == 400
    assert "email" in resp.get_json()["fields"]

    assert client.post("/api/clients", data="nope", content_type="text/plain").status_code == 400


def test_missing_records_are_404(client):
    assert client.get("/api/clients/missing").status_code == 404
    assert client.get("/api/estimates/missing").status_code == 404
    assert client.delete("/api/invoices/missing").status_code == 404
    assert client.post("/api/estimates/missing/convert").status_code == 404


def test_create_estimate_computes_total_and_number(client):
    acme = _client(client)
    estimate = _estimate(client, acme["id"])

    assert estimate["estimateNumber"] == "EST-0001"
    assert estimate["status"] == "draft"
    assert estimate["validUntil"] == "2024-05-31"
    # 100 taxable at 10% plus 100 untaxed
    assert estimate["total"] == 210.0
    assert "convertedInvoiceId" not in estimate

    assert _estimate(client, acme["id"])["estimateNumber"] == "EST-0002"


def test_bad_estimate_input_does_not_consume_a_number(client):
    acme = _client(client)

    resp = client.post("/api/estimates", json={"clientId": acme["id"], "items": []})
    assert resp.status_code == 400
    resp = client.post("/api/estimates", json={"clientId": acme["id"], "issueDate": "05/01/2024",
                                               "items": [{"quantity": 1, "unitPrice": 1}]})
    assert resp.status_code == 400
    resp = client.post("/api/estimates", json={"clientId": acme["id"],
                                               "items": [{"quantity": 0, "unitPrice": 1}]})
    assert resp.status_code == 400
    assert "items[0].quantity" in resp.get_json()["fields"]
    assert client.post("/api/estimates", json={"clientId": "ghost", "items": []}).status_code == 404

    assert _estimate(client, acme["id"])["estimateNumber"] == "EST-0001"


def test_update_estimate_recomputes_total(client):
    acme = _client(client)
    estimate = _estimate(client, acme["id"])

    resp = client.put(f"/api/estimates/{estimate['id']}", json={"taxRate": 0, "notes": "Revised"})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["total"] == 200.0
    assert body["notes"] == "Revised"
    assert body["estimateNumber"] == estimate["estimateNumber"]


def test_send_and_convert_estimate(client):
    acme = _client(client)
    estimate = _estimate(client, acme["id"], notes="Thanks")

    assert client.post(f"/api/estimates/{estimate['id']}/send").get_json()["status"] == "sent"

    resp = client.post(f"/api/estimates/{estimate['id']}/convert")
    assert resp.status_code == 201
    converted, invoice = resp.get_json()["estimate"], resp.get_json()["invoice"]

    assert converted["status"] == "converted"
    assert converted["convertedInvoiceId"] == invoice["id"]
    assert invoice["invoiceNumber"] == "INV-0001"
    assert invoice["estimateNumber"] == estimate["estimateNumber"]
    assert invoice["items"] == estimate["items"]
    assert invoice["total"] == estimate["total"]
    assert invoice["notes"] == "Thanks"
    assert invoice["paid"] is False
    assert "status" not in invoice

    again = client.post(f"/api/estimates/{estimate['id']}/convert")
    assert again.status_code == 409
    assert len(client.get("/api/invoices").get_json()) == 1

    assert client.post(f"/api/estimates/{estimate['id']}/send").status_code == 409
    resp = client.put(f"/api/estimates/{estimate['id']}", json={"taxRate": 0})
    assert resp.status_code == 409


def test_invoice_pay_toggle_and_set(client):
    acme = _client(client)
    estimate = _estimate(client, acme["id"])
    invoice = client.post(f"/api/estimates/{estimate['id']}/convert").get_json()["invoice"]

    url = f"/api/invoices/{invoice['id']}/pay"
    assert client.post(url).get_json()["paid"] is True
    assert client.post(url).get_json()["paid"] is False
    assert client.post(url, json={"paid": True}).get_json()["paid"] is True
    assert client.post(url, json={"paid": True}).get_json()["paid"] is True


def test_standalone_invoice_and_status_filter(client):
    acme = _client(client, "Acme")
    globex = _client(client, "Globex")
    items = [{"description": "Audit", "quantity": 1, "unitPrice": 300}]

    old = client.post("/api/invoices", json={"clientId": acme["id"], "issueDate": "2020-01-01",
                                             "dueDate": "2020-01-31", "items": items}).get_json()
    paid = client.post("/api/invoices", json={"clientId": globex["id"], "issueDate": "2020-01-01",
                                              "dueDate": "2020-01-31", "items": items, "paid": True}).get_json()
    future = client.post("/api/invoices", json={"clientId": globex["id"], "issueDate": "2999-01-01",
                                                "items": items}).get_json()

    assert future["dueDate"] == "2999-01-31"

    def numbers(query):
        return sorted(i["invoiceNumber"] for i in client.get(f"/api/invoices{query}").get_json())

    assert numbers("?status=paid") == [paid["invoiceNumber"]]
    assert numbers("?status=unpaid") == sorted([old["invoiceNumber"], future["invoiceNumber"]])
    assert numbers("?status=overdue") == [old["invoiceNumber"]]
    assert numbers("?q=globex") == sorted([paid["invoiceNumber"], future["invoiceNumber"]])
    assert numbers(f"?client_id={acme['id']}") == [old["invoiceNumber"]]
    assert client.get("/api/invoices?status=bogus").status_code == 400

    listed = {i["id"]: i for i in client.get("/api/invoices").get_json()}
    assert listed[old["id"]]["overdue"] is True
    assert listed[paid["id"]]["overdue"] is False
    assert listed[future["id"]]["overdue"] is False


def test_delete_client_cascades(client):
    acme = _client(client, "Acme")
    other = _client(client, "Other")
    estimate = _estimate(client, acme["id"])
    client.post(f"/api/estimates/{estimate['id']}/convert")
    keep = _estimate(client, other["id"])

    resp = client.delete(f"/api/clients/{acme['id']}")
    assert resp.status_code == 200
    assert resp.get_json()["deleted"] == {"estimates": 1, "invoices": 1, "client": 1}

    assert [e["id"] for e in client.get("/api/estimates").get_json()] == [keep["id"]]
    assert client.get("/api/invoices").get_json() == []
    assert client.get(f"/api/clients/{acme['id']}").status_code == 404


def test_client_summary(client):
    acme = _client(client)
    estimate = _estimate(client, acme["id"])
    invoice = client.post(f"/api/estimates/{estimate['id']}/convert").get_json()["invoice"]
    client.post(f"/api/invoices/{invoice['id']}/pay")

    summary = client.get(f"/api/clients/{acme['id']}/summary").get_json()
    assert summary["client"]["id"] == acme["id"]
    assert len(summary["estimates"]) == 1
    assert summary["invoicesTotal"] == 210.0
    assert summary["paidInvoices"] == 1


def test_settings_round_trip(client):
    body = client.get("/api/settings").get_json()
    assert body["defaultTaxRate"] == 8.0
    assert body["defaultCurrency"] == "USD"

    resp = client.post("/api/settings", json={"companyName": "Builder Co", "defaultTaxRate": "5.5"})
    assert resp.status_code == 200
    assert resp.get_json()["defaultTaxRate"] == 5.5
    assert client.post("/api/settings", json={"defaultTaxRate": -1}).status_code == 400

    acme = _client(client)
    resp = client.post("/api/estimates", json={"clientId": acme["id"],
                                               "items": [{"quantity": 1, "unitPrice": 100}]})
    assert resp.get_json()["taxRate"] == 5.5


def test_export_reset_import(client):
    acme = _client(client)
    _estimate(client, acme["id"])

    resp = client.get("/api/settings/export")
    assert resp.status_code == 200
    backup = json.loads(resp.data)
    assert len(backup["estimates"]) == 1
    assert backup["counters"]["estimateCounter"] == 1

    assert client.post("/api/settings/reset").status_code == 200
    assert client.get("/api/clients").get_json() == []
    assert db_manager.get_counters().estimate_counter == 0

    upload = {"file": (io.BytesIO(json.dumps(backup).encode("utf-8")), "backup.json")}
    resp = client.post("/api/settings/import", data=upload, content_type="multipart/form-data")
    assert resp.status_code == 200
    assert resp.get_json()["imported"] == {"clients": 1, "estimates": 1, "invoices": 0}

    # numbering continues after the restored documents
    assert _estimate(client, acme["id"])["estimateNumber"] == "EST-0002"


def test_import_rejects_bad_files(client):
    upload = {"file": (io.BytesIO(b"{not json"), "backup.json")}
    assert client.post("/api/settings/import", data=upload, content_type="multipart/form-data").status_code == 400

    resp = client.post("/api/settings/import", json={"clients": [{"name": "no id"}]})
    assert resp.status_code == 400


def test_integrity_report(client):
    acme = _client(client)
    _estimate(client, acme["id"])

    report = client.get("/api/integrity").get_json()
    assert all(not ids for ids in report.values())


def test_pdf_download(client, app):
    acme = _client(client, "Acme & Sons")
    estimate = _estimate(client, acme["id"])
    invoice = client.post(f"/api/estimates/{estimate['id']}/convert").get_json()["invoice"]

    resp = client.get(f"/api/invoices/{invoice['id']}/pdf")
    assert resp.status_code == 200
    assert resp.mimetype == "application/pdf"
    assert resp.data.startswith(b"%PDF-")
    resp.close()

    resp = client.get(f"/api/estimates/{estimate['id']}/pdf")
    assert resp.status_code == 200
    resp.close()

    folder = os.path.join(app.config["DOCUMENTS_DIR"], "Acme  Sons")
    assert sorted(os.listdir(folder)) == ["EST-0001.pdf", "INV-0001.pdf"]


def test_pdf_with_markup_characters(client):
    ben = _client(client, "Ben <Smith> & Co", address="x < y")
    estimate = _estimate(client, ben["id"], notes="a<b & c",
                         items=[{"description": "<b>bold", "quantity": 1, "unitPrice": 5}])

    resp = client.get(f"/api/estimates/{estimate['id']}/pdf")
    assert resp.status_code == 200
    assert resp.data.startswith(b"%PDF-")
    resp.close()


def test_pdf_render_failure_is_reported(client, monkeypatch):
    def fail(self, filename):
        raise ValueError("paraparser: syntax error")

    monkeypatch.setattr(pdf_builder.DocumentPDF, "generate", fail)
    acme = _client(client)
    estimate = _estimate(client, acme["id"])

    resp = client.get(f"/api/estimates/{estimate['id']}/pdf")
    assert resp.status_code == 500
    assert "Could not generate PDF" in resp.get_json()["error"]


def test_linked_invoice_delete_is_conflict(client):
    acme = _client(client)
    estimate = _estimate(client, acme["id"])
    invoice = client.post(f"/api/estimates/{estimate['id']}/convert").get_json()["invoice"]

    assert client.delete(f"/api/invoices/{invoice['id']}").status_code == 409
    assert client.get(f"/api/invoices/{invoice['id']}").status_code == 200

    client.delete(f"/api/estimates/{estimate['id']}")
    assert client.delete(f"/api/invoices/{invoice['id']}").status_code == 200
