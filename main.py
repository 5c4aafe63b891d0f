import logging
import os

import db_manager
import lifecycle
from app import create_app
from config import CliConfig
from documents import Client, new_id
from errors import InvoicingError, ValidationError
from formatting import format_currency, format_date
from pdf_builder import RENDER_ERRORS, DocumentPDF, build_document_context
from validation import validate_client, validate_document, validate_line_item

logger = logging.getLogger(__name__)

def print_menu():
    print("\n--- Estimates & Invoices ---")
    print("1. Add Client")
    print("2. List Clients")
    print("3. Create Estimate")
    print("4. List Estimates")
    print("5. Convert Estimate to Invoice")
    print("6. List Invoices")
    print("7. Toggle Invoice Paid")
    print("8. Generate PDF")
    print("9. Exit")
    print("----------------------------")

def _currency():
    return db_manager.get_settings().default_currency

def add_client_flow():
    print("\n[Add Client]")
    name = input("Name: ")
    company = input("Company: ") or None
    address = input("Address (use \\n for newlines): ").replace("\\n", "\n") or None
    email = input("Email: ") or None
    phone = input("Phone: ") or None

    client = validate_client(Client(new_id(), name.strip(), phone, email, address, company))
    db_manager.save_client(client)
    print("Client added successfully!")
    return client

def list_clients_flow():
    print("\n[List Clients]")
    clients = db_manager.get_clients()
    for i, c in enumerate(clients, 1):
        print(f"{i}. {c.name}" + (f" ({c.company})" if c.company else ""))
    return clients

def _pick(records, label):
    try:
        index = int(input(f"Enter {label} #: "))
    except ValueError:
        print(f"Invalid {label}")
        return None
    if not 1 <= index <= len(records):
        print(f"Invalid {label}")
        return None
    return records[index - 1]

def _read_items(settings):
    items = []
    print("Enter items (leave Description empty to finish):")
    while True:
        desc = input("Description: ")
        if not desc:
            break
        try:
            qty = float(input("Quantity: "))
            unit = input("Unit (hours/days) [hours]: ") or "hours"
            price = float(input("Unit Price: "))
            taxable = True
            if settings.enable_item_taxable:
                taxable = input("Taxable? (Y/n): ").strip().lower() != "n"
            items.append(validate_line_item(lifecycle.new_line_item(desc, qty, unit, price, taxable, settings)))
        except ValueError:
            print("Invalid number format, try again.")
        except ValidationError as e:
            print(f"Invalid item: {e}")
    return items

def create_estimate_flow():
    print("\n[Create Estimate]")
    clients = list_clients_flow()
    client = _pick(clients, "Client")
    if client is None:
        return None

    settings = db_manager.get_settings()
    items = _read_items(settings)
    if not items:
        print("No items added. Estimate cancelled.")
        return None

    notes = input(f"Notes [{settings.default_note or ''}]: ") or None
    estimate = lifecycle.new_estimate(client.id, settings=settings, items=items, notes=notes)
    estimate = db_manager.save_estimate(validate_document(estimate))
    print(f"Estimate {estimate.estimate_number} created: {format_currency(estimate.total, settings.default_currency)}")
    return estimate

def list_estimates_flow():
    print("\n[List Estimates]")
    estimates = db_manager.get_estimates()
    names = {c.id: c.name for c in db_manager.get_clients()}
    currency = _currency()
    for i, e in enumerate(estimates, 1):
        print(f"{i}. {e.estimate_number} | {names.get(e.client_id, '?')} | {format_date(e.issue_date)} | "
              f"{e.status} | {format_currency(e.total, currency)}")
    return estimates

def convert_estimate_flow():
    print("\n[Convert Estimate]")
    estimate = _pick(list_estimates_flow(), "Estimate")
    if estimate is None:
        return None
    client = db_manager.get_client(estimate.client_id)
    estimate, invoice = lifecycle.convert_to_invoice(estimate, client)
    print(f"Estimate {estimate.estimate_number} converted to invoice {invoice.invoice_number}.")
    return invoice

def list_invoices_flow():
    print("\n[List Invoices]")
    invoices = db_manager.get_invoices()
    names = {c.id: c.name for c in db_manager.get_clients()}
    currency = _currency()
    for i, inv in enumerate(invoices, 1):
        if inv.paid:
            state = "Paid"
        elif lifecycle.is_overdue(inv):
            state = "Overdue"
        else:
            state = "Unpaid"
        print(f"{i}. {inv.invoice_number} | {names.get(inv.client_id, '?')} | due {format_date(inv.due_date)} | "
              f"{state} | {format_currency(inv.total, currency)}")
    return invoices

def toggle_paid_flow():
    print("\n[Toggle Paid]")
    invoice = _pick(list_invoices_flow(), "Invoice")
    if invoice is None:
        return None
    invoice = lifecycle.toggle_paid(invoice)
    print(f"Invoice {invoice.invoice_number} marked as {'Paid' if invoice.paid else 'Unpaid'}.")
    return invoice

def generate_pdf_flow():
    print("\n[Generate PDF]")
    kind = input("Estimate or invoice? (e/i): ").strip().lower()
    if kind == "e":
        document = _pick(list_estimates_flow(), "Estimate")
        kind, number = "estimate", document and document.estimate_number
    else:
        document = _pick(list_invoices_flow(), "Invoice")
        kind, number = "invoice", document and document.invoice_number
    if document is None:
        return None

    client = db_manager.get_client(document.client_id)
    context = build_document_context(document, client, db_manager.get_settings(), kind)
    filename = os.path.abspath(f"{number}.pdf")
    try:
        DocumentPDF(context).generate(filename)
    except RENDER_ERRORS as e:
        logger.error("PDF generation failed for %s: %s", number, e)
        print(f"Could not generate PDF: {e}")
        return None
    print(f"PDF generated: {filename}")
    return filename

FLOWS = {
    '1': add_client_flow,
    '2': list_clients_flow,
    '3': create_estimate_flow,
    '4': list_estimates_flow,
    '5': convert_estimate_flow,
    '6': list_invoices_flow,
    '7': toggle_paid_flow,
    '8': generate_pdf_flow,
}

def main():
    logging.basicConfig(level=logging.WARNING)
    app = create_app(CliConfig)

    with app.app_context():
        while True:
            print_menu()
            choice = input("Select an option: ")

            if choice == '9':
                print("Goodbye!")
                break
            flow = FLOWS.get(choice)
            if flow is None:
                print("Invalid choice, please try again.")
                continue
            try:
                flow()
            except InvoicingError as e:
                print(f"Error: {e}")

if __name__ == "__main__":
    main()
