from flask import Flask, Blueprint, current_app, request, jsonify, send_file
from flask_cors import CORS
from flask_migrate import Migrate, upgrade
from flask_apscheduler import APScheduler
from dataclasses import replace
import datetime
import io
import json
import logging
import os

import db_manager
import lifecycle
from config import Config
from documents import Client, LineItem, new_id
from errors import InvalidTransitionError, NotFoundError, ValidationError
from models import db
from pdf_builder import RENDER_ERRORS, DocumentPDF, build_document_context
from reminders import check_overdue_invoices
from validation import validate_client, validate_document, validate_line_item

migrate = Migrate()
scheduler = APScheduler()
api = Blueprint('api', __name__, url_prefix='/api')


# ----------------------------------------------------------------------
# Request parsing
# ----------------------------------------------------------------------

def _json():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError({'body': 'Expected a JSON object'})
    return data

def _number(data, key, field, default=None):
    value = data.get(key, default)
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            raise ValidationError({field: f"{value!r} is not a number"})
    if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError({field: 'A number is required'})
    return value

def _date(data, key, field):
    value = data.get(key)
    if value in (None, ''):
        return None
    try:
        return datetime.date.fromisoformat(str(value)).isoformat()
    except ValueError:
        raise ValidationError({field: 'Dates must be YYYY-MM-DD'})

def _new_items(data, settings):
    # checked before a document number is issued for them
    items = parse_items(data.get('items', []), settings)
    if not items:
        raise ValidationError({'items': 'Add at least one line item'})
    for index, item in enumerate(items):
        validate_line_item(item, prefix=f'items[{index}]')
    return items

def _optional_text(data, key):
    value = data.get(key)
    return None if value is None else str(value)

def parse_client(data, client_id=None):
    client = Client(
        id=client_id or str(data.get('id') or new_id()),
        name=str(data.get('name') or '').strip(),
        phone=_optional_text(data, 'phone'),
        email=_optional_text(data, 'email'),
        address=_optional_text(data, 'address'),
        company=_optional_text(data, 'company'),
    )
    return validate_client(client)

def parse_items(raw_items, settings):
    if not isinstance(raw_items, list):
        raise ValidationError({'items': 'Expected a list of line items'})
    items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError({f'items[{index}]': 'Expected an object'})
        taxable = bool(raw.get('taxable', True)) if settings.enable_item_taxable else True
        items.append(LineItem(
            id=str(raw.get('id') or new_id()),
            description=str(raw.get('description') or ''),
            quantity=_number(raw, 'quantity', f'items[{index}].quantity'),
            unit=raw.get('unit', 'hours'),
            unit_price=_number(raw, 'unitPrice', f'items[{index}].unit_price'),
            taxable=taxable,
        ))
    return items

def parse_changes(data, settings, own_fields):
    """Translate a camelCase JSON patch into lifecycle update keyword arguments."""
    changes = {}
    if 'clientId' in data:
        changes['client_id'] = db_manager.get_client(str(data['clientId'])).id
    if 'items' in data:
        changes['items'] = parse_items(data['items'], settings)
    if 'taxRate' in data:
        changes['tax_rate'] = _number(data, 'taxRate', 'tax_rate')
    if 'notes' in data:
        changes['notes'] = str(data['notes'] or '')
    if 'issueDate' in data:
        changes['issue_date'] = str(data['issueDate'])
    for key, name in own_fields.items():
        if key in data:
            changes[name] = data[key]
    return changes


# ----------------------------------------------------------------------
# Clients
# ----------------------------------------------------------------------

@api.route('/clients', methods=['GET', 'POST'])
def clients():
    if request.method == 'POST':
        client = db_manager.save_client(parse_client(_json()))
        return jsonify(client.to_dict()), 201

    clients = db_manager.get_clients(search=request.args.get('q'))
    return jsonify([c.to_dict() for c in clients])

@api.route('/clients/<client_id>', methods=['GET', 'PUT', 'DELETE'])
def manage_client(client_id):
    if request.method == 'DELETE':
        db_manager.get_client(client_id)
        removed = db_manager.delete_client(client_id)
        return jsonify({'message': 'Client deleted successfully', 'deleted': removed})

    if request.method == 'PUT':
        db_manager.get_client(client_id)
        client = db_manager.save_client(parse_client(_json(), client_id=client_id))
        return jsonify(client.to_dict())

    return jsonify(db_manager.get_client(client_id).to_dict())

@api.route('/clients/<client_id>/summary')
def client_summary(client_id):
    summary = db_manager.get_client_summary(client_id)
    return jsonify({
        'client': summary['client'].to_dict(),
        'estimates': [e.to_dict() for e in summary['estimates']],
        'invoices': [i.to_dict() for i in summary['invoices']],
        'estimatesTotal': summary['estimates_total'],
        'invoicesTotal': summary['invoices_total'],
        'paidInvoices': summary['paid_invoices'],
    })


# ----------------------------------------------------------------------
# Estimates
# ----------------------------------------------------------------------

@api.route('/estimates', methods=['GET', 'POST'])
def estimates():
    if request.method == 'POST':
        data = _json()
        settings = db_manager.get_settings()
        client = db_manager.get_client(str(data.get('clientId') or ''))
        items = _new_items(data, settings)
        estimate = lifecycle.new_estimate(
            client.id,
            settings=settings,
            today=_date(data, 'issueDate', 'issue_date'),
            items=items,
            notes=data.get('notes'),
            tax_rate=_number(data, 'taxRate', 'tax_rate') if 'taxRate' in data else None,
        )
        if data.get('validUntil'):
            estimate = replace(estimate, valid_until=_date(data, 'validUntil', 'valid_until'))
        validate_document(estimate)
        estimate = db_manager.save_estimate(estimate)
        return jsonify(estimate.to_dict()), 201

    estimates = db_manager.get_estimates(search=request.args.get('q'), client_id=request.args.get('client_id'))
    return jsonify([e.to_dict() for e in estimates])

@api.route('/estimates/<estimate_id>', methods=['GET', 'PUT', 'DELETE'])
def manage_estimate(estimate_id):
    estimate = db_manager.get_estimate(estimate_id)

    if request.method == 'DELETE':
        db_manager.delete_estimate(estimate_id)
        return jsonify({'message': 'Estimate deleted successfully'})

    if request.method == 'PUT':
        changes = parse_changes(_json(), db_manager.get_settings(), {'validUntil': 'valid_until'})
        updated = validate_document(lifecycle.update_estimate(estimate, **changes))
        return jsonify(db_manager.save_estimate(updated).to_dict())

    return jsonify(estimate.to_dict())

@api.route('/estimates/<estimate_id>/send', methods=['POST'])
def send_estimate(estimate_id):
    estimate = lifecycle.mark_sent(db_manager.get_estimate(estimate_id))
    return jsonify(estimate.to_dict())

@api.route('/estimates/<estimate_id>/convert', methods=['POST'])
def convert_estimate(estimate_id):
    estimate = db_manager.get_estimate(estimate_id)
    client = db_manager.get_client(estimate.client_id)
    estimate, invoice = lifecycle.convert_to_invoice(estimate, client)
    return jsonify({'estimate': estimate.to_dict(), 'invoice': invoice.to_dict()}), 201


# ----------------------------------------------------------------------
# Invoices
# ----------------------------------------------------------------------

@api.route('/invoices', methods=['GET', 'POST'])
def invoices():
    if request.method == 'POST':
        data = _json()
        settings = db_manager.get_settings()
        client = db_manager.get_client(str(data.get('clientId') or ''))
        invoice = lifecycle.new_invoice(
            client.id,
            settings=settings,
            today=_date(data, 'issueDate', 'issue_date'),
            items=_new_items(data, settings),
            notes=data.get('notes'),
            tax_rate=_number(data, 'taxRate', 'tax_rate') if 'taxRate' in data else None,
        )
        if data.get('dueDate'):
            invoice = replace(invoice, due_date=_date(data, 'dueDate', 'due_date'))
        if 'paid' in data:
            invoice = replace(invoice, paid=bool(data['paid']))
        validate_document(invoice)
        invoice = db_manager.save_invoice(invoice)
        return jsonify(invoice.to_dict()), 201

    invoices = db_manager.get_invoices(
        search=request.args.get('q'),
        status=request.args.get('status'),
        client_id=request.args.get('client_id'),
    )
    return jsonify([_invoice_json(i) for i in invoices])

def _invoice_json(invoice):
    data = invoice.to_dict()
    # derived on every read, never stored
    data['overdue'] = lifecycle.is_overdue(invoice)
    return data

@api.route('/invoices/<invoice_id>', methods=['GET', 'PUT', 'DELETE'])
def manage_invoice(invoice_id):
    invoice = db_manager.get_invoice(invoice_id)

    if request.method == 'DELETE':
        db_manager.delete_invoice(invoice_id)
        return jsonify({'message': 'Invoice deleted successfully'})

    if request.method == 'PUT':
        data = _json()
        changes = parse_changes(data, db_manager.get_settings(), {'dueDate': 'due_date'})
        if 'paid' in data:
            changes['paid'] = bool(data['paid'])
        updated = validate_document(lifecycle.update_invoice(invoice, **changes))
        return jsonify(_invoice_json(db_manager.save_invoice(updated)))

    return jsonify(_invoice_json(invoice))

@api.route('/invoices/<invoice_id>/pay', methods=['POST'])
def mark_paid(invoice_id):
    invoice = db_manager.get_invoice(invoice_id)
    data = request.get_json(silent=True) or {}
    if 'paid' in data:
        invoice = lifecycle.set_paid(invoice, data['paid'])
    else:
        invoice = lifecycle.toggle_paid(invoice)
    return jsonify(_invoice_json(invoice))


# ----------------------------------------------------------------------
# PDF
# ----------------------------------------------------------------------

def _render_pdf(document, kind, number):
    client = db_manager.get_client(document.client_id)
    context = build_document_context(document, client, db_manager.get_settings(), kind)

    # documents/<ClientName>/<number>.pdf
    safe_client_name = "".join([c for c in client.name if c.isalpha() or c.isdigit() or c == ' ']).strip() or client.id
    folder_path = os.path.join(current_app.config['DOCUMENTS_DIR'], safe_client_name)
    full_path = os.path.join(folder_path, f"{number}.pdf")
    try:
        os.makedirs(folder_path, exist_ok=True)
        DocumentPDF(context).generate(full_path)
    except RENDER_ERRORS as e:
        current_app.logger.error("PDF generation failed for %s: %s", number, e)
        return jsonify({'error': f"Could not generate PDF: {e}"}), 500
    return send_file(full_path, as_attachment=True, mimetype='application/pdf')

@api.route('/estimates/<estimate_id>/pdf')
def estimate_pdf(estimate_id):
    estimate = db_manager.get_estimate(estimate_id)
    return _render_pdf(estimate, 'estimate', estimate.estimate_number)

@api.route('/invoices/<invoice_id>/pdf')
def invoice_pdf(invoice_id):
    invoice = db_manager.get_invoice(invoice_id)
    return _render_pdf(invoice, 'invoice', invoice.invoice_number)


# ----------------------------------------------------------------------
# Settings and maintenance
# ----------------------------------------------------------------------

SETTINGS_FIELDS = {
    'companyName': 'company_name',
    'phone': 'phone',
    'email': 'email',
    'address': 'address',
    'logoUri': 'logo_uri',
    'defaultTaxRate': 'default_tax_rate',
    'defaultCurrency': 'default_currency',
    'defaultNote': 'default_note',
    'enableItemTaxable': 'enable_item_taxable',
}

@api.route('/settings', methods=['GET', 'POST'])
def settings():
    if request.method == 'POST':
        data = _json()
        changes = {name: data[key] for key, name in SETTINGS_FIELDS.items() if key in data}
        if 'default_tax_rate' in changes:
            rate = _number(data, 'defaultTaxRate', 'default_tax_rate')
            if rate < 0:
                raise ValidationError({'default_tax_rate': 'Tax rate must be zero or more'})
            changes['default_tax_rate'] = rate
        if 'enable_item_taxable' in changes:
            changes['enable_item_taxable'] = bool(changes['enable_item_taxable'])
        updated = db_manager.save_settings(replace(db_manager.get_settings(), **changes))
        return jsonify(updated.to_dict())

    return jsonify(db_manager.get_settings().to_dict())

@api.route('/settings/export')
def export_data():
    data = db_manager.export_data()
    mem = io.BytesIO()
    mem.write(json.dumps(data, indent=4).encode('utf-8'))
    mem.seek(0)

    filename = f"invoice_data_{datetime.date.today()}.json"
    return send_file(mem, as_attachment=True, download_name=filename, mimetype='application/json')

@api.route('/settings/import', methods=['POST'])
def import_data():
    if 'file' in request.files:
        file = request.files['file']
        if file.filename == '':
            return jsonify({"error": "No file selected"}), 400
        try:
            data = json.load(file)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return jsonify({"error": "Invalid JSON file"}), 400
    else:
        data = _json()
    counts = db_manager.import_data(data)
    return jsonify({"message": "Data imported successfully", "imported": counts})

@api.route('/settings/reset', methods=['POST'])
def reset_data():
    db_manager.clear_all_data()
    return jsonify({"message": "All data cleared"})

@api.route('/integrity')
def integrity():
    return jsonify(db_manager.check_integrity())


# ----------------------------------------------------------------------
# Error handlers
# ----------------------------------------------------------------------

def handle_validation_error(e):
    return jsonify({'error': str(e), 'fields': e.errors}), 400

def handle_not_found(e):
    return jsonify({'error': str(e)}), 404

def handle_invalid_transition(e):
    return jsonify({'error': str(e)}), 409


# ----------------------------------------------------------------------
# App factory
# ----------------------------------------------------------------------

def run_reminders(app):
    with app.app_context():
        check_overdue_invoices(app.config.get('WEBHOOK_URL'))

def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    db.init_app(app)
    migrate.init_app(app, db)
    CORS(app)

    app.register_blueprint(api)
    app.register_error_handler(ValidationError, handle_validation_error)
    app.register_error_handler(NotFoundError, handle_not_found)
    app.register_error_handler(InvalidTransitionError, handle_invalid_transition)

    uri = app.config['SQLALCHEMY_DATABASE_URI']
    if uri.startswith('sqlite:///'):
        os.makedirs(os.path.dirname(os.path.abspath(uri[len('sqlite:///'):])), exist_ok=True)

    with app.app_context():
        # In non-frozen environments (dev or Docker), apply migrations if they exist
        migration_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'migrations')
        if os.path.exists(migration_dir):
            upgrade(directory=migration_dir)
            app.logger.info("Database migrated successfully.")
        else:
            db.create_all()
        db_manager.init_db()

    if app.config.get('SCHEDULER_ENABLED') and not scheduler.running:
        scheduler.init_app(app)
        scheduler.add_job(id='invoice_check', func=run_reminders, args=[app],
                          trigger='cron', hour=app.config.get('REMINDER_HOUR', 9))
        scheduler.start()

    return app


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    create_app().run(debug=False, port=5000)
