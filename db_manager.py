import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import date

from documents import AppSettings, Client, Counters, Estimate, Invoice
from errors import InvalidTransitionError, NotFoundError, ValidationError
from models import db, StorageEntry, STORAGE_KEYS, ESTIMATES, INVOICES, CLIENTS, SETTINGS, COUNTERS

logger = logging.getLogger(__name__)

# Serializes every read-modify-write against the store. Re-entrant so that
# helpers taking the lock can be called from inside a transaction.
_lock = threading.RLock()

COUNTER_FIELDS = {
    'estimate': 'estimate_counter',
    'invoice': 'invoice_counter',
}


# ----------------------------------------------------------------------
# Raw key access
# ----------------------------------------------------------------------

def _read(key, default):
    # always re-select; another session may have committed since our last read
    entry = db.session.get(StorageEntry, key, populate_existing=True)
    if entry is None:
        return default
    return json.loads(entry.value)

def _write(key, value):
    payload = json.dumps(value)
    entry = db.session.get(StorageEntry, key, populate_existing=True)
    if entry is None:
        db.session.add(StorageEntry(key=key, value=payload))
    else:
        entry.value = payload

@contextmanager
def transaction():
    """Run a block of reads and writes as one locked, single-commit unit."""
    with _lock:
        try:
            yield
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

def init_db():
    # Seed singletons so a fresh install has explicit defaults stored
    with transaction():
        if db.session.get(StorageEntry, SETTINGS) is None:
            _write(SETTINGS, AppSettings().to_dict())
        if db.session.get(StorageEntry, COUNTERS) is None:
            _write(COUNTERS, Counters().to_dict())


# ----------------------------------------------------------------------
# Collections
# ----------------------------------------------------------------------

def _load(key, cls):
    return [cls.from_dict(d) for d in _read(key, [])]

def _upsert(key, entity):
    records = _read(key, [])
    data = entity.to_dict()
    for index, existing in enumerate(records):
        if existing['id'] == entity.id:
            records[index] = data
            break
    else:
        records.append(data)
    _write(key, records)

def _remove(key, ids):
    ids = set(ids)
    records = _read(key, [])
    kept = [r for r in records if r['id'] not in ids]
    if len(kept) != len(records):
        _write(key, kept)
    return len(records) - len(kept)

def _find(key, cls, entity_id, kind):
    for data in _read(key, []):
        if data['id'] == entity_id:
            return cls.from_dict(data)
    raise NotFoundError(kind, entity_id)

def _matches(term, *values):
    return any(term in (v or '').lower() for v in values)


# Clients

def get_clients(search=None):
    clients = _load(CLIENTS, Client)
    term = (search or '').strip().lower()
    if term:
        clients = [c for c in clients if _matches(term, c.name, c.company, c.email)]
    return clients

def get_client(client_id):
    return _find(CLIENTS, Client, client_id, 'Client')

def save_client(client):
    with transaction():
        _upsert(CLIENTS, client)
    return client

def delete_client(client_id):
    """Delete a client together with every estimate and invoice it owns."""
    with transaction():
        estimate_ids = [e['id'] for e in _read(ESTIMATES, []) if e['clientId'] == client_id]
        invoice_ids = [i['id'] for i in _read(INVOICES, []) if i['clientId'] == client_id]
        # dependents first: a client without documents is a valid state
        _remove(ESTIMATES, estimate_ids)
        _remove(INVOICES, invoice_ids)
        removed = _remove(CLIENTS, [client_id])
    if removed:
        logger.info("Deleted client %s with %d estimates and %d invoices",
                    client_id, len(estimate_ids), len(invoice_ids))
    return {'estimates': len(estimate_ids), 'invoices': len(invoice_ids), 'client': removed}

def get_client_summary(client_id):
    client = get_client(client_id)
    estimates = get_estimates(client_id=client_id)
    invoices = get_invoices(client_id=client_id)
    return {
        'client': client,
        'estimates': estimates,
        'invoices': invoices,
        'estimates_total': sum(e.total for e in estimates),
        'invoices_total': sum(i.total for i in invoices),
        'paid_invoices': sum(1 for i in invoices if i.paid),
    }


# Estimates

def get_estimates(search=None, client_id=None):
    estimates = _load(ESTIMATES, Estimate)
    if client_id is not None:
        estimates = [e for e in estimates if e.client_id == client_id]
    term = (search or '').strip().lower()
    if term:
        estimates = [e for e in estimates if _matches(term, e.estimate_number, e.notes)]
    return estimates

def get_estimate(estimate_id):
    return _find(ESTIMATES, Estimate, estimate_id, 'Estimate')

def save_estimate(estimate):
    """Upsert an estimate; the stored total is always recomputed."""
    estimate = estimate.with_total()
    with transaction():
        for data in _read(ESTIMATES, []):
            if data['id'] == estimate.id:
                _check_converted_unchanged(Estimate.from_dict(data), estimate)
                break
        _upsert(ESTIMATES, estimate)
    return estimate

def _check_converted_unchanged(stored, incoming):
    if not stored.state.is_converted:
        return
    if incoming.state != stored.state:
        raise InvalidTransitionError(
            f"Estimate {stored.estimate_number} was converted to an invoice and cannot change status")
    if (incoming.items, incoming.tax_rate, incoming.client_id) != (stored.items, stored.tax_rate, stored.client_id):
        raise InvalidTransitionError(
            f"Estimate {stored.estimate_number} was converted to an invoice; its items, tax rate and client are locked")

def delete_estimate(estimate_id):
    with transaction():
        _remove(ESTIMATES, [estimate_id])


# Invoices

def get_invoices(search=None, status=None, client_id=None, today=None):
    # Local import to avoid circular dependency at module import time
    from lifecycle import is_overdue

    invoices = _load(INVOICES, Invoice)
    if client_id is not None:
        invoices = [i for i in invoices if i.client_id == client_id]
    term = (search or '').strip().lower()
    if term:
        names = {c.id: c.name for c in get_clients()}
        invoices = [i for i in invoices
                    if _matches(term, i.invoice_number, i.notes, names.get(i.client_id))]
    if status and status != 'all':
        if status == 'paid':
            invoices = [i for i in invoices if i.paid]
        elif status == 'unpaid':
            invoices = [i for i in invoices if not i.paid]
        elif status == 'overdue':
            invoices = [i for i in invoices if is_overdue(i, today)]
        else:
            raise ValidationError({'status': f"Unknown invoice filter {status!r}"})
    return invoices

def get_invoice(invoice_id):
    return _find(INVOICES, Invoice, invoice_id, 'Invoice')

def save_invoice(invoice):
    invoice = invoice.with_total()
    with transaction():
        _upsert(INVOICES, invoice)
    return invoice

def delete_invoice(invoice_id):
    with transaction():
        for data in _read(ESTIMATES, []):
            if data.get('convertedInvoiceId') == invoice_id:
                raise InvalidTransitionError(
                    f"Invoice {invoice_id} was converted from estimate {data['estimateNumber']}; "
                    "delete the estimate first")
        _remove(INVOICES, [invoice_id])

def save_conversion(invoice, estimate):
    """Persist a freshly converted estimate and the invoice it produced.

    The invoice is written before the estimate that points at it.
    """
    invoice = invoice.with_total()
    estimate = estimate.with_total()
    with transaction():
        stored = _find(ESTIMATES, Estimate, estimate.id, 'Estimate')
        if stored.state.is_converted:
            raise InvalidTransitionError(
                f"Estimate {stored.estimate_number} was already converted to invoice {stored.converted_invoice_id}")
        _upsert(INVOICES, invoice)
        _upsert(ESTIMATES, estimate)
    return estimate, invoice


# ----------------------------------------------------------------------
# Singletons
# ----------------------------------------------------------------------

def get_settings():
    return AppSettings.from_dict(_read(SETTINGS, {}))

def save_settings(settings):
    with transaction():
        _write(SETTINGS, settings.to_dict())
    return settings

def get_counters():
    return Counters.from_dict(_read(COUNTERS, {}))

def increment_counter(name):
    """Atomically bump the named counter and return its new value."""
    attr = COUNTER_FIELDS[name]
    with transaction():
        counters = Counters.from_dict(_read(COUNTERS, {}))
        value = getattr(counters, attr) + 1
        _write(COUNTERS, replace(counters, **{attr: value}).to_dict())
    return value


# ----------------------------------------------------------------------
# Maintenance
# ----------------------------------------------------------------------

def clear_all_data():
    with transaction():
        for key in (ESTIMATES, INVOICES, CLIENTS):
            _write(key, [])
        _write(SETTINGS, AppSettings().to_dict())
        _write(COUNTERS, Counters().to_dict())
    logger.warning("All estimates, invoices, clients and settings were cleared")

def check_integrity():
    """Report records left inconsistent by an interrupted multi-record write."""
    clients = {c.id for c in get_clients()}
    estimates = get_estimates()
    invoices = get_invoices()
    invoice_ids = {i.id for i in invoices}
    referenced = {e.converted_invoice_id for e in estimates if e.state.is_converted}

    return {
        'dangling_conversions': [e.id for e in estimates
                                 if e.state.is_converted and e.converted_invoice_id not in invoice_ids],
        'orphan_estimates': [e.id for e in estimates if e.client_id not in clients],
        'orphan_invoices': [i.id for i in invoices if i.client_id not in clients],
        # invoices carrying an estimate number that no estimate points at
        'unlinked_invoices': [i.id for i in invoices
                              if i.estimate_number and i.id not in referenced],
        'stale_totals': [d.id for d in estimates + invoices if not d.core.is_current()],
    }

def export_data():
    """Export all data to a dictionary."""
    data = {key: _read(key, None) for key in STORAGE_KEYS}
    data['settings'] = data['settings'] or AppSettings().to_dict()
    data['counters'] = data['counters'] or Counters().to_dict()
    for key in (ESTIMATES, INVOICES, CLIENTS):
        data[key] = data[key] or []
    data['exported_at'] = date.today().isoformat()
    return data

def import_data(data):
    """Import data from dictionary, replacing existing data."""
    try:
        clients = [Client.from_dict(c) for c in data.get(CLIENTS, [])]
        estimates = [Estimate.from_dict(e).with_total() for e in data.get(ESTIMATES, [])]
        invoices = [Invoice.from_dict(i).with_total() for i in data.get(INVOICES, [])]
        settings = AppSettings.from_dict(data.get(SETTINGS) or {})
        counters = Counters.from_dict(data.get(COUNTERS) or {})
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise ValidationError({'file': f"Malformed backup: {exc}"}) from exc
    _check_backup_links(clients, estimates, invoices)

    # Never move counters backwards past numbers already in the backup
    counters = Counters(
        estimate_counter=max(counters.estimate_counter, _highest_number(e.estimate_number for e in estimates)),
        invoice_counter=max(counters.invoice_counter, _highest_number(i.invoice_number for i in invoices)),
    )

    with transaction():
        _write(CLIENTS, [c.to_dict() for c in clients])
        _write(ESTIMATES, [e.to_dict() for e in estimates])
        _write(INVOICES, [i.to_dict() for i in invoices])
        _write(SETTINGS, settings.to_dict())
        _write(COUNTERS, counters.to_dict())
    logger.info("Imported %d clients, %d estimates, %d invoices",
                len(clients), len(estimates), len(invoices))
    return {'clients': len(clients), 'estimates': len(estimates), 'invoices': len(invoices)}

def _check_backup_links(clients, estimates, invoices):
    client_ids = {c.id for c in clients}
    invoice_ids = {i.id for i in invoices}
    errors = {}
    for e in estimates:
        if e.client_id not in client_ids:
            errors[f'estimates.{e.id}'] = f"Unknown client {e.client_id!r}"
        elif e.state.is_converted and e.converted_invoice_id not in invoice_ids:
            errors[f'estimates.{e.id}'] = f"Converted to missing invoice {e.converted_invoice_id!r}"
    for i in invoices:
        if i.client_id not in client_ids:
            errors[f'invoices.{i.id}'] = f"Unknown client {i.client_id!r}"
    if errors:
        raise ValidationError({'file': "Backup references records it does not contain", **errors})

def _highest_number(numbers):
    highest = 0
    for number in numbers:
        _, _, digits = (number or '').rpartition('-')
        if digits.isdigit():
            highest = max(highest, int(digits))
    return highest
