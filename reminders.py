import datetime
import logging

import requests

import db_manager
from formatting import format_currency
from lifecycle import is_overdue

logger = logging.getLogger(__name__)


def send_webhook_notification(webhook_url, invoice, client_name, currency='USD', type='reminder', timeout=10):
    """Post a payment reminder. Failures are logged, never raised."""
    if type == 'overdue':
        emoji = "🚨"
        title = "**OVERDUE INVOICE ALERT**"
        time_info = f"was due on **{invoice.due_date}**"
    else:
        emoji = "📢"
        title = "**Invoice Reminder**"
        time_info = f"is due **today** ({invoice.due_date})"

    data = {
        "content": f"{emoji} {title}\nInvoice **#{invoice.invoice_number}** for **{client_name}** {time_info} "
                   f"and is unpaid.\nTotal Amount: {format_currency(invoice.total, currency)}"
    }
    try:
        resp = requests.post(webhook_url, json=data, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.warning("Failed to send %s notification for %s: %s", type, invoice.invoice_number, e)
        return False
    return True


def check_overdue_invoices(webhook_url, today=None):
    """Notify about unpaid invoices that are overdue or due today.

    Overdue is derived from the due date on every run; nothing is written back.
    Returns ``{'overdue': [...], 'due_today': [...]}`` invoice numbers.
    """
    today = today or datetime.date.today()
    if isinstance(today, str):
        today = datetime.date.fromisoformat(today)

    invoices = db_manager.get_invoices(status='unpaid')
    names = {c.id: c.name for c in db_manager.get_clients()}
    currency = db_manager.get_settings().default_currency

    overdue = [i for i in invoices if is_overdue(i, today)]
    due_today = [i for i in invoices if i.due_date == today.isoformat()]

    if webhook_url:
        for invoice in overdue:
            send_webhook_notification(webhook_url, invoice, names.get(invoice.client_id, "Unknown Client"),
                                      currency, type='overdue')
        for invoice in due_today:
            send_webhook_notification(webhook_url, invoice, names.get(invoice.client_id, "Unknown Client"),
                                      currency, type='reminder')

    if overdue or due_today:
        logger.info("Checked invoices: %d overdue, %d due today", len(overdue), len(due_today))
    return {
        'overdue': [i.invoice_number for i in overdue],
        'due_today': [i.invoice_number for i in due_today],
    }
