"""Display helpers for money and dates. The core never calls these itself."""

import datetime
import re

CURRENCY_SYMBOLS = {
    "USD": "$",
    "CAD": "CA$",
    "AUD": "A$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "CNY": "CN¥",
}

# currencies without minor units
ZERO_DECIMAL = {"JPY"}


def format_currency(amount, currency="USD"):
    currency = (currency or "USD").upper()
    symbol = CURRENCY_SYMBOLS.get(currency, currency + " ")
    places = 0 if currency in ZERO_DECIMAL else 2
    text = f"{symbol}{abs(amount):,.{places}f}"
    # avoid "-$0.00" for values that round to zero
    if amount < 0 and round(abs(amount), places) != 0:
        return "-" + text
    return text


def parse_currency(value):
    """Strip symbols and separators; unparseable input becomes 0."""
    cleaned = re.sub(r"[^0-9.\-]", "", value or "")
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def _to_date(value):
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value)[:10])


def format_date(value):
    return _to_date(value).strftime("%m/%d/%Y")


def get_current_date():
    return datetime.date.today().isoformat()


def add_days(iso_date, days):
    return (_to_date(iso_date) + datetime.timedelta(days=days)).isoformat()
