from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone

db = SQLAlchemy()

# Stable storage keys; each row holds one JSON document.
ESTIMATES = 'estimates'
INVOICES = 'invoices'
CLIENTS = 'clients'
SETTINGS = 'settings'
COUNTERS = 'counters'
STORAGE_KEYS = (ESTIMATES, INVOICES, CLIENTS, SETTINGS, COUNTERS)

class StorageEntry(db.Model):
    __tablename__ = 'storage_entries'
    key = db.Column(db.String(32), primary_key=True)
    value = db.Column(db.Text, nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
