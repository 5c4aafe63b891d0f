import os
import sys


def get_db_path():
    if os.environ.get('INVOICES_DB_PATH'):
        return os.environ['INVOICES_DB_PATH']
    if getattr(sys, 'frozen', False):
        base_path = os.path.dirname(sys.executable)
        return os.path.join(base_path, 'data', 'invoices.db')
    # In production (Docker), use the mapped 'data' volume
    if os.environ.get('FLASK_ENV') == 'production':
        return os.path.join('/app', 'data', 'invoices.db')
    base_path = os.path.dirname(os.path.abspath(__file__))
    return os.path.join(base_path, 'data', 'invoices.db')


def _flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    SQLALCHEMY_DATABASE_URI = f'sqlite:///{get_db_path()}'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    DOCUMENTS_DIR = os.environ.get(
        'INVOICES_DOCUMENTS_DIR',
        os.path.join(os.path.dirname(get_db_path()), 'documents'),
    )
    WEBHOOK_URL = os.environ.get('INVOICES_WEBHOOK_URL')
    SCHEDULER_ENABLED = _flag('INVOICES_SCHEDULER_ENABLED', True)
    # Daily reminder run, 9:00 local time
    REMINDER_HOUR = int(os.environ.get('INVOICES_REMINDER_HOUR', '9'))
    LOG_LEVEL = os.environ.get('INVOICES_LOG_LEVEL', 'INFO')


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SCHEDULER_ENABLED = False
    WEBHOOK_URL = None


class CliConfig(Config):
    SCHEDULER_ENABLED = False
