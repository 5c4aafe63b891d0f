import pytest

from app import create_app
from config import TestingConfig
from models import db


@pytest.fixture
def app(tmp_path):
    class _Config(TestingConfig):
        DOCUMENTS_DIR = str(tmp_path / "documents")

    app = create_app(_Config)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()
