"""Pytest configuration and fixtures"""
import threading

import pytest

from xbuddy import create_app
from xbuddy.extensions import db
from xbuddy.models import Organizer
from xbuddy.security import hash_password
from xbuddy.services import groups as group_service


class RecordingMailer:
    """Fake transport: records messages, fails for selected addresses."""

    def __init__(self):
        self.sent = []
        self.fail_for = set()
        self._lock = threading.Lock()

    def send(self, message):
        if message.to in self.fail_for:
            raise ConnectionError("SMTP connection refused")
        with self._lock:
            self.sent.append(message)

    def recipients(self):
        with self._lock:
            return sorted(m.to for m in self.sent)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def app(mailer):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "FRONTEND_URL": "https://xbuddy.test",
        "MAIL_TRANSPORT": mailer,
        "NOTIFY_DELAY_MS": 0,
        "CONFIGURE_LOGGING": False,
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
    app.extensions["notifications"].shutdown(drain=False, timeout=2)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def dispatcher(app):
    return app.extensions["notifications"]


@pytest.fixture
def organizer(app):
    o = Organizer(name="Olivia", email="olivia@example.com", password_hash=hash_password("correct horse"))
    db.session.add(o)
    db.session.commit()
    return o


@pytest.fixture
def make_group(organizer):
    """Create a pending group with participants named ``names``."""
    def _make(names=("Ana", "Ben", "Cai"), **fields):
        group = group_service.create_group(organizer, {"name": fields.pop("name", "Office party"), **fields})
        group_service.add_participants(
            group,
            [{"name": n, "email": f"{n.lower()}@example.com"} for n in names],
        )
        return group
    return _make


@pytest.fixture
def auth_client(client):
    """Test client logged in as a freshly registered organizer."""
    resp = client.post("/api/auth/register", json={
        "name": "Olivia",
        "email": "olivia@example.com",
        "password": "correct horse",
    })
    assert resp.status_code == 201
    return client
