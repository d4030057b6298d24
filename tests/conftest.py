"""
Shared pytest fixtures for the Certification Workflow Service test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - notifications: recording notification sink installed for one test
    - owner / backup_owner / make_user: User factories
    - mandate: Mandate owned by ``owner`` and backed up by ``backup_owner``
    - draft_certification: draft with one required yes_no question
"""

import pytest

from app import create_app
from app.models import db as _db
from app.models.auth import User
from app.models.certification import Certification
from app.models.mandate import Mandate
from app.services.notification import set_notification_sink


class RecordingSink:
    """Notification sink that keeps messages in memory."""

    def __init__(self):
        self.messages = []

    def enqueue(self, message):
        self.messages.append(message)

    def of_type(self, event_type):
        return [m for m in self.messages if m.type == event_type]


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def notifications():
    """Install a RecordingSink for the duration of one test."""
    sink = RecordingSink()
    previous = set_notification_sink(sink)
    yield sink
    set_notification_sink(previous)


# ── Domain fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Factory: make_user("alice") → persisted attester User."""
    counter = {"n": 0}

    def _make(name=None, role="attester"):
        counter["n"] += 1
        name = name or f"user{counter['n']}"
        user = User(email=f"{name.lower()}@example.com", full_name=name.title(), role=role)
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def owner(make_user):
    return make_user("owner", role="mandate_owner")


@pytest.fixture()
def backup_owner(make_user):
    return make_user("backup", role="mandate_owner")


@pytest.fixture()
def mandate(owner, backup_owner):
    m = Mandate(name="Access Management", owner_id=owner.id, backup_owner_id=backup_owner.id)
    _db.session.add(m)
    _db.session.commit()
    return m


@pytest.fixture()
def draft_certification(mandate, owner):
    cert = Certification(
        mandate_id=mandate.id,
        title="Q3 Access Review",
        status="draft",
        questions=[
            {"id": "q1", "question": "Have all leavers been removed?", "type": "yes_no",
             "required": True, "allow_comments": True},
        ],
        created_by_id=owner.id,
    )
    _db.session.add(cert)
    _db.session.commit()
    return cert
