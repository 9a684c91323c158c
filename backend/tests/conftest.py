"""Pytest configuration and fixtures."""
import os
from datetime import datetime
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Configure the app BEFORE importing it: no on-disk database, no background jobs
os.environ["SQLITE_PATH"] = ":memory:"
os.environ["SCHEDULER_ENABLED"] = "False"
os.environ["APP_ENV"] = "test"
os.environ["DEBUG"] = "False"

from campaign_engine.main import app
from campaign_engine.db.base import Base, get_db
from campaign_engine.api.deps import get_sequence_dispatcher
from campaign_engine.db.models.contact import Contact
from campaign_engine.db.models.template import Template
from campaign_engine.services.adapters.email_sending.mock import MockEmailSendAdapter
from campaign_engine.services.notifications import EventBroadcaster
from campaign_engine.services.sequencing import lifecycle
from campaign_engine.services.sequencing.dispatcher import SequenceDispatcher

# Use SQLite for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

T0 = datetime(2026, 1, 5, 9, 0, 0)


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def mail_adapter():
    """Recording mock transport."""
    return MockEmailSendAdapter()


@pytest.fixture
def notifier():
    return EventBroadcaster()


@pytest.fixture
def dispatcher(db_session, mail_adapter, notifier):
    """Single-worker dispatcher bound to the test database."""
    d = SequenceDispatcher(
        session_factory=TestingSessionLocal,
        adapter=mail_adapter,
        notifier=notifier,
        batch_size=100,
        concurrency=1,
        lock_timeout_seconds=300,
        max_attempts=3,
        retry_backoff_seconds=60,
        transport_timeout_seconds=5,
    )
    yield d
    d.close()


@pytest.fixture(scope="function")
def client(db_session, dispatcher):
    """Create a test client with database and dispatcher overrides."""
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_sequence_dispatcher] = lambda: dispatcher
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def template(db_session):
    """Default template with a link to rewrite."""
    template = Template(
        owner_id=1,
        name="Intro",
        subject="Hello from us",
        html_content='<html><body><p>Hi there</p><a href="https://example.com/offer">Offer</a></body></html>',
        text_content="Hi there",
    )
    db_session.add(template)
    db_session.commit()
    db_session.refresh(template)
    return template


@pytest.fixture
def make_contact(db_session):
    """Factory for contacts."""
    counter = {"n": 0}

    def _make(email=None, **kwargs):
        counter["n"] += 1
        contact = Contact(
            owner_id=kwargs.pop("owner_id", 1),
            email=email or f"contact{counter['n']}@example.com",
            first_name=kwargs.pop("first_name", f"Contact{counter['n']}"),
            **kwargs
        )
        db_session.add(contact)
        db_session.commit()
        db_session.refresh(contact)
        return contact

    return _make


@pytest.fixture
def make_campaign(db_session, template):
    """Factory for draft campaigns using the default template."""

    def _make(contacts, steps=None, **kwargs):
        return lifecycle.create_campaign(
            db_session,
            owner_id=kwargs.pop("owner_id", 1),
            name=kwargs.pop("name", "Spring outreach"),
            steps=steps if steps is not None else [{"delay_hours": 0}],
            contact_ids=[c.contact_id for c in contacts],
            template_id=kwargs.pop("template_id", template.template_id),
            **kwargs
        )

    return _make


@pytest.fixture
def session_factory(db_session):
    """Session factory sharing the test database, for code that opens its own sessions."""
    return TestingSessionLocal


@pytest.fixture
def started_campaign(db_session, make_contact, make_campaign):
    """Factory: create and start a campaign at T0."""

    def _start(contacts=None, steps=None, now=T0, **kwargs):
        contacts = contacts if contacts is not None else [make_contact(), make_contact()]
        campaign = make_campaign(contacts, steps=steps, **kwargs)
        return lifecycle.start_campaign(db_session, campaign.campaign_id, now)

    return _start
