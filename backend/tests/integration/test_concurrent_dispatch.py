"""Concurrent dispatchers against a shared file-backed database."""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from campaign_engine.db.base import Base, _sqlite_pragmas
from campaign_engine.db.models.campaign import Campaign, CampaignStatus
from campaign_engine.db.models.contact import Contact
from campaign_engine.db.models.delivery import Email, EmailStatus
from campaign_engine.db.models.template import Template
from campaign_engine.services.adapters.email_sending.mock import MockEmailSendAdapter
from campaign_engine.services.notifications import EventBroadcaster
from campaign_engine.services.sequencing import dispatcher as outcomes
from campaign_engine.services.sequencing import lifecycle
from campaign_engine.services.sequencing.dispatcher import SequenceDispatcher

T0 = datetime(2026, 1, 5, 9, 0, 0)
CONTACTS = 20
WORKERS = 4


@pytest.fixture
def file_session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'dispatch.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    event.listen(engine, "connect", _sqlite_pragmas)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


def _seed_campaign(session_factory) -> int:
    db = session_factory()
    try:
        template = Template(owner_id=1, name="Intro", subject="Hello", html_content="<p>Hi</p>", text_content="Hi")
        db.add(template)
        contacts = [Contact(owner_id=1, email=f"lead{i}@example.com", first_name=f"Lead{i}") for i in range(CONTACTS)]
        db.add_all(contacts)
        db.commit()
        campaign = lifecycle.create_campaign(
            db,
            owner_id=1,
            name="Concurrent outreach",
            steps=[{"delay_hours": 0}],
            contact_ids=[c.contact_id for c in contacts],
            template_id=template.template_id,
        )
        lifecycle.start_campaign(db, campaign.campaign_id, T0)
        return campaign.campaign_id
    finally:
        db.close()


class TestConcurrentDispatch:
    """Several dispatchers polling the same due records."""

    def test_each_record_sent_exactly_once(self, file_session_factory):
        campaign_id = _seed_campaign(file_session_factory)
        adapter = MockEmailSendAdapter()
        dispatchers = [
            SequenceDispatcher(session_factory=file_session_factory, adapter=adapter, notifier=EventBroadcaster(),
                               concurrency=WORKERS, retry_backoff_seconds=0)
            for _ in range(WORKERS)
        ]
        sent = 0
        try:
            # Later rounds pick up anything a busy database pushed back for retry
            for offset in (timedelta(seconds=1), timedelta(minutes=10), timedelta(minutes=20)):
                with ThreadPoolExecutor(max_workers=WORKERS) as pool:
                    summaries = list(pool.map(lambda d: d.poll_due(T0 + offset), dispatchers))
                sent += sum(s.get(outcomes.SENT, 0) for s in summaries)
        finally:
            for d in dispatchers:
                d.close()

        recipients = [m["to"] for m in adapter.sent_emails]
        assert sent == CONTACTS
        assert len(recipients) == CONTACTS
        assert len(set(recipients)) == CONTACTS

        db = file_session_factory()
        try:
            emails = db.query(Email).filter(Email.campaign_id == campaign_id).all()
            assert len(emails) == CONTACTS
            assert all(e.status == EmailStatus.SENT and e.lock_token is None for e in emails)
            campaign = db.get(Campaign, campaign_id)
            assert campaign.stats_total_sent == CONTACTS
            assert campaign.status == CampaignStatus.COMPLETED
        finally:
            db.close()
