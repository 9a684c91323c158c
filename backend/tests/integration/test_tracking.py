"""Integration tests for tracking beacons and callbacks."""
from datetime import datetime, timedelta
from urllib.parse import quote
import pytest

from campaign_engine.db.models.campaign import Campaign
from campaign_engine.db.models.contact import Contact, ContactStatus
from campaign_engine.db.models.delivery import Email, EmailStatus
from campaign_engine.db.models.tracking import EmailTracking, TrackingEvent, TrackingEventType
from campaign_engine.db.models.unsubscribe import Unsubscribe
from campaign_engine.services.tracking.ingestor import PIXEL_BYTES

T0 = datetime(2026, 1, 5, 9, 0, 0)
BROWSER = {"User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36"}
SCANNER = {"User-Agent": "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"}


@pytest.fixture
def sent_campaign(db_session, dispatcher, started_campaign):
    """Campaign with two sent records."""
    campaign = started_campaign()
    dispatcher.poll_due(T0 + timedelta(seconds=1))
    db_session.expire_all()
    return db_session.get(Campaign, campaign.campaign_id)


def _first_email(db_session, campaign):
    db_session.expire_all()
    return db_session.query(Email).filter(Email.campaign_id == campaign.campaign_id).order_by(Email.email_id).first()


def _events(db_session, email, event_type):
    db_session.expire_all()
    return (
        db_session.query(TrackingEvent)
        .join(EmailTracking, EmailTracking.tracking_id == TrackingEvent.tracking_id)
        .filter(EmailTracking.email_id == email.email_id, TrackingEvent.event_type == event_type)
        .order_by(TrackingEvent.event_id)
        .all()
    )


def _stats(db_session, campaign):
    db_session.expire_all()
    return db_session.get(Campaign, campaign.campaign_id).stats


class TestPixelEndpoint:
    """Tests for GET /tracking/pixel/{id}."""

    def test_open_recorded_once(self, client, db_session, sent_campaign):
        email = _first_email(db_session, sent_campaign)

        for _ in range(3):
            response = client.get(f"/tracking/pixel/{email.tracking_pixel_id}", headers=BROWSER)
            assert response.status_code == 200

        assert len(_events(db_session, email, TrackingEventType.OPENED)) == 1
        assert _stats(db_session, sent_campaign)["opened"] == 1

    def test_pixel_response_and_headers(self, client, db_session, sent_campaign):
        email = _first_email(db_session, sent_campaign)
        response = client.get(f"/tracking/pixel/{email.tracking_pixel_id}", headers=BROWSER)

        assert response.headers["content-type"] == "image/png"
        assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
        assert response.headers["pragma"] == "no-cache"
        assert response.headers["expires"] == "0"
        assert response.content == PIXEL_BYTES

    def test_bot_hit_is_ignored_but_identical(self, client, db_session, sent_campaign):
        email = _first_email(db_session, sent_campaign)

        bot = client.get(f"/tracking/pixel/{email.tracking_pixel_id}", headers=SCANNER)
        assert _events(db_session, email, TrackingEventType.OPENED) == []
        assert _stats(db_session, sent_campaign)["opened"] == 0

        human = client.get(f"/tracking/pixel/{email.tracking_pixel_id}", headers=BROWSER)
        assert bot.status_code == human.status_code == 200
        assert bot.content == human.content
        assert bot.headers["content-type"] == human.headers["content-type"]
        assert bot.headers["cache-control"] == human.headers["cache-control"]

    def test_missing_user_agent_is_ignored(self, client, db_session, sent_campaign):
        email = _first_email(db_session, sent_campaign)
        client.get(f"/tracking/pixel/{email.tracking_pixel_id}", headers={"User-Agent": ""})
        assert _events(db_session, email, TrackingEventType.OPENED) == []

    def test_unknown_tracking_id_still_returns_pixel(self, client, db_session):
        response = client.get("/tracking/pixel/does-not-exist", headers=BROWSER)
        assert response.status_code == 200
        assert response.content == PIXEL_BYTES
        assert db_session.query(TrackingEvent).count() == 0


class TestClickEndpoint:
    """Tests for GET /tracking/click/{id}."""

    def test_every_click_counted(self, client, db_session, sent_campaign):
        email = _first_email(db_session, sent_campaign)
        urls = ["https://example.com/a", "https://example.com/b", "https://example.com/a"]

        for url in urls:
            response = client.get(
                f"/tracking/click/{email.tracking_pixel_id}?url={quote(url, safe='')}",
                headers=BROWSER,
                follow_redirects=False,
            )
            assert response.status_code == 302
            assert response.headers["location"] == url

        clicks = _events(db_session, email, TrackingEventType.CLICKED)
        assert len(clicks) == 3
        assert [c.data["url"] for c in clicks] == urls
        assert _stats(db_session, sent_campaign)["clicked"] == 3

    def test_missing_url_is_client_error(self, client, db_session, sent_campaign):
        email = _first_email(db_session, sent_campaign)
        response = client.get(f"/tracking/click/{email.tracking_pixel_id}", headers=BROWSER, follow_redirects=False)
        assert response.status_code == 400
        assert _events(db_session, email, TrackingEventType.CLICKED) == []

    @pytest.mark.parametrize("target", ["javascript:alert(1)", "/relative/path", "not a url"])
    def test_non_absolute_url_rejected(self, client, db_session, sent_campaign, target):
        email = _first_email(db_session, sent_campaign)
        response = client.get(
            f"/tracking/click/{email.tracking_pixel_id}?url={quote(target, safe='')}",
            headers=BROWSER,
            follow_redirects=False,
        )
        assert response.status_code == 400

    def test_bot_click_redirects_without_recording(self, client, db_session, sent_campaign):
        email = _first_email(db_session, sent_campaign)
        response = client.get(
            f"/tracking/click/{email.tracking_pixel_id}?url={quote('https://example.com', safe='')}",
            headers=SCANNER,
            follow_redirects=False,
        )
        assert response.status_code == 302
        assert _events(db_session, email, TrackingEventType.CLICKED) == []
        assert _stats(db_session, sent_campaign)["clicked"] == 0

    def test_unknown_tracking_id_still_redirects(self, client):
        response = client.get(
            f"/tracking/click/unknown?url={quote('https://example.com/x', safe='')}",
            headers=BROWSER,
            follow_redirects=False,
        )
        assert response.status_code == 302
        assert response.headers["location"] == "https://example.com/x"


class TestUnsubscribeEndpoint:
    """Tests for GET /tracking/unsubscribe/{id}."""

    def test_unsubscribe_suppresses_contact(self, client, db_session, sent_campaign):
        email = _first_email(db_session, sent_campaign)

        response = client.get(f"/tracking/unsubscribe/{email.tracking_pixel_id}", headers=BROWSER)
        client.get(f"/tracking/unsubscribe/{email.tracking_pixel_id}", headers=BROWSER)

        assert response.status_code == 200
        assert "unsubscribed" in response.text
        db_session.expire_all()
        assert db_session.get(Contact, email.contact_id).status == ContactStatus.UNSUBSCRIBED
        assert db_session.query(Unsubscribe).count() == 1
        assert _stats(db_session, sent_campaign)["unsubscribed"] == 1

    def test_unknown_id_gets_confirmation(self, client):
        response = client.get("/tracking/unsubscribe/unknown", headers=BROWSER)
        assert response.status_code == 200
        assert "unsubscribed" in response.text


class TestDeliveryCallbacks:
    """Tests for POST /api/v1/tracking/events."""

    def test_delivery_recorded_once(self, client, db_session, sent_campaign):
        email = _first_email(db_session, sent_campaign)
        payload = {"tracking_id": email.tracking_pixel_id, "event": "delivered"}

        first = client.post("/api/v1/tracking/events", json=payload)
        second = client.post("/api/v1/tracking/events", json=payload)

        assert first.json()["recorded"] is True
        assert second.json()["recorded"] is False
        assert _first_email(db_session, sent_campaign).status == EmailStatus.DELIVERED
        assert _stats(db_session, sent_campaign)["delivered"] == 1

    def test_bounce_marks_contact(self, client, db_session, sent_campaign):
        email = _first_email(db_session, sent_campaign)
        response = client.post("/api/v1/tracking/events", json={
            "tracking_id": email.tracking_pixel_id, "event": "bounced", "reason": "550 mailbox unavailable",
        })

        assert response.status_code == 200
        bounced = _first_email(db_session, sent_campaign)
        assert bounced.status == EmailStatus.BOUNCED
        assert bounced.bounce_reason == "550 mailbox unavailable"
        assert db_session.get(Contact, email.contact_id).status == ContactStatus.BOUNCED
        assert _stats(db_session, sent_campaign)["bounced"] == 1

    def test_unknown_event_type_rejected(self, client):
        response = client.post("/api/v1/tracking/events", json={"tracking_id": "x", "event": "opened"})
        assert response.status_code == 422
