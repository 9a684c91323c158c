"""Integration tests for stats reconciliation and open repair."""
from datetime import datetime, timedelta
import pytest

from campaign_engine.db.models.campaign import Campaign
from campaign_engine.db.models.delivery import Email
from campaign_engine.db.models.tracking import EmailTracking, TrackingEvent, TrackingEventType
from campaign_engine.services.sequencing.lifecycle import CampaignNotFoundError
from campaign_engine.services.tracking.events import increment_campaign_stat
from campaign_engine.services.tracking.ingestor import record_click, record_open
from campaign_engine.services.tracking.reconciler import (
    recalculate_all_campaigns, recalculate_campaign_stats, repair_missing_opens,
)

T0 = datetime(2026, 1, 5, 9, 0, 0)
UA = "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15"
IP = "203.0.113.7"


@pytest.fixture
def sent_campaign(db_session, dispatcher, started_campaign):
    campaign = started_campaign()
    dispatcher.poll_due(T0 + timedelta(seconds=1))
    db_session.expire_all()
    return db_session.get(Campaign, campaign.campaign_id)


def _tracking_ids(db_session, campaign):
    rows = (
        db_session.query(EmailTracking.tracking_pixel_id)
        .filter(EmailTracking.campaign_id == campaign.campaign_id)
        .order_by(EmailTracking.tracking_id)
        .all()
    )
    return [row[0] for row in rows]


class TestRecalculate:
    """Tests for recalculate_campaign_stats."""

    def test_matches_incremental_counters(self, db_session, sent_campaign):
        pixel_a, pixel_b = _tracking_ids(db_session, sent_campaign)
        record_open(db_session, pixel_a, IP, UA, now=T0 + timedelta(minutes=5))
        record_open(db_session, pixel_b, IP, UA, now=T0 + timedelta(minutes=6))
        record_click(db_session, pixel_a, "https://example.com/offer", IP, UA, now=T0 + timedelta(minutes=7))

        db_session.expire_all()
        incremental = db_session.get(Campaign, sent_campaign.campaign_id).stats
        stats = recalculate_campaign_stats(db_session, sent_campaign.campaign_id)

        assert stats == incremental
        assert stats == {"total_sent": 2, "delivered": 0, "opened": 2, "clicked": 1, "bounced": 0, "unsubscribed": 0}

    def test_repairs_drifted_counters(self, db_session, sent_campaign):
        increment_campaign_stat(db_session, sent_campaign.campaign_id, "opened", 40)
        db_session.commit()

        stats = recalculate_campaign_stats(db_session, sent_campaign.campaign_id)

        assert stats["opened"] == 0
        db_session.expire_all()
        assert db_session.get(Campaign, sent_campaign.campaign_id).stats_opened == 0

    def test_counts_clicked_records_not_hits(self, db_session, sent_campaign):
        pixel_a, _ = _tracking_ids(db_session, sent_campaign)
        for path in ("a", "b", "c"):
            record_click(db_session, pixel_a, f"https://example.com/{path}", IP, UA, now=T0 + timedelta(minutes=3))

        assert recalculate_campaign_stats(db_session, sent_campaign.campaign_id)["clicked"] == 1

    def test_is_a_fixed_point(self, db_session, sent_campaign):
        first = recalculate_campaign_stats(db_session, sent_campaign.campaign_id)
        second = recalculate_campaign_stats(db_session, sent_campaign.campaign_id)
        assert first == second

    def test_unknown_campaign(self, db_session):
        with pytest.raises(CampaignNotFoundError):
            recalculate_campaign_stats(db_session, 9999)

    def test_recalculate_all(self, db_session, dispatcher, started_campaign, make_contact):
        started_campaign()
        started_campaign(contacts=[make_contact()])
        dispatcher.poll_due(T0 + timedelta(seconds=1))

        results = recalculate_all_campaigns(db_session)

        assert [r["success"] for r in results] == [True, True]
        assert [r["stats"]["total_sent"] for r in results] == [2, 1]


class TestRecalculateEndpoint:
    """Tests for POST /api/v1/campaigns/{id}/recalculate."""

    def test_returns_camel_case_stats(self, client, db_session, sent_campaign):
        response = client.post(f"/api/v1/campaigns/{sent_campaign.campaign_id}/recalculate")

        assert response.status_code == 200
        assert response.json() == {
            "totalSent": 2, "delivered": 0, "opened": 0, "clicked": 0, "bounced": 0, "unsubscribed": 0,
        }

    def test_unknown_campaign_is_404(self, client):
        response = client.post("/api/v1/campaigns/9999/recalculate")
        assert response.status_code == 404

    def test_recalculate_all_endpoint(self, client, sent_campaign):
        response = client.post("/api/v1/campaigns/recalculate-all")

        assert response.status_code == 200
        body = response.json()
        assert body[0]["campaign_id"] == sent_campaign.campaign_id
        assert body[0]["stats"]["totalSent"] == 2


class TestRepairMissingOpens:
    """Tests for repair_missing_opens."""

    def test_infers_open_before_first_click(self, db_session, sent_campaign):
        pixel_a, _ = _tracking_ids(db_session, sent_campaign)
        clicked_at = T0 + timedelta(hours=2)
        record_click(db_session, pixel_a, "https://example.com/offer", IP, UA, now=clicked_at)
        record_click(db_session, pixel_a, "https://example.com/more", IP, UA, now=clicked_at + timedelta(minutes=1))

        result = repair_missing_opens(db_session)

        assert result == {"fixed_count": 1, "campaigns_updated": [sent_campaign.campaign_id]}
        db_session.expire_all()
        opens = (
            db_session.query(TrackingEvent)
            .join(EmailTracking, EmailTracking.tracking_id == TrackingEvent.tracking_id)
            .filter(EmailTracking.tracking_pixel_id == pixel_a, TrackingEvent.event_type == TrackingEventType.OPENED)
            .all()
        )
        assert len(opens) == 1
        assert opens[0].occurred_at == clicked_at - timedelta(seconds=1)
        assert opens[0].data["source"] == "inferred_from_click"
        assert db_session.get(Campaign, sent_campaign.campaign_id).stats_opened == 1

    def test_idempotent(self, db_session, sent_campaign):
        pixel_a, _ = _tracking_ids(db_session, sent_campaign)
        record_click(db_session, pixel_a, "https://example.com/offer", IP, UA, now=T0 + timedelta(hours=2))

        repair_missing_opens(db_session)
        second = repair_missing_opens(db_session)

        assert second == {"fixed_count": 0, "campaigns_updated": []}
        db_session.expire_all()
        assert db_session.get(Campaign, sent_campaign.campaign_id).stats_opened == 1

    def test_records_with_real_open_untouched(self, db_session, sent_campaign):
        pixel_a, _ = _tracking_ids(db_session, sent_campaign)
        record_open(db_session, pixel_a, IP, UA, now=T0 + timedelta(hours=1))
        record_click(db_session, pixel_a, "https://example.com/offer", IP, UA, now=T0 + timedelta(hours=2))

        assert repair_missing_opens(db_session)["fixed_count"] == 0

    def test_scoped_to_campaign(self, client, db_session, sent_campaign):
        pixel_a, _ = _tracking_ids(db_session, sent_campaign)
        record_click(db_session, pixel_a, "https://example.com/offer", IP, UA, now=T0 + timedelta(hours=2))

        other = client.post("/api/v1/tracking/fix-missing-opens", params={"campaign_id": sent_campaign.campaign_id + 1})
        assert other.json()["fixed_count"] == 0

        response = client.post("/api/v1/tracking/fix-missing-opens", params={"campaign_id": sent_campaign.campaign_id})
        assert response.status_code == 200
        assert response.json() == {"fixed_count": 1, "campaigns_updated": [sent_campaign.campaign_id]}
