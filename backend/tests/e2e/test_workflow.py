"""End-to-end tests for the complete campaign workflow."""
import re
from datetime import datetime, timedelta
from urllib.parse import parse_qs, urlparse

from campaign_engine.db.models.delivery import Email, EmailStatus
from campaign_engine.services.sequencing import lifecycle
from campaign_engine.services.tracking.reconciler import recalculate_campaign_stats

T0 = datetime(2026, 1, 5, 9, 0, 0)
BROWSER = {"User-Agent": "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Mobile/15E148"}


class TestCompleteWorkflow:
    """Start, dispatch, engagement and reconciliation of one campaign."""

    def test_two_contact_single_step_campaign(self, client, db_session, dispatcher, make_contact, make_campaign):
        contact_a, contact_b = make_contact(), make_contact()
        campaign = make_campaign([contact_a, contact_b], steps=[{"delay_hours": 0}])

        # Start at T0: both records queued for T0
        lifecycle.start_campaign(db_session, campaign.campaign_id, T0)
        emails = db_session.query(Email).filter(Email.campaign_id == campaign.campaign_id).order_by(Email.contact_id).all()
        assert [e.contact_id for e in emails] == [contact_a.contact_id, contact_b.contact_id]
        assert all(e.status == EmailStatus.QUEUED and e.scheduled_at == T0 for e in emails)

        # One poll cycle sends both
        summary = dispatcher.poll_due(T0 + timedelta(seconds=1))
        assert summary["sent"] == 2
        assert recalculate_campaign_stats(db_session, campaign.campaign_id)["total_sent"] == 2

        # Pixel hit for contact A, then a duplicate
        pixel_a = emails[0].tracking_pixel_id
        assert client.get(f"/tracking/pixel/{pixel_a}", headers=BROWSER).status_code == 200
        db_session.expire_all()
        campaign_stats = lifecycle.get_campaign(db_session, campaign.campaign_id).stats
        assert campaign_stats["opened"] == 1

        client.get(f"/tracking/pixel/{pixel_a}", headers=BROWSER)
        db_session.expire_all()
        assert lifecycle.get_campaign(db_session, campaign.campaign_id).stats == campaign_stats

        response = client.post(f"/api/v1/campaigns/{campaign.campaign_id}/recalculate")
        assert response.json() == {
            "totalSent": 2, "delivered": 0, "opened": 1, "clicked": 0, "bounced": 0, "unsubscribed": 0,
        }

    def test_workflow_through_the_api(self, client, mail_adapter):
        contact_ids = []
        for address in ("ana@example.com", "ben@example.com"):
            response = client.post("/api/v1/contacts", json={"owner_id": 7, "email": address})
            assert response.status_code == 201
            contact_ids.append(response.json()["contact_id"])

        template = client.post("/api/v1/templates", json={
            "owner_id": 7,
            "name": "Welcome",
            "subject": "Welcome aboard",
            "html_content": '<html><body><p>Hi</p><a href="https://example.com/docs">Docs</a></body></html>',
        })
        assert template.status_code == 201

        created = client.post("/api/v1/campaigns", json={
            "owner_id": 7,
            "name": "Onboarding",
            "template_id": template.json()["template_id"],
            "contact_ids": contact_ids,
            "steps": [{"delay_hours": 0}],
        })
        campaign_id = created.json()["campaign_id"]

        assert client.post(f"/api/v1/campaigns/{campaign_id}/start").json()["status"] == "sending"

        poll = client.post("/api/v1/dispatch/poll")
        assert poll.status_code == 200
        assert poll.json()["candidates"] == 2
        assert poll.json()["outcomes"]["sent"] == 2

        # The sent body carries the pixel and a rewritten link
        sent = mail_adapter.sent_emails[0]
        html = sent["body_html"]
        assert f"/tracking/pixel/{sent['tracking_pixel_id']}" in html
        click_url = re.search(r'href="([^"]*/tracking/click/[^"]*)"', html).group(1)
        parsed = urlparse(click_url.replace("&amp;", "&"))
        assert parse_qs(parsed.query)["url"] == ["https://example.com/docs"]

        click = client.get(f"{parsed.path}?{parsed.query}", headers=BROWSER, follow_redirects=False)
        assert click.status_code == 302
        assert click.headers["location"] == "https://example.com/docs"

        repaired = client.post("/api/v1/tracking/fix-missing-opens", params={"campaign_id": campaign_id})
        assert repaired.json()["fixed_count"] == 1

        stats = client.post(f"/api/v1/campaigns/{campaign_id}/recalculate").json()
        assert stats["totalSent"] == 2
        assert stats["clicked"] == 1
        assert stats["opened"] == 1

        status = client.get(f"/api/v1/campaigns/{campaign_id}").json()["status"]
        assert status == "completed"
