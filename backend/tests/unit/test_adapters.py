"""Unit tests for transport adapters."""
import pytest
from campaign_engine.services.adapters.email_sending.mock import MockEmailSendAdapter
from campaign_engine.services.adapters.email_sending.smtp import SMTPAdapter


class TestMockEmailSendAdapter:
    """Tests for MockEmailSendAdapter."""

    def test_test_connection(self):
        """Test connection should always succeed for mock."""
        adapter = MockEmailSendAdapter()
        assert adapter.test_connection() is True

    def test_send_email_success(self):
        """Send email should return success with a message id."""
        adapter = MockEmailSendAdapter()
        result = adapter.send_email(
            to_email="test@example.com",
            subject="Test Subject",
            body_html="<p>Test body</p>",
            tracking_pixel_id="abc123",
        )
        assert result["success"] is True
        assert result["message_id"] is not None
        assert result["error"] is None

    def test_sent_emails_are_recorded(self):
        """Sent emails should be stored with their tracking id."""
        adapter = MockEmailSendAdapter()
        adapter.send_email(to_email="a@example.com", subject="S", body_html="<p>x</p>", tracking_pixel_id="t1")
        sent = adapter.get_sent_emails()
        assert len(sent) == 1
        assert sent[0]["to"] == "a@example.com"
        assert sent[0]["tracking_pixel_id"] == "t1"

    def test_fail_for_rejects_address(self):
        """Addresses in fail_for should fail without being recorded."""
        adapter = MockEmailSendAdapter(fail_for={"bad@example.com"})
        result = adapter.send_email(to_email="bad@example.com", subject="S", body_html="<p>x</p>")
        assert result["success"] is False
        assert "bad@example.com" in result["error"]
        assert adapter.get_sent_emails() == []

    def test_clear_sent_emails(self):
        """Clear should empty the sent list."""
        adapter = MockEmailSendAdapter()
        adapter.send_email(to_email="a@example.com", subject="S", body_html="<p>x</p>")
        adapter.clear_sent_emails()
        assert adapter.get_sent_emails() == []


class TestSMTPAdapter:
    """Tests for SMTPAdapter without a configured server."""

    @pytest.fixture
    def adapter(self):
        adapter = SMTPAdapter(timeout=1)
        adapter.host = ""
        adapter.user = ""
        adapter.password = ""
        return adapter

    def test_unconfigured_connection_fails(self, adapter):
        assert adapter.test_connection() is False

    def test_unconfigured_send_reports_failure(self, adapter):
        """Unconfigured SMTP reports failure instead of raising."""
        result = adapter.send_email(to_email="a@example.com", subject="S", body_html="<p>x</p>")
        assert result["success"] is False
        assert result["error"] == "SMTP not configured"
