"""Mock email sending adapter for testing."""
from typing import List, Dict, Any, Optional, Set
import time
import uuid
from campaign_engine.services.adapters.base import EmailSendAdapter


class MockEmailSendAdapter(EmailSendAdapter):
    """Mock adapter that simulates email sending for testing.

    ``fail_for`` makes sends to the listed addresses fail, ``delay`` makes
    every send sleep before returning (used to exercise transport timeouts).
    """

    def __init__(self, fail_for: Optional[Set[str]] = None, delay: float = 0.0):
        self.sent_emails = []  # Store sent emails for verification
        self.fail_for = set(fail_for or ())
        self.delay = delay

    def test_connection(self) -> bool:
        """Mock always returns successful connection."""
        return True

    def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
        from_name: Optional[str] = None,
        tracking_pixel_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Simulate sending a single email."""
        if self.delay:
            time.sleep(self.delay)

        if to_email in self.fail_for:
            return {
                "success": False,
                "message_id": None,
                "error": f"Mock transport rejected {to_email}"
            }

        message_id = f"mock-{uuid.uuid4()}"

        email_record = {
            "message_id": message_id,
            "to": to_email,
            "subject": subject,
            "body_html": body_html,
            "body_text": body_text,
            "from_name": from_name,
            "tracking_pixel_id": tracking_pixel_id,
            "sent_at": time.time()
        }
        self.sent_emails.append(email_record)

        return {
            "success": True,
            "message_id": message_id,
            "error": None
        }

    def get_sent_emails(self) -> List[Dict[str, Any]]:
        """Return all sent emails (for testing)."""
        return self.sent_emails

    def clear_sent_emails(self):
        """Clear sent emails (for testing)."""
        self.sent_emails = []
