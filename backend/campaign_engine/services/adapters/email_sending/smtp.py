"""SMTP email sending adapter."""
from typing import Dict, Any, Optional
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
import uuid
from campaign_engine.services.adapters.base import EmailSendAdapter
from campaign_engine.core.config import settings
from campaign_engine.services.tracking.links import generate_unsubscribe_url


class SMTPAdapter(EmailSendAdapter):
    """Adapter for sending emails via SMTP."""

    def __init__(self, timeout: Optional[int] = None):
        self.host = settings.SMTP_HOST
        self.port = settings.SMTP_PORT
        self.user = settings.SMTP_USER
        self.password = settings.SMTP_PASSWORD
        self.default_from_name = settings.SMTP_FROM_NAME
        self.timeout = timeout or settings.TRANSPORT_TIMEOUT_SECONDS

    def _configured(self) -> bool:
        return all([self.host, self.user, self.password])

    def test_connection(self) -> bool:
        """Test SMTP connection."""
        if not self._configured():
            return False

        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as server:
                server.starttls()
                server.login(self.user, self.password)
                return True
        except (smtplib.SMTPException, OSError):
            return False

    def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
        from_name: Optional[str] = None,
        tracking_pixel_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Send a single email via SMTP."""
        if not self._configured():
            return {
                "success": False,
                "message_id": None,
                "error": "SMTP not configured"
            }

        message_id = f"{uuid.uuid4()}@{self.host}"
        sender_name = from_name or self.default_from_name

        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = f"{sender_name} <{self.user}>" if sender_name else self.user
            msg["To"] = to_email
            msg["Message-ID"] = f"<{message_id}>"
            if tracking_pixel_id:
                # Lets bounce/delivery callbacks be mapped back to the tracking record
                msg["X-Tracking-ID"] = tracking_pixel_id
                msg["List-Unsubscribe"] = f"<{generate_unsubscribe_url(tracking_pixel_id)}>"

            if body_text:
                msg.attach(MIMEText(body_text, "plain"))
            msg.attach(MIMEText(body_html or "", "html"))

            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls()
                server.login(self.user, self.password)
                server.send_message(msg)

            return {
                "success": True,
                "message_id": message_id,
                "error": None
            }

        except (smtplib.SMTPException, OSError) as e:
            return {
                "success": False,
                "message_id": None,
                "error": str(e)
            }
