"""Email sending adapters package."""
from campaign_engine.core.config import settings
from campaign_engine.services.adapters.base import EmailSendAdapter
from campaign_engine.services.adapters.email_sending.mock import MockEmailSendAdapter
from campaign_engine.services.adapters.email_sending.smtp import SMTPAdapter


def get_email_adapter() -> EmailSendAdapter:
    """Build the transport configured by EMAIL_SEND_MODE."""
    if settings.EMAIL_SEND_MODE == "smtp":
        return SMTPAdapter()
    return MockEmailSendAdapter()


__all__ = ["MockEmailSendAdapter", "SMTPAdapter", "get_email_adapter"]
