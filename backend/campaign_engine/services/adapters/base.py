"""Base adapter interfaces for external collaborators."""
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional


class BaseAdapter(ABC):
    """Base class for all adapters."""

    @abstractmethod
    def test_connection(self) -> bool:
        """Test connection to the provider."""
        pass


class EmailSendAdapter(BaseAdapter):
    """Base adapter for the mail transport."""

    @abstractmethod
    def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
        from_name: Optional[str] = None,
        tracking_pixel_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Send a single email.

        Returns dict with keys:
        - success: bool
        - message_id: Provider message ID
        - error: Error message if failed
        """
        pass
