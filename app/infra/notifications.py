"""
Outbound patient notifications.

Notifier is the delivery boundary used by the waitlist cascade, reminders
and the inbound turn handler. WhatsAppNotifier sends text messages through
the WhatsApp Business Cloud API.

Delivery is best-effort: send() returns False on failure instead of raising.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from app.config import get_settings
from app.core.scheduling.dates import mask_phone

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096


def truncate_message(text: str) -> str:
    """Fit a message into the channel limit."""
    if len(text) <= MAX_MESSAGE_LENGTH:
        return text
    return text[: MAX_MESSAGE_LENGTH - 6] + "..."


class Notifier(ABC):
    """Delivers a text to a channel identity (phone number)."""

    @abstractmethod
    async def send(self, identity: str, text: str) -> bool:
        """Send text.

        Returns:
            True if the channel accepted the message
        """
        ...


class WhatsAppNotifier(Notifier):
    """
    HTTP client for the WhatsApp Business Cloud API.

    POST {api_url}/{phone_number_id}/messages with a bearer token.
    """

    def __init__(
        self,
        phone_number_id: Optional[str] = None,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize notifier.

        Args:
            phone_number_id: Sender phone number id (defaults to settings)
            access_token: Cloud API token (defaults to settings)
            base_url: Graph API base URL (defaults to settings)
            timeout: Request timeout in seconds
        """
        settings = get_settings()
        self.phone_number_id = phone_number_id or settings.whatsapp_phone_number_id
        self.access_token = access_token or settings.whatsapp_access_token
        self.base_url = base_url or settings.whatsapp_api_url
        self.timeout = timeout or settings.notification_timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def send(self, identity: str, text: str) -> bool:
        if not self.phone_number_id or not self.access_token:
            logger.warning("WhatsApp credentials not configured, message not sent")
            return False

        payload = {
            "messaging_product": "whatsapp",
            # Cloud API expects the number without "+"
            "to": identity.lstrip("+"),
            "type": "text",
            "text": {"body": truncate_message(text)},
        }

        client = await self._get_client()
        try:
            response = await client.post(
                f"/{self.phone_number_id}/messages",
                json=payload,
                headers={"Authorization": f"Bearer {self.access_token}"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"WhatsApp delivery to {mask_phone(identity)} failed: {e}")
            return False

        logger.info(f"WhatsApp message sent to {mask_phone(identity)}")
        return True
