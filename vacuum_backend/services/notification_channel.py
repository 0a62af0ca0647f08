"""
WhatsApp Cloud API channel for admin alerts.

When the channel is not configured (no token, phone number id or admin
phone) messages are only logged and reported as delivered, so local and test
environments never need credentials.
"""
import logging
from typing import Optional

import httpx

from vacuum_backend.config import config
from vacuum_backend.exceptions import NotificationDeliveryError

logger = logging.getLogger(__name__)


class WhatsAppChannel:
    """
    Thin client over the Graph API messages endpoint.

    Attributes:
        api_url: Graph API base URL (with version)
        phone_number_id: Sender phone number id
        default_recipient: Admin phone used when send() gets no recipient
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        access_token: Optional[str] = None,
        phone_number_id: Optional[str] = None,
        default_recipient: Optional[str] = None,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_url = (api_url if api_url is not None else config.WHATSAPP_API_URL).rstrip("/")
        self.access_token = access_token if access_token is not None else config.WHATSAPP_ACCESS_TOKEN
        self.phone_number_id = phone_number_id if phone_number_id is not None else config.WHATSAPP_PHONE_NUMBER_ID
        self.default_recipient = default_recipient if default_recipient is not None else config.ADMIN_PHONE
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token and self.phone_number_id and self.default_recipient)

    async def send(self, message: str, recipient: Optional[str] = None) -> None:
        """
        Deliver a text message.

        Args:
            message: Message body
            recipient: Phone number (defaults to the admin phone)

        Raises:
            NotificationDeliveryError: Network failure or non-2xx response
        """
        if not self.is_configured:
            logger.info(f"WhatsApp not configured, alert logged only: {message}")
            return

        to = recipient or self.default_recipient
        url = f"{self.api_url}/{self.phone_number_id}/messages"
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": message}
        }
        headers = {"Authorization": f"Bearer {self.access_token}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(str(e)) from e

        if response.status_code >= 300:
            raise NotificationDeliveryError(
                f"WhatsApp API returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code
            )

        logger.info(f"✅ WhatsApp message delivered to {to}")
