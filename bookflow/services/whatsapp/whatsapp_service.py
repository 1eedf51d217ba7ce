# bookflow/services/whatsapp/whatsapp_service.py
"""WhatsApp sending through the Evolution API gateway"""
import logging
from typing import Optional

import httpx

from bookflow.config.tenant import TenantConfig
from bookflow.core.exceptions import MessagingGatewayError
from bookflow.utils.phone import normalize_phone

logger = logging.getLogger(__name__)


class WhatsAppService:
    """Sends text messages through a company's Evolution API instance"""

    def __init__(self, config: TenantConfig, http_client: Optional[httpx.Client] = None):
        self.config = config
        self.http_client = http_client or httpx.Client(
            timeout=config.whatsapp_timeout_seconds,
            follow_redirects=True
        )

    def send_text(self, instance_name: str, phone: str, text: str) -> dict:
        """
        Send a text message.

        Returns {"success": True, "message_id": ...}. Raises MessagingGatewayError
        when the gateway is not configured, unreachable or answers non-2xx.
        """
        if not self.config.evolution_api_url or not self.config.evolution_api_key:
            raise MessagingGatewayError("Evolution API not configured")

        number = normalize_phone(phone)
        url = f"{self.config.evolution_api_url.rstrip('/')}/message/sendText/{instance_name}"

        try:
            response = self.http_client.post(
                url,
                json={"number": number, "text": text},
                headers={
                    "Content-Type": "application/json",
                    "apikey": self.config.evolution_api_key,
                }
            )
        except httpx.TimeoutException:
            raise MessagingGatewayError(f"Timeout sending WhatsApp message to {number}")
        except httpx.RequestError as e:
            raise MessagingGatewayError(f"Request error sending WhatsApp message: {str(e)[:200]}")

        if not 200 <= response.status_code < 300:
            logger.error(f"Evolution API error {response.status_code}: {response.text[:200]}")
            raise MessagingGatewayError(
                f"Evolution API returned HTTP {response.status_code}",
                status_code=response.status_code
            )

        try:
            message_id = (response.json().get("key") or {}).get("id")
        except ValueError:
            message_id = None

        logger.info(f"WhatsApp message sent to {number} via {instance_name}: {message_id}")
        return {"success": True, "message_id": message_id}

    def close(self):
        self.http_client.close()
