"""Transport clients for the email-send and SMS-send APIs."""

import logging
from typing import Dict, Any, Optional

import httpx

from ..config import PortalConfig
from ..exceptions import NotificationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class EmailSender:
    """
    Sends a template email: ``send(template_id, params)``.

    The template itself lives with the email provider; only the template id
    and the parameter bag travel over the wire.
    """

    def __init__(
        self,
        config: Optional[PortalConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.config = config or PortalConfig.from_env()
        self._client = client
        self.timeout = timeout

    async def send(self, template_id: str, params: Dict[str, Any]) -> None:
        """Send one email.

        Args:
            template_id: Provider-side template identifier.
            params: Values substituted into the template; must contain ``to_email``.

        Raises:
            NotificationError: If the sender is not configured or the API fails.
        """
        if not self.config.email_service_id or not self.config.email_public_key:
            raise NotificationError("Email sender is not configured")
        if not params.get("to_email"):
            raise NotificationError("Missing recipient email")

        payload = {
            "service_id": self.config.email_service_id,
            "template_id": template_id,
            "user_id": self.config.email_public_key,
            "template_params": params,
        }
        try:
            if self._client is not None:
                response = await self._client.post(self.config.email_api_url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.config.email_api_url, json=payload)
        except httpx.HTTPError as e:
            raise NotificationError(f"Email API unreachable: {e}") from e

        if response.status_code >= 400:
            raise NotificationError(
                f"Email API returned HTTP {response.status_code}",
                {"body": response.text[:500]},
            )
        logger.info(f"Sent email template {template_id} to {params['to_email']}")


class SmsSender:
    """Sends a plain-text SMS through the configured HTTP API."""

    def __init__(
        self,
        config: Optional[PortalConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.config = config or PortalConfig.from_env()
        self._client = client
        self.timeout = timeout

    async def send(self, phone_number: str, message: str) -> None:
        """Send one SMS.

        Raises:
            NotificationError: If the sender is not configured or the API fails.
        """
        if not self.config.sms_api_url:
            raise NotificationError("SMS sender is not configured")
        if not phone_number:
            raise NotificationError("Missing recipient phone number")

        headers = {}
        if self.config.sms_api_token:
            headers["Authorization"] = f"Bearer {self.config.sms_api_token}"
        payload = {
            "from": self.config.sms_sender,
            "to": phone_number.replace(" ", ""),
            "message": message,
        }
        try:
            if self._client is not None:
                response = await self._client.post(self.config.sms_api_url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.config.sms_api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise NotificationError(f"SMS API unreachable: {e}") from e

        if response.status_code >= 400:
            raise NotificationError(
                f"SMS API returned HTTP {response.status_code}",
                {"body": response.text[:500]},
            )
        logger.info(f"Sent SMS to {payload['to']}")
