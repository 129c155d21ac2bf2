"""CinetPay checkout connector."""

import logging
from typing import Dict, Any, Optional

import httpx

from ..config import PortalConfig
from ..exceptions import GatewayError
from .base import (
    GatewayConnector,
    PaymentInitRequest,
    PaymentInitResponse,
    PaymentCheckResponse,
    channel_for_method,
    format_local_phone,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0


class CinetPayConnector(GatewayConnector):
    """
    Talks to the CinetPay v2 checkout API.

    A shared ``httpx.AsyncClient`` can be injected; otherwise a short-lived
    client is opened per call.
    """

    name = "cinetpay"

    def __init__(
        self,
        config: Optional[PortalConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.config = config or PortalConfig.from_env()
        self._client = client
        self.timeout = timeout

    def _credentials(self) -> Dict[str, str]:
        if not self.config.cinetpay_api_key or not self.config.cinetpay_site_id:
            raise GatewayError("CinetPay credentials are not configured")
        return {
            "apikey": self.config.cinetpay_api_key,
            "site_id": self.config.cinetpay_site_id,
        }

    def build_payload(self, request: PaymentInitRequest) -> Dict[str, Any]:
        customer = request.customer
        return {
            **self._credentials(),
            "transaction_id": request.transaction_id,
            "amount": request.amount,
            "currency": request.currency,
            "description": request.description,
            "notify_url": request.notify_url,
            "return_url": request.return_url,
            "channels": channel_for_method(request.payment_method),
            "type": "WEB",
            "customer_name": f"{customer.first_name} {customer.last_name}",
            "customer_surname": customer.last_name,
            "customer_email": customer.email,
            "customer_phone_number": format_local_phone(customer.phone_number),
            "customer_address": "Adresse non fournie",
            "customer_city": customer.city,
            "customer_country": customer.country,
            "customer_state": customer.country,
            "customer_zip_code": "00000",
            "metadata": request.metadata or "",
        }

    async def _post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"CinetPay request to {url} failed: {e}")
            raise GatewayError(f"CinetPay unreachable: {e}") from e

        if response.status_code >= 400:
            logger.error(f"CinetPay returned HTTP {response.status_code}: {response.text}")
            raise GatewayError(
                f"CinetPay HTTP error {response.status_code}",
                {"body": response.text[:500]},
            )
        try:
            return response.json()
        except ValueError as e:
            raise GatewayError("CinetPay returned a non-JSON response") from e

    async def initiate(self, request: PaymentInitRequest) -> PaymentInitResponse:
        payload = self.build_payload(request)
        logger.info(
            f"Initiating CinetPay payment {request.transaction_id} "
            f"for {request.amount} {request.currency} via {payload['channels']}"
        )
        data = await self._post(self.config.cinetpay_api_url, payload)

        body = data.get("data") or {}
        if not body.get("payment_token") or not body.get("payment_url"):
            logger.error(f"Malformed CinetPay response for {request.transaction_id}: {data}")
            raise GatewayError(
                "Réponse invalide de CinetPay",
                {"code": data.get("code"), "description": data.get("description")},
            )

        return PaymentInitResponse(
            code=str(data.get("code", "")),
            message=data.get("message"),
            payment_token=body["payment_token"],
            payment_url=body["payment_url"],
            api_response_id=data.get("api_response_id") or None,
            raw_provider_response=data,
        )

    async def check(self, transaction_id: str) -> PaymentCheckResponse:
        payload = {**self._credentials(), "transaction_id": transaction_id}
        data = await self._post(self.config.cinetpay_check_url, payload)
        body = data.get("data") or {}

        return PaymentCheckResponse(
            transaction_id=transaction_id,
            status=str(body.get("status") or "PENDING").upper(),
            operator_id=body.get("operator_id"),
            payment_method=body.get("payment_method"),
            payment_date=body.get("payment_date"),
            amount=self._parse_amount(body.get("amount")),
            raw_provider_response=data,
        )

    @staticmethod
    def _parse_amount(amount: Any) -> Optional[int]:
        if amount in (None, ""):
            return None
        try:
            return int(float(amount))
        except (TypeError, ValueError, OverflowError) as e:
            raise GatewayError(f"CinetPay returned an invalid amount: {amount!r}", {"amount": str(amount)}) from e
