import re
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field


# Payment methods offered on the checkout form mapped to gateway channels
PAYMENT_METHOD_CHANNELS: Dict[str, str] = {
    "MOBILE_MONEY": "ALL",
    "wave": "WAVE",
    "orange_money": "OM",
    "moov_money": "MOOV",
    "mtn_money": "MTN",
    "CREDIT_CARD": "CREDIT_CARD",
}


def channel_for_method(payment_method: str) -> str:
    return PAYMENT_METHOD_CHANNELS.get(payment_method, "ALL")


def format_local_phone(phone_number: str) -> str:
    """Strip formatting and the 225 country code: '+225 07 01 23 45 67' -> '0701234567'."""
    if not phone_number:
        return ""
    digits = re.sub(r"\D", "", phone_number)
    if digits.startswith("225"):
        digits = digits[3:]
    if 10 < len(digits) <= 13:
        digits = digits[-10:]
    return digits


class Customer(BaseModel):
    first_name: str
    last_name: str
    email: str
    phone_number: str
    city: str = "Abidjan"
    country: str = "CI"


class PaymentInitRequest(BaseModel):
    transaction_id: str
    amount: int = Field(..., gt=0)
    currency: str = "XOF"
    description: str
    payment_method: str = "MOBILE_MONEY"
    notify_url: str
    return_url: str
    customer: Customer
    metadata: Optional[str] = None


class PaymentInitResponse(BaseModel):
    code: str
    message: Optional[str] = None
    payment_token: str
    payment_url: str
    api_response_id: Optional[str] = None
    raw_provider_response: Optional[Dict[str, Any]] = None


class PaymentCheckResponse(BaseModel):
    transaction_id: str
    status: str  # ACCEPTED|REFUSED|PENDING|... as reported by the gateway
    operator_id: Optional[str] = None
    payment_method: Optional[str] = None
    payment_date: Optional[str] = None
    amount: Optional[int] = None
    raw_provider_response: Optional[Dict[str, Any]] = None


class GatewayConnector(ABC):
    """
    Minimal gateway interface. Implementations only talk to the network
    inside these coroutines and raise GatewayError on failure.
    """

    name: str = "gateway"

    @abstractmethod
    async def initiate(self, request: PaymentInitRequest) -> PaymentInitResponse:
        """
        Open a checkout session and return the URL the participant is sent to.
        """
        raise NotImplementedError

    @abstractmethod
    async def check(self, transaction_id: str) -> PaymentCheckResponse:
        """
        Ask the gateway for the current outcome of a transaction.
        """
        raise NotImplementedError

    def health_check(self) -> Dict[str, Any]:
        return {"ok": True, "connector": self.name}
