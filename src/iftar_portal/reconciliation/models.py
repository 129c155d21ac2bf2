"""Models for gateway payment reconciliation."""

import enum
from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..database import PaymentStatus


# Gateway status -> local payment status; anything unlisted stays pending
GATEWAY_STATUS_MAP: Dict[str, str] = {
    "ACCEPTED": PaymentStatus.SUCCESS.value,
    "REFUSED": PaymentStatus.FAILED.value,
}


def map_gateway_status(status: Optional[str]) -> str:
    """Map a gateway status code to a local payment status."""
    return GATEWAY_STATUS_MAP.get((status or "").strip().upper(), PaymentStatus.PENDING.value)


class MatchStrategy(str, enum.Enum):
    """How a notification was tied to a stored payment."""
    TRANSACTION_ID = "transaction_id"
    API_RESPONSE_ID = "api_response_id"
    SUBSTRING = "substring"


class ReconciliationStatus(str, enum.Enum):
    """Status of a pending-payment sweep."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class GatewayNotification(BaseModel):
    """Body the gateway posts to the notify URL."""
    model_config = ConfigDict(extra="allow")

    cpm_trans_id: Optional[str] = Field(None, description="Transaction id as known by the gateway")
    cpm_site_id: Optional[str] = Field(None, description="Merchant site id")
    status: Optional[str] = Field(None, description="ACCEPTED, REFUSED or an intermediate code")
    operator_id: Optional[str] = None
    api_response_id: Optional[str] = None
    payment_method: Optional[str] = None
    amount: Optional[int] = None
    payment_date: Optional[str] = None

    @field_validator(
        "cpm_trans_id", "cpm_site_id", "status", "operator_id", "api_response_id",
        mode="before",
    )
    @classmethod
    def _coerce_str(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> Optional[int]:
        if value is None or value == "":
            return None
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError) as e:
            raise ValueError(f"amount must be a finite number, got {value!r}") from e


class ReconciliationOutcome(BaseModel):
    """Result of applying one notification."""
    success: bool = True
    transaction_id: str
    payment_id: str
    participant_id: str
    previous_status: str
    new_status: str
    strategy: MatchStrategy
    already_processed: bool = False
    qr_code_issued: bool = False
    amount_mismatch: bool = False
    message: str = ""

    def to_response(self) -> Dict[str, Any]:
        """Body returned to the gateway."""
        return {
            "success": self.success,
            "message": self.message,
            "transaction_id": self.transaction_id,
            "payment_id": self.payment_id,
            "new_status": self.new_status,
        }


class SweepItem(BaseModel):
    """One pending payment examined by a sweep."""
    payment_id: str
    transaction_id: str
    previous_status: str
    gateway_status: Optional[str] = None
    new_status: Optional[str] = None
    error: Optional[str] = None


class SweepReport(BaseModel):
    """Outcome of re-checking pending payments against the gateway."""
    id: str = Field(..., description="Report ID")
    status: ReconciliationStatus = Field(default=ReconciliationStatus.PENDING)
    provider: str = Field(default="cinetpay")
    older_than_minutes: int = Field(default=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    total_checked: int = 0
    total_updated: int = 0
    total_still_pending: int = 0
    total_errors: int = 0

    items: List[SweepItem] = Field(default_factory=list)
    error_message: Optional[str] = None

    def to_summary_dict(self) -> Dict[str, Any]:
        """Return a summary of the report without per-payment records."""
        return {
            "id": self.id,
            "status": self.status.value,
            "provider": self.provider,
            "older_than_minutes": self.older_than_minutes,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "statistics": {
                "total_checked": self.total_checked,
                "total_updated": self.total_updated,
                "total_still_pending": self.total_still_pending,
                "total_errors": self.total_errors,
            },
            "error_message": self.error_message,
        }

    def to_full_dict(self) -> Dict[str, Any]:
        """Return the complete report including every examined payment."""
        result = self.to_summary_dict()
        result["items"] = [item.model_dump() for item in self.items]
        return result
