"""Exception hierarchy shared by the services and mapped to HTTP errors by the API."""

from typing import Any, Dict, List, Optional


class PortalError(Exception):
    """Base class for all portal errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": False, "error": self.message}
        if self.details:
            data.update(self.details)
        return data


class ValidationError(PortalError, ValueError):
    """Missing or malformed input."""

    status_code = 400


class SiteMismatchError(ValidationError):
    """A gateway notification was addressed to another site id."""

    def __init__(self, site_id: str):
        super().__init__("Site ID non reconnu", {"site_id": site_id})
        self.site_id = site_id


class NotFoundError(PortalError, LookupError):
    """A participant, payment or code could not be located."""

    status_code = 404


class PaymentNotFoundError(NotFoundError):
    """No stored payment matched a gateway transaction id."""

    def __init__(self, transaction_id: str, attempted: Optional[List[str]] = None):
        attempted = attempted or [transaction_id]
        super().__init__(
            f"Paiement non trouvé pour la transaction {transaction_id}",
            {"transaction_id": transaction_id, "attempted_ids": attempted},
        )
        self.transaction_id = transaction_id
        self.attempted = attempted


class InvalidTransitionError(PortalError):
    """A record is already in a terminal state, or a duplicate request was made."""

    status_code = 409


class AuthenticationError(PortalError):
    """Bad admin credentials or token."""

    status_code = 401


class ExternalServiceError(PortalError):
    """A third-party service failed."""

    status_code = 502


class GatewayError(ExternalServiceError):
    """The payment gateway rejected or failed a request."""


class NotificationError(ExternalServiceError):
    """An email or SMS could not be delivered."""


class StorageError(ExternalServiceError):
    """An uploaded file could not be stored."""
