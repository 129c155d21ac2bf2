"""Payment gateway connectors."""

from typing import Optional

from ..config import PortalConfig
from .base import (
    GatewayConnector,
    Customer,
    PaymentInitRequest,
    PaymentInitResponse,
    PaymentCheckResponse,
    PAYMENT_METHOD_CHANNELS,
    channel_for_method,
    format_local_phone,
)
from .cinetpay_connector import CinetPayConnector
from .simulator_connector import (
    SimulatorConnector,
    SimulatorConfig,
    SimulatorScenario,
    SimulatedTransaction,
)


def get_connector(name: str = "cinetpay", config: Optional[PortalConfig] = None) -> GatewayConnector:
    """Build a connector by name."""
    if name == "cinetpay":
        return CinetPayConnector(config)
    if name == "simulator":
        site_id = (config or PortalConfig.from_env()).cinetpay_site_id
        return SimulatorConnector(SimulatorConfig(site_id=site_id))
    raise ValueError(f"Unsupported gateway connector: {name}")


__all__ = [
    # Base classes and models
    "GatewayConnector",
    "Customer",
    "PaymentInitRequest",
    "PaymentInitResponse",
    "PaymentCheckResponse",
    "PAYMENT_METHOD_CHANNELS",
    "channel_for_method",
    "format_local_phone",
    "get_connector",
    # Connectors
    "CinetPayConnector",
    "SimulatorConnector",
    "SimulatorConfig",
    "SimulatorScenario",
    "SimulatedTransaction",
]
