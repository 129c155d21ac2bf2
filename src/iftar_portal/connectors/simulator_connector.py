"""Simulator connector for exercising payment flows without calling the gateway."""

import uuid
import asyncio
import random
import logging
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..exceptions import GatewayError
from .base import (
    GatewayConnector,
    PaymentInitRequest,
    PaymentInitResponse,
    PaymentCheckResponse,
    channel_for_method,
)

logger = logging.getLogger(__name__)


class SimulatorScenario(str, Enum):
    """Predefined outcomes for a simulated checkout."""
    ACCEPTED = "ACCEPTED"
    REFUSED = "REFUSED"
    PENDING = "PENDING"


@dataclass
class SimulatedTransaction:
    """In-memory representation of a simulated checkout."""
    transaction_id: str
    api_response_id: str
    amount: int
    currency: str
    channel: str
    status: str = SimulatorScenario.PENDING.value
    operator_id: Optional[str] = None
    force_refusal: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)
    metadata: Optional[str] = None


@dataclass
class SimulatorConfig:
    """Configuration for simulator behavior."""
    success_rate: float = 1.0  # share of settled checkouts that are ACCEPTED
    unreachable_rate: float = 0.0  # share of calls failing like a network error
    delay_ms: int = 0  # simulated response delay in ms
    site_id: str = "105889251"
    seed: Optional[int] = None  # random seed for reproducibility


class SimulatorConnector(GatewayConnector):
    """
    Simulator connector standing in for the checkout gateway.

    Features:
    - In-memory transaction storage
    - Configurable acceptance and outage rates
    - Builds notification payloads the way the gateway posts them
    """

    name = "simulator"

    # Phone numbers forcing a given outcome when the checkout settles
    PHONE_REFUSED = "0700000001"
    PHONE_UNREACHABLE = "0700000002"

    def __init__(self, config: Optional[SimulatorConfig] = None):
        """Initialize the simulator with optional configuration."""
        self.config = config or SimulatorConfig()
        self._transactions: Dict[str, SimulatedTransaction] = {}
        self._rng = random.Random(self.config.seed)
        logger.info("SimulatorConnector initialized")

    def _generate_id(self) -> str:
        return f"sim_{uuid.uuid4().hex[:24]}"

    async def _apply_delay(self) -> None:
        if self.config.delay_ms > 0:
            await asyncio.sleep(self.config.delay_ms / 1000.0)

    def _check_reachable(self) -> None:
        if self._rng.random() < self.config.unreachable_rate:
            raise GatewayError("Simulated gateway outage")

    async def initiate(self, request: PaymentInitRequest) -> PaymentInitResponse:
        """Open a simulated checkout."""
        await self._apply_delay()
        if request.customer.phone_number.endswith(self.PHONE_UNREACHABLE):
            raise GatewayError("Simulated gateway outage")
        self._check_reachable()

        api_response_id = self._generate_id()
        txn = SimulatedTransaction(
            transaction_id=request.transaction_id,
            api_response_id=api_response_id,
            amount=request.amount,
            currency=request.currency,
            channel=channel_for_method(request.payment_method),
            metadata=request.metadata,
        )
        if request.customer.phone_number.endswith(self.PHONE_REFUSED):
            txn.force_refusal = True
        self._transactions[request.transaction_id] = txn

        return PaymentInitResponse(
            code="201",
            message="CREATED",
            payment_token=uuid.uuid4().hex,
            payment_url=f"https://checkout.simulator.local/pay/{request.transaction_id}",
            api_response_id=api_response_id,
            raw_provider_response={"simulator": True},
        )

    def settle(self, transaction_id: str, scenario: Optional[SimulatorScenario] = None) -> SimulatedTransaction:
        """Settle a pending checkout as the participant completing it would.

        Args:
            transaction_id: Local transaction id used at initiation.
            scenario: Forced outcome; drawn from success_rate when None.

        Returns:
            The updated SimulatedTransaction.

        Raises:
            KeyError: If the transaction was never initiated.
        """
        txn = self._transactions[transaction_id]
        if scenario is None:
            if txn.force_refusal or self._rng.random() >= self.config.success_rate:
                scenario = SimulatorScenario.REFUSED
            else:
                scenario = SimulatorScenario.ACCEPTED
        txn.status = scenario.value
        txn.operator_id = f"OP{self._rng.randint(10**9, 10**10 - 1)}"
        return txn

    async def check(self, transaction_id: str) -> PaymentCheckResponse:
        """Report the current state of a simulated checkout."""
        await self._apply_delay()
        self._check_reachable()
        txn = self._transactions.get(transaction_id)
        if txn is None:
            raise GatewayError(f"Unknown transaction {transaction_id}")
        return PaymentCheckResponse(
            transaction_id=transaction_id,
            status=txn.status,
            operator_id=txn.operator_id,
            payment_method=txn.channel,
            amount=txn.amount,
            raw_provider_response={"simulator": True},
        )

    def build_notification(self, transaction_id: str) -> Dict[str, Any]:
        """Build the JSON body the gateway posts to the notify URL."""
        txn = self._transactions[transaction_id]
        return {
            "cpm_trans_id": txn.transaction_id,
            "cpm_site_id": self.config.site_id,
            "status": txn.status,
            "operator_id": txn.operator_id,
            "api_response_id": txn.api_response_id,
            "payment_method": txn.channel,
            "amount": txn.amount,
            "payment_date": datetime.utcnow().isoformat(),
        }

    def get_transaction(self, transaction_id: str) -> Optional[SimulatedTransaction]:
        return self._transactions.get(transaction_id)

    def clear_transactions(self) -> None:
        self._transactions.clear()

    def health_check(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "connector": self.name,
            "transactions": len(self._transactions),
        }
