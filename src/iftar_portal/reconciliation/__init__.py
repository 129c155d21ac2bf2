"""Gateway payment reconciliation: webhook handling and pending sweeps."""

from .models import (
    GATEWAY_STATUS_MAP,
    GatewayNotification,
    MatchStrategy,
    ReconciliationOutcome,
    ReconciliationStatus,
    SweepItem,
    SweepReport,
    map_gateway_status,
)
from .matcher import MatchResult, PaymentMatcher, alternate_ids
from .report import ReportGenerator
from .service import ReconciliationService

__all__ = [
    "GATEWAY_STATUS_MAP",
    "GatewayNotification",
    "MatchStrategy",
    "ReconciliationOutcome",
    "ReconciliationStatus",
    "SweepItem",
    "SweepReport",
    "map_gateway_status",
    "MatchResult",
    "PaymentMatcher",
    "alternate_ids",
    "ReportGenerator",
    "ReconciliationService",
]
