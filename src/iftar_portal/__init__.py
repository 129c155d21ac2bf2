# iftar_portal package
__version__ = "0.1.0"

from .database import (
    Participant,
    Payment,
    ManualPayment,
    ParticipantPaymentStatus,
    PaymentStatus,
    ManualPaymentStatus,
    init_db,
    close_db,
    get_db,
)
from .registration import RegistrationService
from .services import PaymentService, ManualPaymentService, ProofUpload
from .checkin import CheckInService, CheckInResult
from .memberships import MembershipService
from .exports import ExportService

# Reconciliation exports
from .reconciliation import (
    ReconciliationService,
    ReconciliationOutcome,
    GatewayNotification,
    PaymentMatcher,
    MatchStrategy,
    SweepReport,
    ReportGenerator,
)
