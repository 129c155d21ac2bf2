"""Database module for the Iftar portal."""

from .models import (
    Base,
    Participant,
    Payment,
    ManualPayment,
    Guest,
    CheckIn,
    Membership,
    PaymentHistory,
    AdminUser,
    ParticipantPaymentStatus,
    PaymentStatus,
    ManualPaymentStatus,
    ManualPaymentMethod,
    MembershipStatus,
    CheckInMethod,
    PaymentKind,
    HistoryAction,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_tables,
    create_async_engine,
    get_async_session_factory,
)
from .repository import (
    ParticipantRepository,
    PaymentRepository,
    ManualPaymentRepository,
    GuestRepository,
    CheckInRepository,
    MembershipRepository,
    PaymentHistoryRepository,
    AdminUserRepository,
)

__all__ = [
    # Models
    "Base",
    "Participant",
    "Payment",
    "ManualPayment",
    "Guest",
    "CheckIn",
    "Membership",
    "PaymentHistory",
    "AdminUser",
    "ParticipantPaymentStatus",
    "PaymentStatus",
    "ManualPaymentStatus",
    "ManualPaymentMethod",
    "MembershipStatus",
    "CheckInMethod",
    "PaymentKind",
    "HistoryAction",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_tables",
    "create_async_engine",
    "get_async_session_factory",
    # Repositories
    "ParticipantRepository",
    "PaymentRepository",
    "ManualPaymentRepository",
    "GuestRepository",
    "CheckInRepository",
    "MembershipRepository",
    "PaymentHistoryRepository",
    "AdminUserRepository",
]
