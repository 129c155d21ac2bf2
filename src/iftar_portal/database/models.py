"""SQLAlchemy models for participants, payments and check-in records."""

import uuid
import json
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import (
    String,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    Text,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
import enum


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class ParticipantPaymentStatus(str, enum.Enum):
    """Payment status as seen on the participant record."""
    PENDING = "pending"
    COMPLETED = "completed"


class PaymentStatus(str, enum.Enum):
    """Statuses of a gateway payment."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @classmethod
    def terminal(cls) -> List[str]:
        return [cls.SUCCESS.value, cls.FAILED.value]


class ManualPaymentStatus(str, enum.Enum):
    """Statuses of a proof-of-payment submission."""
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"


class ManualPaymentMethod(str, enum.Enum):
    """Mobile-money operators accepted for manual transfers."""
    MTN = "MTN"
    MOOV = "MOOV"
    WAVE = "WAVE"


class MembershipStatus(str, enum.Enum):
    """Statuses of a membership request."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CheckInMethod(str, enum.Enum):
    """How a participant was admitted at the door."""
    SMS_CODE = "sms_code"
    QR_SCAN = "qr_scan"
    SELF = "self-check-in"
    MANUAL = "manual"


class PaymentKind(str, enum.Enum):
    """Which payment table a history row refers to."""
    GATEWAY = "gateway"
    MANUAL = "manual"


class HistoryAction(str, enum.Enum):
    """Types of events tracked in payment history."""
    CREATED = "created"
    WEBHOOK = "webhook"
    SWEEP = "sweep"
    VALIDATED = "validated"
    REJECTED = "rejected"
    REDELIVERY_IGNORED = "redelivery_ignored"


class Participant(Base):
    """A person registered for the event."""
    __tablename__ = "participants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    contact_number: Mapped[str] = mapped_column(String(32), nullable=False)
    is_member: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Human-typable check-in code, e.g. SIG-4291
    sms_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True, unique=True)
    qr_code_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, unique=True)

    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ParticipantPaymentStatus.PENDING.value
    )
    check_in_status: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    check_in_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_participants_payment_status", "payment_status"),
        Index("ix_participants_created_at", "created_at"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert participant to dictionary representation."""
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "contact_number": self.contact_number,
            "is_member": self.is_member,
            "sms_code": self.sms_code,
            "qr_code_id": self.qr_code_id,
            "payment_status": self.payment_status,
            "check_in_status": self.check_in_status,
            "check_in_timestamp": _iso(self.check_in_timestamp),
            "created_at": _iso(self.created_at),
        }


class Payment(Base):
    """Gateway payment, reconciled from asynchronous notifications."""
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    participant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("participants.id"), nullable=False, index=True
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PaymentStatus.PENDING.value)

    # Locally generated id sent to the gateway
    transaction_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    # Identifiers the gateway hands back; may or may not equal transaction_id
    api_response_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    operator_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    payment_token: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payment_date: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_payments_status", "status"),
        Index("ix_payments_created_at", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in PaymentStatus.terminal()

    def to_dict(self) -> Dict[str, Any]:
        """Convert payment to dictionary representation."""
        return {
            "id": self.id,
            "participant_id": self.participant_id,
            "amount": self.amount,
            "currency": self.currency,
            "payment_method": self.payment_method,
            "status": self.status,
            "transaction_id": self.transaction_id,
            "api_response_id": self.api_response_id,
            "operator_id": self.operator_id,
            "payment_url": self.payment_url,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class ManualPayment(Base):
    """Proof-of-payment submitted by a participant, settled by an admin."""
    __tablename__ = "manual_payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    participant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("participants.id"), nullable=False, index=True
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)
    screenshot_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    number_of_places: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ManualPaymentStatus.PENDING.value
    )
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    validated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    validated_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_manual_payments_status", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status != ManualPaymentStatus.PENDING.value

    def to_dict(self) -> Dict[str, Any]:
        """Convert manual payment to dictionary representation."""
        return {
            "id": self.id,
            "participant_id": self.participant_id,
            "amount": self.amount,
            "payment_method": self.payment_method,
            "phone_number": self.phone_number,
            "screenshot_url": self.screenshot_url,
            "comments": self.comments,
            "number_of_places": self.number_of_places,
            "status": self.status,
            "admin_notes": self.admin_notes,
            "validated_at": _iso(self.validated_at),
            "validated_by": self.validated_by,
            "created_at": _iso(self.created_at),
        }


class Guest(Base):
    """A seat booked under a participant: the participant or a companion."""
    __tablename__ = "guests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    participant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("participants.id"), nullable=False, index=True
    )
    manual_payment_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("manual_payments.id"), nullable=True
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_main_participant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    check_in_status: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    check_in_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "participant_id": self.participant_id,
            "manual_payment_id": self.manual_payment_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "is_main_participant": self.is_main_participant,
            "check_in_status": self.check_in_status,
            "check_in_timestamp": _iso(self.check_in_timestamp),
        }


class CheckIn(Base):
    """Append-only admission log."""
    __tablename__ = "check_ins"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    participant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("participants.id"), nullable=False, index=True
    )
    checked_in_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    method: Mapped[str] = mapped_column(String(32), nullable=False)
    checked_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "participant_id": self.participant_id,
            "checked_in_at": _iso(self.checked_in_at),
            "method": self.method,
            "checked_by": self.checked_by,
            "notes": self.notes,
        }


class Membership(Base):
    """Request to join the association."""
    __tablename__ = "memberships"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    participant_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("participants.id"), nullable=True, index=True
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    contact_number: Mapped[str] = mapped_column(String(32), nullable=False)
    profession: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    subscription_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=100000)
    subscription_start_month: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    payment_frequency: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    competence_domains: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    club_expectations_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    other_expectations: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MembershipStatus.PENDING.value
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index("ix_memberships_status", "status"),
    )

    @property
    def club_expectations(self) -> List[str]:
        """Get expectations as a list."""
        if self.club_expectations_json:
            return json.loads(self.club_expectations_json)
        return []

    @club_expectations.setter
    def club_expectations(self, value: Optional[List[str]]) -> None:
        """Set expectations from a list."""
        if value:
            self.club_expectations_json = json.dumps(list(value))
        else:
            self.club_expectations_json = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert membership to dictionary representation."""
        return {
            "id": self.id,
            "participant_id": self.participant_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "contact_number": self.contact_number,
            "profession": self.profession,
            "address": self.address,
            "subscription_amount": self.subscription_amount,
            "subscription_start_month": self.subscription_start_month,
            "payment_method": self.payment_method,
            "payment_frequency": self.payment_frequency,
            "competence_domains": self.competence_domains,
            "club_expectations": self.club_expectations,
            "other_expectations": self.other_expectations,
            "status": self.status,
            "rejection_reason": self.rejection_reason,
            "requested_at": _iso(self.requested_at),
            "reviewed_at": _iso(self.reviewed_at),
            "reviewed_by": self.reviewed_by,
        }


class PaymentHistory(Base):
    """Model for tracking payment status transitions of both payment kinds."""
    __tablename__ = "payment_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    payment_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    payment_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    previous_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    source: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    details_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_payment_history_created_at", "created_at"),
    )

    @property
    def details(self) -> Optional[Dict[str, Any]]:
        """Get details as dictionary."""
        if self.details_json:
            return json.loads(self.details_json)
        return None

    @details.setter
    def details(self, value: Optional[Dict[str, Any]]) -> None:
        """Set details from dictionary."""
        if value is not None:
            self.details_json = json.dumps(value)
        else:
            self.details_json = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "payment_kind": self.payment_kind,
            "action": self.action,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "source": self.source,
            "details": self.details,
            "created_at": _iso(self.created_at),
        }


class AdminUser(Base):
    """Back-office account allowed to validate payments and check people in."""
    __tablename__ = "admin_users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
