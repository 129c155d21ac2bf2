"""Repository layer for portal persistence operations."""

import logging
import time
from datetime import datetime
from typing import Optional, Dict, Any, List, Sequence

from sqlalchemy import select, delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
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
    MembershipStatus,
)

logger = logging.getLogger(__name__)


def _escape_like(text: str) -> str:
    """Escape LIKE wildcards so search text matches literally."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ParticipantRepository:
    """Repository for Participant CRUD operations."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def create(
        self,
        first_name: str,
        last_name: str,
        email: str,
        contact_number: str,
        is_member: bool = False,
    ) -> Participant:
        """Create a new participant record.

        Args:
            first_name: Given name.
            last_name: Family name, also the source of the SMS code prefix.
            email: Contact email address.
            contact_number: Phone number in +225 format.
            is_member: Whether the participant is an association member.

        Returns:
            Created Participant instance.
        """
        participant = Participant(
            first_name=first_name,
            last_name=last_name,
            email=email,
            contact_number=contact_number,
            is_member=is_member,
        )
        self.session.add(participant)
        await self.session.flush()

        logger.info(f"Created participant {participant.id}")
        return participant

    async def get_by_id(self, participant_id: str) -> Optional[Participant]:
        """Get a participant by its ID.

        Args:
            participant_id: Participant ID.

        Returns:
            Participant instance if found, None otherwise.
        """
        result = await self.session.execute(
            select(Participant).where(Participant.id == participant_id)
        )
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[Participant]:
        """Get the earliest participant registered with an email address."""
        result = await self.session.execute(
            select(Participant)
            .where(func.lower(Participant.email) == email.strip().lower())
            .order_by(Participant.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_sms_code(self, code: str) -> Optional[Participant]:
        """Get a participant by SMS code, ignoring case and surrounding spaces.

        Args:
            code: Code as typed by the participant.

        Returns:
            Participant instance if found, None otherwise.
        """
        normalized = code.strip().upper()
        if not normalized:
            return None
        result = await self.session.execute(
            select(Participant).where(func.upper(Participant.sms_code) == normalized)
        )
        return result.scalar_one_or_none()

    async def get_by_qr_code(self, qr_code_id: str) -> Optional[Participant]:
        result = await self.session.execute(
            select(Participant).where(Participant.qr_code_id == qr_code_id.strip())
        )
        return result.scalar_one_or_none()

    async def sms_code_exists(self, code: str) -> bool:
        result = await self.session.execute(
            select(func.count()).select_from(Participant).where(Participant.sms_code == code)
        )
        return result.scalar_one() > 0

    async def mark_paid(self, participant: Participant) -> bool:
        """Mark a participant as paid and give them a QR credential.

        An existing QR code id is kept, so repeated settlement of the same
        payment never invalidates a credential already sent out.

        Args:
            participant: Participant whose payment settled.

        Returns:
            True if a new QR code id was issued, False if one already existed.
        """
        participant.payment_status = ParticipantPaymentStatus.COMPLETED.value
        issued = False
        if not participant.qr_code_id:
            participant.qr_code_id = f"QR-{participant.id}-{time.time_ns()}"
            issued = True
            logger.info(f"Issued QR code {participant.qr_code_id} to participant {participant.id}")
        await self.session.flush()
        return issued

    async def mark_checked_in(self, participant: Participant, timestamp: datetime) -> Participant:
        participant.check_in_status = True
        participant.check_in_timestamp = timestamp
        await self.session.flush()
        return participant

    async def count_where(self, *criteria: Any) -> int:
        """Count participants matching SQL criteria."""
        query = select(func.count()).select_from(Participant)
        if criteria:
            query = query.where(*criteria)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def list_all(self, limit: Optional[int] = None) -> List[Participant]:
        """List participants, most recent first.

        Args:
            limit: Optional maximum number of records.

        Returns:
            List of Participant instances.
        """
        query = select(Participant).order_by(Participant.created_at.desc())
        if limit:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def delete(self, participant: Participant) -> None:
        """Delete a participant together with every row that references it.

        Args:
            participant: Participant to remove.
        """
        participant_id = participant.id
        await self._delete_dependents([participant_id])
        await self.session.delete(participant)
        await self.session.flush()
        logger.info(f"Deleted participant {participant_id}")

    async def delete_all(self) -> int:
        """Delete every participant and dependent row.

        Returns:
            Number of deleted participants.
        """
        result = await self.session.execute(select(Participant.id))
        ids = list(result.scalars().all())
        if not ids:
            return 0
        await self._delete_dependents(ids)
        await self.session.execute(delete(Participant))
        await self.session.flush()
        logger.warning(f"Deleted all {len(ids)} participants")
        return len(ids)

    async def _delete_dependents(self, participant_ids: Sequence[str]) -> None:
        payment_ids = select(Payment.id).where(Payment.participant_id.in_(participant_ids))
        manual_ids = select(ManualPayment.id).where(ManualPayment.participant_id.in_(participant_ids))
        await self.session.execute(
            delete(PaymentHistory).where(
                or_(
                    PaymentHistory.payment_id.in_(payment_ids),
                    PaymentHistory.payment_id.in_(manual_ids),
                )
            )
        )
        for model in (Guest, CheckIn, Payment, ManualPayment):
            await self.session.execute(
                delete(model).where(model.participant_id.in_(participant_ids))
            )
        # Memberships outlive the participant record
        result = await self.session.execute(
            select(Membership).where(Membership.participant_id.in_(participant_ids))
        )
        for membership in result.scalars().all():
            membership.participant_id = None
        await self.session.flush()


class PaymentRepository:
    """Repository for gateway Payment operations."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def create(
        self,
        participant_id: str,
        amount: int,
        currency: str,
        payment_method: str,
        transaction_id: str,
        api_response_id: Optional[str] = None,
        payment_token: Optional[str] = None,
        payment_url: Optional[str] = None,
        status: str = PaymentStatus.PENDING.value,
    ) -> Payment:
        """Create a new gateway payment record.

        Args:
            participant_id: Owning participant.
            amount: Amount in whole currency units.
            currency: Three-letter currency code.
            payment_method: Method declared by the participant.
            transaction_id: Locally generated transaction identifier.
            api_response_id: Identifier returned by the gateway, if any.
            payment_token: Gateway checkout token.
            payment_url: Gateway checkout URL.
            status: Initial payment status.

        Returns:
            Created Payment instance.
        """
        payment = Payment(
            participant_id=participant_id,
            amount=amount,
            currency=currency.upper(),
            payment_method=payment_method,
            transaction_id=transaction_id,
            api_response_id=api_response_id,
            payment_token=payment_token,
            payment_url=payment_url,
            status=status,
        )
        self.session.add(payment)
        await self.session.flush()

        logger.info(f"Created payment {payment.id} ({transaction_id}) with status {status}")
        return payment

    async def get_by_id(self, payment_id: str) -> Optional[Payment]:
        result = await self.session.execute(
            select(Payment).where(Payment.id == payment_id)
        )
        return result.scalar_one_or_none()

    async def get_by_transaction_id(self, transaction_id: str) -> Optional[Payment]:
        """Get a payment by its local transaction ID.

        Args:
            transaction_id: Locally generated transaction identifier.

        Returns:
            Payment instance if found, None otherwise.
        """
        result = await self.session.execute(
            select(Payment).where(Payment.transaction_id == transaction_id)
        )
        return result.scalar_one_or_none()

    async def find_by_api_response_id(self, api_response_id: str) -> List[Payment]:
        """Get payments carrying a gateway API response id, most recent first.

        Args:
            api_response_id: Identifier returned by the gateway.

        Returns:
            List of matching Payment instances.
        """
        result = await self.session.execute(
            select(Payment)
            .where(Payment.api_response_id == api_response_id)
            .order_by(Payment.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_all(self) -> List[Payment]:
        result = await self.session.execute(
            select(Payment).order_by(Payment.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_by_participant(self, participant_id: str) -> List[Payment]:
        result = await self.session.execute(
            select(Payment)
            .where(Payment.participant_id == participant_id)
            .order_by(Payment.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_pending(self, created_before: Optional[datetime] = None) -> List[Payment]:
        """List pending payments, oldest first.

        Args:
            created_before: Only include payments created before this time.

        Returns:
            List of pending Payment instances.
        """
        query = select(Payment).where(Payment.status == PaymentStatus.PENDING.value)
        if created_before is not None:
            query = query.where(Payment.created_at < created_before)
        result = await self.session.execute(query.order_by(Payment.created_at))
        return list(result.scalars().all())

    async def update_status(
        self,
        payment: Payment,
        new_status: str,
        operator_id: Optional[str] = None,
        api_response_id: Optional[str] = None,
        payment_date: Optional[str] = None,
    ) -> Payment:
        """Update payment status and record gateway identifiers when present.

        Args:
            payment: Payment instance to update.
            new_status: New payment status.
            operator_id: Mobile-money operator reference.
            api_response_id: Gateway API response id.
            payment_date: Settlement date reported by the gateway.

        Returns:
            Updated Payment instance.
        """
        payment.status = new_status
        payment.updated_at = datetime.utcnow()
        if operator_id:
            payment.operator_id = operator_id
        if api_response_id:
            payment.api_response_id = api_response_id
        if payment_date:
            payment.payment_date = payment_date

        await self.session.flush()
        logger.info(f"Updated payment {payment.id} status to {new_status}")
        return payment

    async def count_by_status(self) -> Dict[str, int]:
        result = await self.session.execute(
            select(Payment.status, func.count()).group_by(Payment.status)
        )
        return {status: count for status, count in result.all()}

    async def total_amount(self, status: str = PaymentStatus.SUCCESS.value) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.status == status)
        )
        return int(result.scalar_one())


class ManualPaymentRepository:
    """Repository for ManualPayment operations."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def create(
        self,
        participant_id: str,
        amount: int,
        payment_method: str,
        phone_number: str,
        screenshot_url: Optional[str] = None,
        comments: Optional[str] = None,
        number_of_places: int = 1,
        status: str = ManualPaymentStatus.PENDING.value,
    ) -> ManualPayment:
        """Create a new manual payment record.

        Args:
            participant_id: Owning participant.
            amount: Amount due for all places.
            payment_method: MTN, MOOV or WAVE.
            phone_number: Number the transfer was made from.
            screenshot_url: Public URL of the uploaded proof.
            comments: Free-text comment from the participant.
            number_of_places: Seats covered by this payment.
            status: Initial status.

        Returns:
            Created ManualPayment instance.
        """
        manual_payment = ManualPayment(
            participant_id=participant_id,
            amount=amount,
            payment_method=payment_method,
            phone_number=phone_number,
            screenshot_url=screenshot_url,
            comments=comments,
            number_of_places=number_of_places,
            status=status,
        )
        self.session.add(manual_payment)
        await self.session.flush()

        logger.info(f"Created manual payment {manual_payment.id} for participant {participant_id}")
        return manual_payment

    async def get_by_id(self, manual_payment_id: str) -> Optional[ManualPayment]:
        result = await self.session.execute(
            select(ManualPayment).where(ManualPayment.id == manual_payment_id)
        )
        return result.scalar_one_or_none()

    async def list_by_participant(self, participant_id: str) -> List[ManualPayment]:
        result = await self.session.execute(
            select(ManualPayment)
            .where(ManualPayment.participant_id == participant_id)
            .order_by(ManualPayment.created_at.desc())
        )
        return list(result.scalars().all())

    async def search(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[ManualPayment]:
        """List manual payments with optional filters.

        Args:
            status: Only include payments in this status.
            search: Case-insensitive text matched against the participant's
                name, email and the paying phone number.

        Returns:
            List of ManualPayment instances, most recent first.
        """
        query = select(ManualPayment).join(
            Participant, Participant.id == ManualPayment.participant_id
        )
        if status:
            query = query.where(ManualPayment.status == status)
        if search:
            pattern = f"%{_escape_like(search.strip().lower())}%"
            query = query.where(
                or_(
                    func.lower(Participant.first_name).like(pattern, escape="\\"),
                    func.lower(Participant.last_name).like(pattern, escape="\\"),
                    func.lower(Participant.email).like(pattern, escape="\\"),
                    ManualPayment.phone_number.like(pattern, escape="\\"),
                )
            )
        result = await self.session.execute(query.order_by(ManualPayment.created_at.desc()))
        return list(result.scalars().all())

    async def update_status(
        self,
        manual_payment: ManualPayment,
        new_status: str,
        admin_notes: Optional[str] = None,
        validated_by: Optional[str] = None,
    ) -> ManualPayment:
        """Update manual payment status.

        Args:
            manual_payment: ManualPayment instance to update.
            new_status: New status.
            admin_notes: Optional note, e.g. a rejection reason.
            validated_by: Admin who took the decision.

        Returns:
            Updated ManualPayment instance.
        """
        manual_payment.status = new_status
        if admin_notes is not None:
            manual_payment.admin_notes = admin_notes
        if new_status == ManualPaymentStatus.COMPLETED.value:
            manual_payment.validated_at = datetime.utcnow()
            manual_payment.validated_by = validated_by

        await self.session.flush()
        logger.info(f"Updated manual payment {manual_payment.id} status to {new_status}")
        return manual_payment

    async def count_by_status(self) -> Dict[str, int]:
        result = await self.session.execute(
            select(ManualPayment.status, func.count()).group_by(ManualPayment.status)
        )
        return {status: count for status, count in result.all()}

    async def total_amount(self, status: str = ManualPaymentStatus.COMPLETED.value) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(ManualPayment.amount), 0)).where(
                ManualPayment.status == status
            )
        )
        return int(result.scalar_one())


class GuestRepository:
    """Repository for Guest operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_many(
        self,
        participant_id: str,
        guests: Sequence[Dict[str, Any]],
        manual_payment_id: Optional[str] = None,
    ) -> List[Guest]:
        """Create guest rows for a participant.

        Args:
            participant_id: Owning participant.
            guests: Dictionaries with first_name, last_name and is_main_participant.
            manual_payment_id: Payment covering these seats.

        Returns:
            Created Guest instances.
        """
        created = []
        for data in guests:
            guest = Guest(
                participant_id=participant_id,
                manual_payment_id=manual_payment_id,
                first_name=data["first_name"],
                last_name=data["last_name"],
                is_main_participant=bool(data.get("is_main_participant", False)),
            )
            self.session.add(guest)
            created.append(guest)
        await self.session.flush()
        return created

    async def list_by_participant(self, participant_id: str) -> List[Guest]:
        result = await self.session.execute(
            select(Guest)
            .where(Guest.participant_id == participant_id)
            .order_by(Guest.is_main_participant.desc(), Guest.created_at)
        )
        return list(result.scalars().all())

    async def mark_checked_in(self, participant_id: str, timestamp: datetime) -> int:
        """Check in every guest of a participant.

        Returns:
            Number of guests updated.
        """
        guests = await self.list_by_participant(participant_id)
        for guest in guests:
            guest.check_in_status = True
            guest.check_in_timestamp = timestamp
        await self.session.flush()
        return len(guests)

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(Guest))
        return result.scalar_one()


class CheckInRepository:
    """Repository for the append-only check-in log."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        participant_id: str,
        method: str,
        checked_by: Optional[str] = None,
        notes: Optional[str] = None,
        checked_in_at: Optional[datetime] = None,
    ) -> CheckIn:
        entry = CheckIn(
            participant_id=participant_id,
            method=method,
            checked_by=checked_by,
            notes=notes,
            checked_in_at=checked_in_at or datetime.utcnow(),
        )
        self.session.add(entry)
        await self.session.flush()
        logger.info(f"Recorded {method} check-in for participant {participant_id}")
        return entry

    async def list_by_participant(self, participant_id: str) -> List[CheckIn]:
        result = await self.session.execute(
            select(CheckIn)
            .where(CheckIn.participant_id == participant_id)
            .order_by(CheckIn.checked_in_at)
        )
        return list(result.scalars().all())


class MembershipRepository:
    """Repository for Membership operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields: Any) -> Membership:
        """Create a membership request.

        Args:
            **fields: Column values; ``club_expectations`` may be a list.

        Returns:
            Created Membership instance.
        """
        expectations = fields.pop("club_expectations", None)
        membership = Membership(**fields)
        membership.club_expectations = expectations
        self.session.add(membership)
        await self.session.flush()
        logger.info(f"Created membership request {membership.id} for {membership.email}")
        return membership

    async def get_by_id(self, membership_id: str) -> Optional[Membership]:
        result = await self.session.execute(
            select(Membership).where(Membership.id == membership_id)
        )
        return result.scalar_one_or_none()

    async def find_active_by_email(self, email: str) -> Optional[Membership]:
        """Get a pending or approved request for an email address, if any."""
        result = await self.session.execute(
            select(Membership)
            .where(
                func.lower(Membership.email) == email.strip().lower(),
                Membership.status.in_([
                    MembershipStatus.PENDING.value,
                    MembershipStatus.APPROVED.value,
                ]),
            )
            .order_by(Membership.requested_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_by_status(self, status: Optional[str] = None) -> List[Membership]:
        query = select(Membership)
        if status:
            query = query.where(Membership.status == status)
        result = await self.session.execute(query.order_by(Membership.requested_at.desc()))
        return list(result.scalars().all())

    async def update_status(
        self,
        membership: Membership,
        new_status: str,
        reviewed_by: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> Membership:
        membership.status = new_status
        membership.reviewed_at = datetime.utcnow()
        membership.reviewed_by = reviewed_by
        if rejection_reason is not None:
            membership.rejection_reason = rejection_reason
        await self.session.flush()
        logger.info(f"Updated membership {membership.id} status to {new_status}")
        return membership


class PaymentHistoryRepository:
    """Repository for PaymentHistory operations."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def record(
        self,
        payment_id: str,
        payment_kind: str,
        action: str,
        new_status: str,
        previous_status: Optional[str] = None,
        source: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> PaymentHistory:
        """Record a payment event.

        Args:
            payment_id: Payment or manual payment ID.
            payment_kind: Which table payment_id refers to.
            action: Type of event.
            new_status: Status after the event.
            previous_status: Status before the event.
            source: Who or what triggered the event.
            details: Optional extra data.

        Returns:
            Created PaymentHistory instance.
        """
        entry = PaymentHistory(
            payment_id=payment_id,
            payment_kind=payment_kind,
            action=action,
            previous_status=previous_status,
            new_status=new_status,
            source=source,
        )
        if details:
            entry.details = details

        self.session.add(entry)
        await self.session.flush()

        logger.debug(
            f"Recorded history for {payment_kind} payment {payment_id}: "
            f"{action} ({previous_status} -> {new_status})"
        )
        return entry

    async def list_by_payment(self, payment_id: str) -> List[PaymentHistory]:
        """Get history for a payment, oldest first.

        Args:
            payment_id: Payment ID.

        Returns:
            List of PaymentHistory instances.
        """
        result = await self.session.execute(
            select(PaymentHistory)
            .where(PaymentHistory.payment_id == payment_id)
            .order_by(PaymentHistory.created_at)
        )
        return list(result.scalars().all())


class AdminUserRepository:
    """Repository for AdminUser operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, email: str, password_hash: str, full_name: Optional[str] = None) -> AdminUser:
        admin = AdminUser(email=email.strip().lower(), password_hash=password_hash, full_name=full_name)
        self.session.add(admin)
        await self.session.flush()
        logger.info(f"Created admin user {admin.email}")
        return admin

    async def get_by_email(self, email: str) -> Optional[AdminUser]:
        result = await self.session.execute(
            select(AdminUser).where(AdminUser.email == email.strip().lower())
        )
        return result.scalar_one_or_none()
