"""Payment services: gateway checkout initiation and manual proof-of-payment handling."""

import uuid
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from .config import PortalConfig, MAX_PROOF_SIZE_BYTES
from .connectors import Customer, GatewayConnector, PaymentInitRequest, get_connector
from .database import (
    Participant,
    Payment,
    ManualPayment,
    ParticipantRepository,
    PaymentRepository,
    ManualPaymentRepository,
    GuestRepository,
    PaymentHistoryRepository,
    ManualPaymentMethod,
    ManualPaymentStatus,
    PaymentKind,
    HistoryAction,
)
from .exceptions import InvalidTransitionError, NotFoundError, ValidationError
from .notifications import NotificationService
from .registration import validate_name
from .storage import CONTENT_TYPE_EXTENSIONS, LocalObjectStorage, ObjectStorage

logger = logging.getLogger(__name__)

ALLOWED_PROOF_CONTENT_TYPES = frozenset(CONTENT_TYPE_EXTENSIONS)
MAX_PLACES = 10


@dataclass
class ProofUpload:
    """A proof-of-payment file as received from the participant."""
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def validate_proof(upload: Optional[ProofUpload]) -> ProofUpload:
    """Check a proof-of-payment file.

    Raises:
        ValidationError: If the file is missing, empty, larger than 5 MB or
            not a PNG, JPEG or PDF.
    """
    if upload is None or upload.size == 0:
        raise ValidationError("Veuillez joindre une capture d'écran du paiement", {"field": "screenshot"})
    if upload.size > MAX_PROOF_SIZE_BYTES:
        raise ValidationError(
            "Le fichier ne doit pas dépasser 5 Mo",
            {"field": "screenshot", "size": upload.size, "max_size": MAX_PROOF_SIZE_BYTES},
        )
    content_type = (upload.content_type or "").split(";")[0].strip().lower()
    if content_type == "image/jpg":
        content_type = "image/jpeg"
    if content_type not in ALLOWED_PROOF_CONTENT_TYPES:
        raise ValidationError(
            "Format de fichier non supporté (PNG, JPEG ou PDF uniquement)",
            {"field": "screenshot", "content_type": upload.content_type},
        )
    upload.content_type = content_type
    return upload


def strip_country_code(phone_number: str) -> str:
    """'+225 07 01 23 45 67' -> '0701234567'."""
    phone = (phone_number or "").replace(" ", "")
    if phone.startswith("+225"):
        phone = phone[4:]
    return phone


class PaymentService:
    """Gateway checkout initiation and payment status polling."""

    def __init__(
        self,
        session: AsyncSession,
        config: Optional[PortalConfig] = None,
        connector: Optional[GatewayConnector] = None,
    ):
        """Initialize the service with a database session.

        Args:
            session: AsyncSession instance for database operations.
            config: Portal configuration.
            connector: Gateway connector; CinetPay by default.
        """
        self.session = session
        self.config = config or PortalConfig.from_env()
        self.connector = connector or get_connector("cinetpay", self.config)
        self.participant_repo = ParticipantRepository(session)
        self.payment_repo = PaymentRepository(session)
        self.manual_repo = ManualPaymentRepository(session)
        self.history_repo = PaymentHistoryRepository(session)

    async def _get_participant(self, participant_id: str) -> Participant:
        participant = await self.participant_repo.get_by_id(participant_id)
        if participant is None:
            raise NotFoundError(f"Participant {participant_id} not found")
        return participant

    async def initiate_gateway_payment(
        self,
        participant_id: str,
        payment_method: str = "MOBILE_MONEY",
        places: int = 1,
    ) -> Payment:
        """Open a gateway checkout and store the pending payment.

        Args:
            participant_id: Participant paying.
            payment_method: Checkout method (MOBILE_MONEY, wave, orange_money, ...).
            places: Number of seats paid for.

        Returns:
            The pending Payment, carrying the checkout URL.

        Raises:
            NotFoundError: If the participant does not exist.
            ValidationError: If places is out of range.
            GatewayError: If the gateway refused the checkout. Nothing is stored.
        """
        if not 1 <= places <= MAX_PLACES:
            raise ValidationError(f"places must be between 1 and {MAX_PLACES}", {"field": "places"})
        participant = await self._get_participant(participant_id)

        transaction_id = str(uuid.uuid4())
        amount = self.config.payment_amount * places
        request = PaymentInitRequest(
            transaction_id=transaction_id,
            amount=amount,
            currency=self.config.payment_currency,
            description=f"Paiement pour {participant.full_name}",
            payment_method=payment_method,
            notify_url=self.config.notify_url,
            return_url=self.config.return_url(participant.id),
            customer=Customer(
                first_name=participant.first_name,
                last_name=participant.last_name,
                email=participant.email,
                phone_number=participant.contact_number,
            ),
            metadata=f"PARTICIPANT:{participant.id}",
        )
        response = await self.connector.initiate(request)

        payment = await self.payment_repo.create(
            participant_id=participant.id,
            amount=amount,
            currency=self.config.payment_currency,
            payment_method=payment_method,
            transaction_id=transaction_id,
            api_response_id=response.api_response_id,
            payment_token=response.payment_token,
            payment_url=response.payment_url,
        )
        await self.history_repo.record(
            payment_id=payment.id,
            payment_kind=PaymentKind.GATEWAY.value,
            action=HistoryAction.CREATED.value,
            new_status=payment.status,
            source=self.connector.name,
            details={"places": places, "api_response_id": response.api_response_id},
        )
        return payment

    async def get_payment_status(self, participant_id: str) -> Dict[str, Any]:
        """Current payment state of a participant, as polled by the confirmation page."""
        participant = await self._get_participant(participant_id)
        payments = await self.payment_repo.list_by_participant(participant_id)
        manual_payments = await self.manual_repo.list_by_participant(participant_id)
        return {
            "participant_id": participant.id,
            "payment_status": participant.payment_status,
            "qr_code_id": participant.qr_code_id,
            "sms_code": participant.sms_code,
            "latest_payment": payments[0].to_dict() if payments else None,
            "latest_manual_payment": manual_payments[0].to_dict() if manual_payments else None,
        }


class ManualPaymentService:
    """Proof-of-payment submission and admin settlement."""

    def __init__(
        self,
        session: AsyncSession,
        config: Optional[PortalConfig] = None,
        storage: Optional[ObjectStorage] = None,
        notifier: Optional[NotificationService] = None,
    ):
        """Initialize the service with a database session.

        Args:
            session: AsyncSession instance for database operations.
            config: Portal configuration.
            storage: Object storage for uploaded proofs.
            notifier: Notification service.
        """
        self.session = session
        self.config = config or PortalConfig.from_env()
        self.storage = storage or LocalObjectStorage(self.config.upload_dir, self.config.upload_base_url)
        self.notifier = notifier or NotificationService(self.config)
        self.participant_repo = ParticipantRepository(session)
        self.manual_repo = ManualPaymentRepository(session)
        self.guest_repo = GuestRepository(session)
        self.history_repo = PaymentHistoryRepository(session)

    async def _get_participant(self, participant_id: str) -> Participant:
        participant = await self.participant_repo.get_by_id(participant_id)
        if participant is None:
            raise NotFoundError(f"Participant {participant_id} not found")
        return participant

    async def _get_manual_payment(self, manual_payment_id: str) -> ManualPayment:
        manual_payment = await self.manual_repo.get_by_id(manual_payment_id)
        if manual_payment is None:
            raise NotFoundError(f"Manual payment {manual_payment_id} not found")
        return manual_payment

    @staticmethod
    def _validate_companions(companions: Sequence[Dict[str, str]]) -> List[Dict[str, Any]]:
        if len(companions) + 1 > MAX_PLACES:
            raise ValidationError(f"At most {MAX_PLACES} places per payment", {"field": "companions"})
        return [
            {
                "first_name": validate_name(c.get("first_name", ""), "companion first_name"),
                "last_name": validate_name(c.get("last_name", ""), "companion last_name"),
                "is_main_participant": False,
            }
            for c in companions
        ]

    async def submit(
        self,
        participant_id: str,
        payment_method: str,
        phone_number: str,
        upload: Optional[ProofUpload],
        comments: str = "",
        companions: Sequence[Dict[str, str]] = (),
    ) -> ManualPayment:
        """Record a proof of payment for admin review.

        Args:
            participant_id: Participant paying.
            payment_method: MTN, MOOV or WAVE.
            phone_number: Number the transfer was made from; required.
            upload: Screenshot or receipt (PNG, JPEG or PDF, at most 5 MB).
            comments: Free-text comment.
            companions: First and last names of accompanying guests.

        Returns:
            The pending ManualPayment.

        Raises:
            ValidationError: On invalid input. Nothing is uploaded or written.
            NotFoundError: If the participant does not exist.
            StorageError: If the proof could not be stored.
        """
        phone_number = (phone_number or "").strip()
        if not phone_number:
            raise ValidationError("Le numéro de téléphone utilisé pour le paiement est requis", {"field": "phone_number"})
        method = (payment_method or "").strip().upper()
        if method not in {m.value for m in ManualPaymentMethod}:
            raise ValidationError(
                f"Unsupported payment method: {payment_method}",
                {"field": "payment_method", "allowed": [m.value for m in ManualPaymentMethod]},
            )
        upload = validate_proof(upload)
        guests = self._validate_companions(companions)

        participant = await self._get_participant(participant_id)

        key = ObjectStorage.proof_key(participant.id, upload.content_type)
        screenshot_url = await self.storage.put(key, upload.data, upload.content_type)

        places = len(guests) + 1
        manual_payment = await self.manual_repo.create(
            participant_id=participant.id,
            amount=self.config.payment_amount * places,
            payment_method=method,
            phone_number=phone_number,
            screenshot_url=screenshot_url,
            comments=(comments or "").strip() or None,
            number_of_places=places,
        )
        await self.history_repo.record(
            payment_id=manual_payment.id,
            payment_kind=PaymentKind.MANUAL.value,
            action=HistoryAction.CREATED.value,
            new_status=manual_payment.status,
            source="participant",
        )
        main_guest = {
            "first_name": participant.first_name,
            "last_name": participant.last_name,
            "is_main_participant": True,
        }
        await self.guest_repo.create_many(participant.id, [main_guest] + guests, manual_payment.id)

        await self.notifier.send_admin_new_payment(participant, manual_payment)
        await self.notifier.send_participant_pending(participant, manual_payment)
        return manual_payment

    async def validate(self, manual_payment_id: str, validated_by: str = "Admin") -> ManualPayment:
        """Accept a pending manual payment.

        The participant is marked paid and receives a QR code if they have none.

        Raises:
            NotFoundError: If the payment does not exist.
            InvalidTransitionError: If the payment was already settled.
        """
        manual_payment = await self._get_manual_payment(manual_payment_id)
        if manual_payment.is_terminal:
            raise InvalidTransitionError(
                f"Manual payment {manual_payment_id} is already {manual_payment.status}",
                {"status": manual_payment.status},
            )
        participant = await self._get_participant(manual_payment.participant_id)

        previous_status = manual_payment.status
        await self.manual_repo.update_status(
            manual_payment, ManualPaymentStatus.COMPLETED.value, validated_by=validated_by
        )
        await self.history_repo.record(
            payment_id=manual_payment.id,
            payment_kind=PaymentKind.MANUAL.value,
            action=HistoryAction.VALIDATED.value,
            previous_status=previous_status,
            new_status=manual_payment.status,
            source=validated_by,
        )
        await self.participant_repo.mark_paid(participant)

        await self.notifier.send_payment_confirmed(participant)
        await self.notifier.send_admin_payment_validated(participant, manual_payment)
        return manual_payment

    async def reject(self, manual_payment_id: str, reason: str = "", rejected_by: str = "Admin") -> ManualPayment:
        """Refuse a pending manual payment.

        Raises:
            NotFoundError: If the payment does not exist.
            InvalidTransitionError: If the payment was already settled.
        """
        manual_payment = await self._get_manual_payment(manual_payment_id)
        if manual_payment.is_terminal:
            raise InvalidTransitionError(
                f"Manual payment {manual_payment_id} is already {manual_payment.status}",
                {"status": manual_payment.status},
            )
        participant = await self._get_participant(manual_payment.participant_id)

        previous_status = manual_payment.status
        await self.manual_repo.update_status(
            manual_payment, ManualPaymentStatus.REJECTED.value, admin_notes=(reason or "").strip() or None
        )
        await self.history_repo.record(
            payment_id=manual_payment.id,
            payment_kind=PaymentKind.MANUAL.value,
            action=HistoryAction.REJECTED.value,
            previous_status=previous_status,
            new_status=manual_payment.status,
            source=rejected_by,
            details={"reason": reason} if reason else None,
        )
        await self.notifier.send_payment_rejected(participant, reason)
        return manual_payment

    async def quick_payment(
        self,
        participant_id: str,
        phone_number: Optional[str] = None,
        validated_by: str = "Admin",
    ) -> ManualPayment:
        """Record and validate a payment collected in person by an admin."""
        participant = await self._get_participant(participant_id)
        phone = strip_country_code(phone_number or participant.contact_number)
        if not phone:
            raise ValidationError("A phone number is required", {"field": "phone_number"})

        manual_payment = await self.manual_repo.create(
            participant_id=participant.id,
            amount=self.config.payment_amount,
            payment_method=ManualPaymentMethod.WAVE.value,
            phone_number=phone,
            comments="Paiement rapide (admin)",
        )
        await self.history_repo.record(
            payment_id=manual_payment.id,
            payment_kind=PaymentKind.MANUAL.value,
            action=HistoryAction.CREATED.value,
            new_status=manual_payment.status,
            source=validated_by,
        )
        existing_guests = await self.guest_repo.list_by_participant(participant.id)
        if not existing_guests:
            await self.guest_repo.create_many(
                participant.id,
                [{"first_name": participant.first_name, "last_name": participant.last_name, "is_main_participant": True}],
                manual_payment.id,
            )
        logger.info(f"Quick payment {manual_payment.id} recorded by {validated_by} for participant {participant.id}")
        return await self.validate(manual_payment.id, validated_by)

    async def list_manual_payments(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Manual payments with their participant, most recent first."""
        if status and status not in {s.value for s in ManualPaymentStatus}:
            raise ValidationError(f"Unknown status: {status}", {"field": "status"})
        manual_payments = await self.manual_repo.search(status=status, search=search)
        result = []
        for manual_payment in manual_payments:
            data = manual_payment.to_dict()
            participant = await self.participant_repo.get_by_id(manual_payment.participant_id)
            data["participant"] = participant.to_dict() if participant else None
            result.append(data)
        return result

    async def get_manual_payment(self, manual_payment_id: str) -> Dict[str, Any]:
        manual_payment = await self._get_manual_payment(manual_payment_id)
        participant = await self._get_participant(manual_payment.participant_id)
        data = manual_payment.to_dict()
        data["participant"] = participant.to_dict()
        data["guests"] = [
            g.to_dict() for g in await self.guest_repo.list_by_participant(participant.id)
            if g.manual_payment_id == manual_payment.id
        ]
        data["history"] = [h.to_dict() for h in await self.history_repo.list_by_payment(manual_payment.id)]
        return data

    async def statistics(self) -> Dict[str, Any]:
        counts = await self.manual_repo.count_by_status()
        return {
            "total": sum(counts.values()),
            "pending": counts.get(ManualPaymentStatus.PENDING.value, 0),
            "completed": counts.get(ManualPaymentStatus.COMPLETED.value, 0),
            "rejected": counts.get(ManualPaymentStatus.REJECTED.value, 0),
            "total_validated_amount": await self.manual_repo.total_amount(),
        }
