"""Participant registration."""

import logging
import random
import re
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .config import PortalConfig
from .database import Participant, ParticipantRepository
from .exceptions import NotFoundError, ValidationError
from .notifications import NotificationService
from .shortcodes import assign_sms_code

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2
CONTACT_PATTERN = re.compile(r"^\+225 ?[0-9]{8,10}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_name(value: str, field: str) -> str:
    value = (value or "").strip()
    if len(value) < MIN_NAME_LENGTH:
        raise ValidationError(
            f"{field} must contain at least {MIN_NAME_LENGTH} characters",
            {"field": field},
        )
    return value


def validate_email(value: str) -> str:
    value = (value or "").strip()
    if not EMAIL_PATTERN.match(value):
        raise ValidationError("Invalid email address", {"field": "email"})
    return value


def validate_contact_number(value: str) -> str:
    """Accept +225 numbers with 8 to 10 digits, e.g. '+225 0701234567'."""
    value = (value or "").strip()
    if not CONTACT_PATTERN.match(value):
        raise ValidationError(
            "Contact number must start with +225 followed by 8 to 10 digits",
            {"field": "contact_number"},
        )
    return value


class RegistrationService:
    """Creates participants and gives each one a check-in code."""

    def __init__(
        self,
        session: AsyncSession,
        config: Optional[PortalConfig] = None,
        notifier: Optional[NotificationService] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the service with a database session.

        Args:
            session: AsyncSession instance for database operations.
            config: Portal configuration.
            notifier: Used to text the check-in code.
            rng: Random source for SMS codes.
        """
        self.session = session
        self.config = config or PortalConfig.from_env()
        self.notifier = notifier or NotificationService(self.config)
        self.rng = rng
        self.participant_repo = ParticipantRepository(session)

    async def register(
        self,
        first_name: str,
        last_name: str,
        email: str,
        contact_number: str,
        is_member: bool = False,
        send_sms: bool = True,
    ) -> Participant:
        """Register a participant.

        Args:
            first_name: Given name, at least two characters.
            last_name: Family name, at least two characters.
            email: Valid email address.
            contact_number: ``+225`` followed by 8 to 10 digits.
            is_member: Association member flag.
            send_sms: Text the check-in code after registration.

        Returns:
            The created Participant with a payment status of pending.

        Raises:
            ValidationError: If any field is invalid. Nothing is written.
        """
        first_name = validate_name(first_name, "first_name")
        last_name = validate_name(last_name, "last_name")
        email = validate_email(email)
        contact_number = validate_contact_number(contact_number)

        participant = await self.participant_repo.create(
            first_name=first_name,
            last_name=last_name,
            email=email,
            contact_number=contact_number,
            is_member=is_member,
        )
        await assign_sms_code(self.session, participant, self.rng)

        if send_sms:
            await self.notifier.send_sms_code(participant)
        return participant

    async def get_participant(self, participant_id: str) -> Participant:
        participant = await self.participant_repo.get_by_id(participant_id)
        if participant is None:
            raise NotFoundError(f"Participant {participant_id} not found")
        return participant

    async def delete_participant(self, participant_id: str) -> None:
        participant = await self.get_participant(participant_id)
        await self.participant_repo.delete(participant)

    async def wipe_all(self) -> int:
        """Delete every participant with payments, guests and check-ins."""
        return await self.participant_repo.delete_all()

    async def message_participants(
        self,
        subject: str,
        message: str,
        participant_ids: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Email a free-text message to chosen participants, or to everyone.

        Args:
            subject: Message subject.
            message: Message body.
            participant_ids: Recipients; every participant when empty.

        Returns:
            ``sent`` and ``failed`` counts with one result per recipient.
            Unknown ids are reported as failed with ``error`` set.
        """
        subject = (subject or "").strip()
        message = (message or "").strip()
        if not subject:
            raise ValidationError("Le sujet est requis", {"field": "subject"})
        if not message:
            raise ValidationError("Le message est requis", {"field": "message"})

        missing = []
        if participant_ids:
            participants = []
            for participant_id in dict.fromkeys(participant_ids):
                participant = await self.participant_repo.get_by_id(participant_id)
                if participant is None:
                    missing.append({"participant_id": participant_id, "email": None, "sent": False, "error": "not_found"})
                else:
                    participants.append(participant)
        else:
            participants = await self.participant_repo.list_all()

        results = await self.notifier.send_bulk_message(participants, subject, message) + missing
        sent = sum(1 for r in results if r["sent"])
        return {"success": True, "sent": sent, "failed": len(results) - sent, "results": results}
