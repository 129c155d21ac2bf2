"""Door admission by SMS short code or QR credential."""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy.ext.asyncio import AsyncSession

from .database import (
    CheckInMethod,
    CheckInRepository,
    GuestRepository,
    ManualPaymentRepository,
    Participant,
    ParticipantPaymentStatus,
    ParticipantRepository,
    PaymentRepository,
)
from .exceptions import NotFoundError, ValidationError
from .shortcodes import normalize_code

logger = logging.getLogger(__name__)


@dataclass
class CheckInResult:
    """Outcome of an admission attempt."""
    participant: Participant
    method: str
    already_checked_in: bool = False
    guests_checked_in: int = 0
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "participant": self.participant.to_dict(),
            "method": self.method,
            "already_checked_in": self.already_checked_in,
            "guests_checked_in": self.guests_checked_in,
            "warnings": self.warnings,
        }


class CheckInService:
    """Looks up participants at the door and records their admission."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.participant_repo = ParticipantRepository(session)
        self.payment_repo = PaymentRepository(session)
        self.manual_repo = ManualPaymentRepository(session)
        self.guest_repo = GuestRepository(session)
        self.checkin_repo = CheckInRepository(session)

    async def lookup_by_code(self, code: str) -> Optional[Dict[str, Any]]:
        """Find a participant by SMS code.

        Matching trims whitespace and ignores case.

        Returns:
            The participant with nested ``payments``, ``manual_payments`` and
            ``guests``, or None if no participant carries the code.
        """
        if not normalize_code(code):
            raise ValidationError("Un code est requis", {"field": "code"})
        participant = await self.participant_repo.get_by_sms_code(code)
        if participant is None:
            return None
        return await self.describe(participant)

    async def describe(self, participant: Participant) -> Dict[str, Any]:
        data = participant.to_dict()
        data["payments"] = [p.to_dict() for p in await self.payment_repo.list_by_participant(participant.id)]
        data["manual_payments"] = [
            mp.to_dict() for mp in await self.manual_repo.list_by_participant(participant.id)
        ]
        data["guests"] = [g.to_dict() for g in await self.guest_repo.list_by_participant(participant.id)]
        data["check_ins"] = [c.to_dict() for c in await self.checkin_repo.list_by_participant(participant.id)]
        return data

    async def check_in_by_code(self, code: str, checked_by: Optional[str] = None) -> CheckInResult:
        """Admit the participant holding an SMS code.

        Raises:
            NotFoundError: If no participant carries the code.
        """
        if not normalize_code(code):
            raise ValidationError("Un code est requis", {"field": "code"})
        participant = await self.participant_repo.get_by_sms_code(code)
        if participant is None:
            raise NotFoundError(f"Aucun participant trouvé avec le code {normalize_code(code)}")
        return await self._check_in(participant, CheckInMethod.SMS_CODE.value, checked_by)

    async def check_in_by_qr(self, qr_code_id: str, checked_by: Optional[str] = None) -> CheckInResult:
        """Admit the participant holding a QR credential.

        Raises:
            NotFoundError: If the QR code id is unknown.
        """
        qr_code_id = (qr_code_id or "").strip()
        if not qr_code_id:
            raise ValidationError("Un QR code est requis", {"field": "qr_code_id"})
        participant = await self.participant_repo.get_by_qr_code(qr_code_id)
        if participant is None:
            raise NotFoundError("QR code invalide")
        return await self._check_in(participant, CheckInMethod.QR_SCAN.value, checked_by)

    async def check_in_participant(
        self,
        participant_id: str,
        method: str = CheckInMethod.MANUAL.value,
        checked_by: Optional[str] = None,
    ) -> CheckInResult:
        if method not in {m.value for m in CheckInMethod}:
            raise ValidationError(f"Unknown check-in method: {method}", {"field": "method"})
        participant = await self.participant_repo.get_by_id(participant_id)
        if participant is None:
            raise NotFoundError(f"Participant {participant_id} not found")
        return await self._check_in(participant, method, checked_by)

    async def self_check_in(self, participant_id: str, code: str, expected_code: str) -> CheckInResult:
        """Let a participant confirm their own presence with the venue code.

        The venue code is announced on site by the organizers; an empty
        ``expected_code`` means self check-in is closed.

        Raises:
            ValidationError: If self check-in is closed or the code is wrong.
            NotFoundError: If the participant does not exist.
        """
        if not expected_code:
            raise ValidationError("La confirmation de présence n'est pas ouverte", {"field": "code"})
        if not secrets.compare_digest((code or "").strip(), expected_code):
            raise ValidationError("Code de validation incorrect", {"field": "code"})
        return await self.check_in_participant(participant_id, CheckInMethod.SELF.value, checked_by=CheckInMethod.SELF.value)

    async def _check_in(self, participant: Participant, method: str, checked_by: Optional[str]) -> CheckInResult:
        warnings = []
        if participant.payment_status != ParticipantPaymentStatus.COMPLETED.value:
            warnings.append("payment_not_completed")
            logger.warning(f"Checking in participant {participant.id} whose payment is {participant.payment_status}")

        if participant.check_in_status:
            logger.info(f"Participant {participant.id} already checked in at {participant.check_in_timestamp}")
            return CheckInResult(participant, method, already_checked_in=True, warnings=warnings)

        now = datetime.utcnow()
        await self.participant_repo.mark_checked_in(participant, now)
        guests = await self.guest_repo.mark_checked_in(participant.id, now)
        await self.checkin_repo.create(
            participant_id=participant.id,
            method=method,
            checked_by=checked_by,
            checked_in_at=now,
        )
        return CheckInResult(participant, method, guests_checked_in=guests, warnings=warnings)
