"""Participant exports and dashboard statistics."""

import csv
import io
import logging
from collections import Counter
from typing import Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession

from .database import (
    GuestRepository,
    ManualPaymentRepository,
    ManualPaymentStatus,
    Participant,
    ParticipantPaymentStatus,
    ParticipantRepository,
    PaymentRepository,
    PaymentStatus,
)

logger = logging.getLogger(__name__)

PARTICIPANT_CSV_COLUMNS = [
    "Nom",
    "Prénom",
    "Email",
    "Téléphone",
    "Membre",
    "Code SMS",
    "Statut paiement",
    "QR code",
    "Présent",
    "Heure d'arrivée",
    "Accompagnants",
]


class ExportService:
    """Builds CSV exports and aggregate counts for the admin dashboard."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.participant_repo = ParticipantRepository(session)
        self.payment_repo = PaymentRepository(session)
        self.manual_repo = ManualPaymentRepository(session)
        self.guest_repo = GuestRepository(session)

    async def _companion_counts(self) -> Counter:
        counts: Counter = Counter()
        for participant in await self.participant_repo.list_all():
            guests = await self.guest_repo.list_by_participant(participant.id)
            counts[participant.id] = sum(1 for g in guests if not g.is_main_participant)
        return counts

    async def participants_csv(self) -> str:
        """Export every participant as CSV, one row each, oldest first."""
        participants = list(reversed(await self.participant_repo.list_all()))
        companions = await self._companion_counts()

        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(PARTICIPANT_CSV_COLUMNS)
        for p in participants:
            writer.writerow([
                p.last_name,
                p.first_name,
                p.email,
                p.contact_number,
                "Oui" if p.is_member else "Non",
                p.sms_code or "",
                p.payment_status,
                p.qr_code_id or "",
                "Oui" if p.check_in_status else "Non",
                p.check_in_timestamp.isoformat() if p.check_in_timestamp else "",
                companions.get(p.id, 0),
            ])

        logger.info(f"Exported {len(participants)} participants")
        return output.getvalue()

    async def statistics(self) -> Dict[str, Any]:
        manual_counts = await self.manual_repo.count_by_status()
        gateway_counts = await self.payment_repo.count_by_status()
        manual_amount = await self.manual_repo.total_amount(ManualPaymentStatus.COMPLETED.value)
        gateway_amount = await self.payment_repo.total_amount(PaymentStatus.SUCCESS.value)

        return {
            "participants": await self.participant_repo.count_where(),
            "members": await self.participant_repo.count_where(Participant.is_member.is_(True)),
            "paid": await self.participant_repo.count_where(
                Participant.payment_status == ParticipantPaymentStatus.COMPLETED.value
            ),
            "pending": await self.participant_repo.count_where(
                Participant.payment_status == ParticipantPaymentStatus.PENDING.value
            ),
            "checked_in": await self.participant_repo.count_where(Participant.check_in_status.is_(True)),
            "guests": await self.guest_repo.count(),
            "manual_payments": {s.value: manual_counts.get(s.value, 0) for s in ManualPaymentStatus},
            "gateway_payments": {s.value: gateway_counts.get(s.value, 0) for s in PaymentStatus},
            "collected_amount": manual_amount + gateway_amount,
        }
