"""Association membership requests and their review."""

import logging
from typing import Optional, List, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from .config import PortalConfig
from .database import (
    Membership,
    MembershipRepository,
    MembershipStatus,
    ParticipantRepository,
)
from .exceptions import InvalidTransitionError, NotFoundError, ValidationError
from .notifications import NotificationService
from .registration import validate_contact_number, validate_email, validate_name
from .shortcodes import assign_sms_code

logger = logging.getLogger(__name__)

DEFAULT_SUBSCRIPTION_AMOUNT = 100000
PAYMENT_FREQUENCIES = ("monthly", "annual")


class MembershipService:
    """Handles membership requests from submission to admin decision."""

    def __init__(
        self,
        session: AsyncSession,
        config: Optional[PortalConfig] = None,
        notifier: Optional[NotificationService] = None,
    ):
        self.session = session
        self.config = config or PortalConfig.from_env()
        self.notifier = notifier or NotificationService(self.config)
        self.membership_repo = MembershipRepository(session)
        self.participant_repo = ParticipantRepository(session)

    async def request(
        self,
        first_name: str,
        last_name: str,
        email: str,
        contact_number: str,
        profession: Optional[str] = None,
        address: Optional[str] = None,
        subscription_amount: int = DEFAULT_SUBSCRIPTION_AMOUNT,
        subscription_start_month: Optional[str] = None,
        payment_method: Optional[str] = None,
        payment_frequency: Optional[str] = None,
        competence_domains: Optional[str] = None,
        club_expectations: Sequence[str] = (),
        other_expectations: Optional[str] = None,
    ) -> Membership:
        """Submit a membership request.

        The request is linked to the participant registered with the same
        email. A participant is created when none exists.

        Raises:
            ValidationError: If a field is invalid.
            InvalidTransitionError: If the email already has a pending or
                approved request.
        """
        first_name = validate_name(first_name, "first_name")
        last_name = validate_name(last_name, "last_name")
        email = validate_email(email)
        contact_number = validate_contact_number(contact_number)
        if subscription_amount <= 0:
            raise ValidationError("subscription_amount must be positive", {"field": "subscription_amount"})
        if payment_frequency and payment_frequency not in PAYMENT_FREQUENCIES:
            raise ValidationError(
                f"payment_frequency must be one of {', '.join(PAYMENT_FREQUENCIES)}",
                {"field": "payment_frequency"},
            )

        existing = await self.membership_repo.find_active_by_email(email)
        if existing is not None:
            raise InvalidTransitionError(
                "Une demande d'adhésion existe déjà pour cet email",
                {"membership_id": existing.id, "status": existing.status},
            )

        participant = await self.participant_repo.get_by_email(email)
        if participant is None:
            participant = await self.participant_repo.create(
                first_name=first_name,
                last_name=last_name,
                email=email,
                contact_number=contact_number,
                is_member=False,
            )
            await assign_sms_code(self.session, participant)

        membership = await self.membership_repo.create(
            participant_id=participant.id,
            first_name=first_name,
            last_name=last_name,
            email=email,
            contact_number=contact_number,
            profession=profession,
            address=address,
            subscription_amount=subscription_amount,
            subscription_start_month=subscription_start_month,
            payment_method=payment_method,
            payment_frequency=payment_frequency,
            competence_domains=competence_domains,
            club_expectations=list(club_expectations),
            other_expectations=other_expectations,
        )
        await self.notifier.send_membership_requested(membership)
        return membership

    async def _get_pending(self, membership_id: str) -> Membership:
        membership = await self.membership_repo.get_by_id(membership_id)
        if membership is None:
            raise NotFoundError(f"Membership {membership_id} not found")
        if membership.status != MembershipStatus.PENDING.value:
            raise InvalidTransitionError(
                f"Membership {membership_id} is already {membership.status}",
                {"status": membership.status},
            )
        return membership

    async def approve(self, membership_id: str, reviewed_by: str = "Admin") -> Membership:
        membership = await self._get_pending(membership_id)
        await self.membership_repo.update_status(
            membership, MembershipStatus.APPROVED.value, reviewed_by=reviewed_by
        )
        if membership.participant_id:
            participant = await self.participant_repo.get_by_id(membership.participant_id)
            if participant is not None:
                participant.is_member = True
                await self.session.flush()
        await self.notifier.send_membership_decision(membership)
        return membership

    async def reject(self, membership_id: str, reason: str = "", reviewed_by: str = "Admin") -> Membership:
        membership = await self._get_pending(membership_id)
        await self.membership_repo.update_status(
            membership,
            MembershipStatus.REJECTED.value,
            reviewed_by=reviewed_by,
            rejection_reason=(reason or "").strip() or None,
        )
        await self.notifier.send_membership_decision(membership)
        return membership

    async def list(self, status: Optional[str] = None) -> List[Membership]:
        if status and status not in {s.value for s in MembershipStatus}:
            raise ValidationError(f"Unknown status: {status}", {"field": "status"})
        return await self.membership_repo.list_by_status(status)
