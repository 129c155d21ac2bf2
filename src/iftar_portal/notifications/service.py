"""Best-effort participant and admin notifications."""

import logging
from datetime import datetime
from typing import Any, Awaitable, Dict, Iterable, List, Optional
from urllib.parse import quote

from ..config import PortalConfig
from ..database import Participant, ManualPayment, Membership
from ..exceptions import NotificationError
from .senders import EmailSender, SmsSender

logger = logging.getLogger(__name__)

FROM_NAME = "IFTAR"
QR_IMAGE_API = "https://api.qrserver.com/v1/create-qr-code/?size=300x300&qzone=2&data="


class NotificationService:
    """
    Builds parameter bags for each transactional message and hands them to
    the senders.

    Every public method returns True when the message was accepted by the
    provider and False otherwise; failures are logged and never raised, so
    a payment or check-in is never undone by a mail outage.
    """

    def __init__(
        self,
        config: Optional[PortalConfig] = None,
        email_sender: Optional[EmailSender] = None,
        sms_sender: Optional[SmsSender] = None,
    ):
        self.config = config or PortalConfig.from_env()
        self.email_sender = email_sender or EmailSender(self.config)
        self.sms_sender = sms_sender or SmsSender(self.config)
        self.templates = self.config.email_templates

    async def _deliver(self, description: str, send: Awaitable[None]) -> bool:
        try:
            await send
        except NotificationError as e:
            logger.warning(f"Could not send {description}: {e.message}")
            return False
        except Exception:
            logger.exception(f"Unexpected error while sending {description}")
            return False
        return True

    def _participant_params(self, participant: Participant) -> Dict[str, Any]:
        return {
            "to_email": participant.email,
            "to_name": participant.full_name,
            "from_name": FROM_NAME,
            "prenom": participant.first_name,
            "nom": participant.last_name,
            "email": participant.email,
            "tel": participant.contact_number or "Non disponible",
            "status": "Membre" if participant.is_member else "Non membre",
            "participant_id": participant.id,
            "app_url": self.config.public_base_url,
            "current_date": datetime.utcnow().strftime("%d/%m/%Y %H:%M"),
        }

    def confirmation_url(self, participant: Participant) -> str:
        return f"{self.config.public_base_url}/confirmation/{participant.id}"

    async def send_participant_pending(self, participant: Participant, manual_payment: ManualPayment) -> bool:
        """Tell the participant their proof was received and awaits validation."""
        params = self._participant_params(participant)
        params.update({
            "amount": manual_payment.amount,
            "payment_method": manual_payment.payment_method,
            "number_of_places": manual_payment.number_of_places,
        })
        return await self._deliver(
            f"pending email to {participant.email}",
            self.email_sender.send(self.templates.participant_initial, params),
        )

    async def send_admin_new_payment(self, participant: Participant, manual_payment: ManualPayment) -> bool:
        """Ask the administrator to review a manual payment."""
        if not self.config.admin_email:
            logger.warning("ADMIN_EMAIL is not configured; skipping admin notification")
            return False
        params = self._participant_params(participant)
        params.update({
            "to_email": self.config.admin_email,
            "to_name": "Administrateur",
            "amount": manual_payment.amount,
            "payment_method": manual_payment.payment_method,
            "payment_phone": manual_payment.phone_number,
            "comments": manual_payment.comments or "",
            "screenshot_url": manual_payment.screenshot_url or "",
            "validation_link": self.config.validation_url(manual_payment.id),
            "payment_id": manual_payment.id,
        })
        return await self._deliver(
            f"admin notification for manual payment {manual_payment.id}",
            self.email_sender.send(self.templates.admin_notification, params),
        )

    async def send_payment_confirmed(self, participant: Participant) -> bool:
        """Send the access credential once a payment is settled."""
        confirmation_url = self.confirmation_url(participant)
        params = self._participant_params(participant)
        params.update({
            "qr_code_id": participant.qr_code_id or "",
            "qr_code_url": QR_IMAGE_API + quote(confirmation_url, safe=""),
            "confirmation_url": confirmation_url,
            "sms_code": participant.sms_code or "",
        })
        return await self._deliver(
            f"confirmation email to {participant.email}",
            self.email_sender.send(self.templates.confirmation, params),
        )

    async def send_admin_payment_validated(self, participant: Participant, manual_payment: ManualPayment) -> bool:
        if not self.config.admin_email:
            return False
        params = self._participant_params(participant)
        params.update({
            "to_email": self.config.admin_email,
            "to_name": "Administrateur",
            "payment_id": manual_payment.id,
            "amount": manual_payment.amount,
            "validated_by": manual_payment.validated_by or "",
        })
        return await self._deliver(
            f"admin validation notice for {manual_payment.id}",
            self.email_sender.send(self.templates.admin_notification, params),
        )

    async def send_payment_rejected(self, participant: Participant, reason: str) -> bool:
        params = self._participant_params(participant)
        params["rejection_reason"] = reason or "Non précisée"
        return await self._deliver(
            f"rejection email to {participant.email}",
            self.email_sender.send(self.templates.rejection, params),
        )

    async def send_sms_code(self, participant: Participant) -> bool:
        """Text the check-in code to the participant."""
        if not participant.sms_code:
            return False
        message = (
            f"Bonjour {participant.first_name}, votre code IFTAR est {participant.sms_code}. "
            f"Présentez-le à l'accueil le jour de l'événement."
        )
        return await self._deliver(
            f"SMS code to participant {participant.id}",
            self.sms_sender.send(participant.contact_number, message),
        )

    async def send_membership_requested(self, membership: Membership) -> bool:
        """Notify the administrator and acknowledge the requester.

        Returns:
            True only if both messages were accepted.
        """
        params = {
            "to_email": membership.email,
            "to_name": f"{membership.first_name} {membership.last_name}",
            "from_name": FROM_NAME,
            "prenom": membership.first_name,
            "nom": membership.last_name,
            "email": membership.email,
            "tel": membership.contact_number,
            "profession": membership.profession or "",
            "subscription_amount": membership.subscription_amount,
            "payment_frequency": membership.payment_frequency or "",
            "membership_id": membership.id,
        }
        admin_sent = False
        if self.config.admin_email:
            admin_params = dict(params, to_email=self.config.admin_email, to_name="Administrateur")
            admin_sent = await self._deliver(
                f"membership request notice for {membership.id}",
                self.email_sender.send(self.templates.membership_request, admin_params),
            )
        requester_sent = await self._deliver(
            f"membership acknowledgement to {membership.email}",
            self.email_sender.send(self.templates.membership_request, params),
        )
        return admin_sent and requester_sent

    async def send_membership_decision(self, membership: Membership) -> bool:
        params = {
            "to_email": membership.email,
            "to_name": f"{membership.first_name} {membership.last_name}",
            "from_name": FROM_NAME,
            "prenom": membership.first_name,
            "nom": membership.last_name,
            "decision": membership.status,
            "rejection_reason": membership.rejection_reason or "",
        }
        return await self._deliver(
            f"membership {membership.status} email to {membership.email}",
            self.email_sender.send(self.templates.membership_decision, params),
        )

    async def send_bulk_message(
        self, participants: Iterable[Participant], subject: str, message: str
    ) -> List[Dict[str, Any]]:
        """Send one free-text message to each participant.

        Recipients are handled one after another; a failed send is recorded
        and the remaining recipients still get the message.

        Returns:
            One ``{"participant_id", "email", "sent"}`` entry per recipient.
        """
        results = []
        for participant in participants:
            params = self._participant_params(participant)
            params.update({"subject": subject, "message": message})
            sent = await self._deliver(
                f"message '{subject}' to {participant.email}",
                self.email_sender.send(self.templates.broadcast, params),
            )
            results.append({"participant_id": participant.id, "email": participant.email, "sent": sent})

        logger.info(f"Message '{subject}' sent to {sum(r['sent'] for r in results)}/{len(results)} participants")
        return results
