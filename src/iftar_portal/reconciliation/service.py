"""Service layer applying gateway outcomes to stored payments."""

import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import PortalConfig
from ..connectors import GatewayConnector, get_connector
from ..database import (
    Payment,
    PaymentRepository,
    ParticipantRepository,
    PaymentHistoryRepository,
    PaymentStatus,
    PaymentKind,
    HistoryAction,
)
from ..exceptions import (
    GatewayError,
    NotFoundError,
    PaymentNotFoundError,
    SiteMismatchError,
    ValidationError,
)
from ..notifications import NotificationService
from .matcher import MatchResult, PaymentMatcher, alternate_ids
from .models import (
    GatewayNotification,
    MatchStrategy,
    ReconciliationOutcome,
    ReconciliationStatus,
    SweepItem,
    SweepReport,
    map_gateway_status,
)
from .report import ReportGenerator

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    PaymentStatus.SUCCESS.value: "Paiement confirmé",
    PaymentStatus.FAILED.value: "Paiement refusé",
    PaymentStatus.PENDING.value: "Paiement en attente",
}

# Cap on ids written to the log when a notification matches nothing
MAX_LOGGED_IDS = 50


@dataclass
class Transition:
    previous_status: str
    new_status: str
    already_processed: bool = False
    qr_code_issued: bool = False


class ReconciliationService:
    """Ties gateway notifications and status checks to local payments."""

    def __init__(
        self,
        session: AsyncSession,
        config: Optional[PortalConfig] = None,
        notifier: Optional[NotificationService] = None,
        connector: Optional[GatewayConnector] = None,
        matcher: Optional[PaymentMatcher] = None,
    ):
        """Initialize the reconciliation service.

        Args:
            session: Async database session.
            config: Portal configuration; read from the environment if omitted.
            notifier: Notification service for confirmation emails.
            connector: Gateway connector used by sweeps. Created on demand.
            matcher: Payment matcher.
        """
        self.session = session
        self.config = config or PortalConfig.from_env()
        self.notifier = notifier or NotificationService(self.config)
        self._connector = connector
        self.matcher = matcher or PaymentMatcher()
        self.payment_repo = PaymentRepository(session)
        self.participant_repo = ParticipantRepository(session)
        self.history_repo = PaymentHistoryRepository(session)

    @property
    def connector(self) -> GatewayConnector:
        if self._connector is None:
            self._connector = get_connector("cinetpay", self.config)
        return self._connector

    async def find_payment(
        self,
        transaction_id: str,
        api_response_id: Optional[str] = None,
    ) -> Optional[MatchResult]:
        """Locate the payment a gateway transaction id refers to.

        The two exact strategies use indexed lookups; only the substring
        fallback scans the payments table.

        Args:
            transaction_id: Id carried by the notification.
            api_response_id: Separate gateway id, if the notification had one.

        Returns:
            MatchResult, or None if no strategy matched.
        """
        payment = await self.payment_repo.get_by_transaction_id(transaction_id)
        if payment is not None:
            return MatchResult(payment, MatchStrategy.TRANSACTION_ID)

        for alternate_id in alternate_ids(transaction_id, api_response_id):
            candidates = await self.payment_repo.find_by_api_response_id(alternate_id)
            payment = self.matcher.match_api_response_id(alternate_id, candidates)
            if payment is not None:
                logger.info(f"Matched {transaction_id} to payment {payment.id} by API response id")
                return MatchResult(payment, MatchStrategy.API_RESPONSE_ID)

        payment = self.matcher.match_substring(transaction_id, await self.payment_repo.list_all())
        if payment is not None:
            logger.warning(
                f"Matched {transaction_id} to payment {payment.id} "
                f"({payment.transaction_id}) by substring"
            )
            return MatchResult(payment, MatchStrategy.SUBSTRING)
        return None

    async def handle_notification(self, notification: GatewayNotification) -> ReconciliationOutcome:
        """Apply one gateway notification.

        Args:
            notification: Parsed notification body.

        Returns:
            ReconciliationOutcome describing the transition.

        Raises:
            ValidationError: If the transaction or site id is missing.
            SiteMismatchError: If the site id is not ours. Nothing is looked up.
            PaymentNotFoundError: If no payment matches the transaction id.
        """
        missing = [
            name for name in ("cpm_trans_id", "cpm_site_id")
            if not getattr(notification, name)
        ]
        if missing:
            logger.error(f"Incomplete gateway notification, missing {missing}")
            raise ValidationError("Données incomplètes", {"missing_fields": missing})

        if notification.cpm_site_id != self.config.cinetpay_site_id:
            logger.error(
                f"Gateway notification for unknown site {notification.cpm_site_id} "
                f"(transaction {notification.cpm_trans_id})"
            )
            raise SiteMismatchError(notification.cpm_site_id)

        transaction_id = notification.cpm_trans_id
        logger.info(
            f"Gateway notification for {transaction_id}: status={notification.status} "
            f"operator_id={notification.operator_id}"
        )

        match = await self.find_payment(transaction_id, notification.api_response_id)
        if match is None:
            known = [p.transaction_id for p in await self.payment_repo.list_all()]
            logger.error(
                f"No payment matches transaction {transaction_id}; "
                f"{len(known)} known transaction ids: {known[:MAX_LOGGED_IDS]}"
            )
            raise PaymentNotFoundError(
                transaction_id, alternate_ids(transaction_id, notification.api_response_id)
            )

        payment = match.payment
        amount_mismatch = notification.amount is not None and notification.amount != payment.amount
        if amount_mismatch:
            logger.warning(
                f"Amount mismatch for payment {payment.id}: "
                f"stored {payment.amount}, notified {notification.amount}"
            )

        transition = await self.apply_status(
            payment,
            map_gateway_status(notification.status),
            action=HistoryAction.WEBHOOK,
            source="cinetpay-webhook",
            operator_id=notification.operator_id,
            api_response_id=notification.api_response_id,
            payment_date=notification.payment_date,
            details={
                "gateway_status": notification.status,
                "notified_transaction_id": transaction_id,
                "strategy": match.strategy.value,
            },
        )

        message = STATUS_MESSAGES[transition.new_status]
        if transition.already_processed:
            message = f"Notification déjà traitée: {message.lower()}"

        return ReconciliationOutcome(
            transaction_id=payment.transaction_id,
            payment_id=payment.id,
            participant_id=payment.participant_id,
            previous_status=transition.previous_status,
            new_status=transition.new_status,
            strategy=match.strategy,
            already_processed=transition.already_processed,
            qr_code_issued=transition.qr_code_issued,
            amount_mismatch=amount_mismatch,
            message=message,
        )

    async def apply_status(
        self,
        payment: Payment,
        new_status: str,
        action: HistoryAction,
        source: str,
        operator_id: Optional[str] = None,
        api_response_id: Optional[str] = None,
        payment_date: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> Transition:
        """Move a payment to a new status.

        A payment in a terminal status never changes again: the call is
        recorded as ignored and reported as already processed. On success
        the participant is marked paid and given a QR code once.

        Args:
            payment: Payment to update.
            new_status: Local status derived from the gateway.
            action: History action to record.
            source: Who or what reported the status.
            operator_id: Operator reference from the gateway.
            api_response_id: Gateway API response id.
            payment_date: Settlement date from the gateway.
            details: Extra data stored with the history row.

        Returns:
            Transition summary.
        """
        previous_status = payment.status

        if payment.is_terminal:
            if new_status != previous_status:
                logger.warning(
                    f"Ignoring {new_status} for payment {payment.id}: "
                    f"already {previous_status}"
                )
            else:
                logger.info(f"Payment {payment.id} already {previous_status}; redelivery ignored")
            await self.history_repo.record(
                payment_id=payment.id,
                payment_kind=PaymentKind.GATEWAY.value,
                action=HistoryAction.REDELIVERY_IGNORED.value,
                previous_status=previous_status,
                new_status=previous_status,
                source=source,
                details=dict(details or {}, reported_status=new_status),
            )
            issued = False
            if previous_status == PaymentStatus.SUCCESS.value:
                issued = await self._settle_participant(payment)
            return Transition(previous_status, previous_status, already_processed=True, qr_code_issued=issued)

        await self.payment_repo.update_status(
            payment,
            new_status,
            operator_id=operator_id,
            api_response_id=api_response_id,
            payment_date=payment_date,
        )
        await self.history_repo.record(
            payment_id=payment.id,
            payment_kind=PaymentKind.GATEWAY.value,
            action=action.value,
            previous_status=previous_status,
            new_status=new_status,
            source=source,
            details=details,
        )

        issued = False
        if new_status == PaymentStatus.SUCCESS.value:
            issued = await self._settle_participant(payment)
        return Transition(previous_status, new_status, qr_code_issued=issued)

    async def _settle_participant(self, payment: Payment) -> bool:
        participant = await self.participant_repo.get_by_id(payment.participant_id)
        if participant is None:
            raise NotFoundError(f"Participant {payment.participant_id} not found for payment {payment.id}")
        issued = await self.participant_repo.mark_paid(participant)
        if issued:
            await self.notifier.send_payment_confirmed(participant)
        return issued

    async def sweep_pending(self, older_than_minutes: int = 0) -> SweepReport:
        """Ask the gateway about every pending payment and apply the answers.

        Args:
            older_than_minutes: Skip payments initiated more recently than this.

        Returns:
            SweepReport with one item per examined payment.
        """
        report = SweepReport(
            id=str(uuid.uuid4()),
            status=ReconciliationStatus.IN_PROGRESS,
            provider=self.connector.name,
            older_than_minutes=older_than_minutes,
        )
        logger.info(f"Starting pending sweep {report.id} (older than {older_than_minutes} min)")

        try:
            cutoff = datetime.utcnow() - timedelta(minutes=older_than_minutes)
            pending = await self.payment_repo.list_pending(created_before=cutoff)

            for payment in pending:
                item = SweepItem(
                    payment_id=payment.id,
                    transaction_id=payment.transaction_id,
                    previous_status=payment.status,
                )
                report.items.append(item)
                report.total_checked += 1
                try:
                    check = await self.connector.check(payment.transaction_id)
                except GatewayError as e:
                    logger.warning(f"Could not check payment {payment.id}: {e.message}")
                    item.error = e.message
                    report.total_errors += 1
                    continue

                item.gateway_status = check.status
                transition = await self.apply_status(
                    payment,
                    map_gateway_status(check.status),
                    action=HistoryAction.SWEEP,
                    source=f"sweep:{report.id}",
                    operator_id=check.operator_id,
                    payment_date=check.payment_date,
                    details={"gateway_status": check.status},
                )
                item.new_status = transition.new_status
                if transition.new_status == PaymentStatus.PENDING.value:
                    report.total_still_pending += 1
                else:
                    report.total_updated += 1

            report.status = ReconciliationStatus.COMPLETED
            logger.info(
                f"Pending sweep {report.id} completed: {report.total_checked} checked, "
                f"{report.total_updated} updated, {report.total_errors} errors"
            )
        except Exception as e:
            logger.exception(f"Pending sweep {report.id} failed")
            report.status = ReconciliationStatus.FAILED
            report.error_message = str(e)

        report.completed_at = datetime.utcnow()
        return report

    def generate_report(self, report: SweepReport, format: str = "json", include_details: bool = True) -> str:
        """Format a sweep report.

        Args:
            report: SweepReport to format.
            format: Output format ('json', 'csv', 'text').
            include_details: Include per-payment items (for JSON format).

        Returns:
            Formatted report string.
        """
        generator = ReportGenerator(report)
        if format == "json":
            return generator.to_json(include_details=include_details)
        elif format == "csv":
            return generator.to_csv()
        elif format == "text":
            return generator.to_summary_text()
        else:
            raise ValueError(f"Unsupported report format: {format}")
