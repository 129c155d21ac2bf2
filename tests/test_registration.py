"""Tests for participant registration."""

import re
import pytest

from iftar_portal.database import (
    CheckInRepository,
    GuestRepository,
    ManualPaymentRepository,
    MembershipRepository,
    ParticipantRepository,
    PaymentRepository,
)
from iftar_portal.exceptions import NotFoundError, ValidationError
from iftar_portal.registration import (
    RegistrationService,
    validate_contact_number,
    validate_email,
    validate_name,
)


@pytest.fixture
def service(db_session, portal_config, notifier, rng):
    return RegistrationService(db_session, config=portal_config, notifier=notifier, rng=rng)


class TestValidators:
    """Tests for field validation."""

    def test_names(self):
        assert validate_name("  Awa ", "first_name") == "Awa"
        with pytest.raises(ValidationError) as exc_info:
            validate_name(" A ", "first_name")
        assert exc_info.value.details == {"field": "first_name"}

    def test_email(self):
        assert validate_email("awa@example.com") == "awa@example.com"
        for bad in ("", "awa", "awa@example", "awa @example.com"):
            with pytest.raises(ValidationError):
                validate_email(bad)

    def test_contact_number(self):
        assert validate_contact_number("+225 0701234567") == "+225 0701234567"
        assert validate_contact_number("+22507012345") == "+22507012345"
        for bad in ("0701234567", "+225 0701", "+225 07 01 23 45 67", "+2250701234567890"):
            with pytest.raises(ValidationError):
                validate_contact_number(bad)


class TestRegister:
    """Tests for RegistrationService.register."""

    async def test_register_creates_pending_participant(self, service, participant_data, sms_sender):
        participant = await service.register(**participant_data)

        assert participant.id
        assert participant.payment_status == "pending"
        assert participant.qr_code_id is None
        assert participant.check_in_status is False
        assert re.match(r"^SIG-\d{4}$", participant.sms_code)

        phone, message = sms_sender.send.await_args.args
        assert phone == participant_data["contact_number"]
        assert participant.sms_code in message

    async def test_sms_failure_is_not_fatal(self, service, participant_data, sms_sender):
        sms_sender.send.side_effect = RuntimeError("gateway down")

        participant = await service.register(**participant_data)

        assert participant.sms_code

    async def test_invalid_input_writes_nothing(self, service, db_session, participant_data):
        participant_data["contact_number"] = "0701234567"

        with pytest.raises(ValidationError):
            await service.register(**participant_data)

        assert await ParticipantRepository(db_session).count_where() == 0

    async def test_get_participant(self, service, participant):
        assert (await service.get_participant(participant.id)).id == participant.id
        with pytest.raises(NotFoundError):
            await service.get_participant("missing")


class TestDelete:
    """Tests for participant removal."""

    async def test_delete_removes_dependents(self, service, db_session, participant):
        await PaymentRepository(db_session).create(
            participant_id=participant.id,
            amount=1000,
            currency="XOF",
            payment_method="MOBILE_MONEY",
            transaction_id="tx-delete-0001",
        )
        manual_payment = await ManualPaymentRepository(db_session).create(
            participant_id=participant.id, amount=1000, payment_method="MTN", phone_number="0701234567",
        )
        await GuestRepository(db_session).create_many(
            participant.id,
            [{"first_name": "Awa", "last_name": "Sigué", "is_main_participant": True}],
            manual_payment.id,
        )
        await CheckInRepository(db_session).create(participant.id, "manual")
        membership = await MembershipRepository(db_session).create(
            participant_id=participant.id,
            first_name="Awa",
            last_name="Sigué",
            email=participant.email,
            contact_number=participant.contact_number,
        )
        participant_id = participant.id

        await service.delete_participant(participant_id)

        assert await ParticipantRepository(db_session).get_by_id(participant_id) is None
        assert await PaymentRepository(db_session).list_by_participant(participant_id) == []
        assert await ManualPaymentRepository(db_session).list_by_participant(participant_id) == []
        assert await GuestRepository(db_session).list_by_participant(participant_id) == []
        kept = await MembershipRepository(db_session).get_by_id(membership.id)
        assert kept is not None and kept.participant_id is None

    async def test_wipe_all(self, service, participant_data):
        await service.register(**participant_data, send_sms=False)
        participant_data["email"] = "other@example.com"
        await service.register(**participant_data, send_sms=False)

        assert await service.wipe_all() == 2
        assert await ParticipantRepository(service.session).count_where() == 0
