"""Tests for door admission by SMS code and QR credential."""

import pytest

from iftar_portal.checkin import CheckInService
from iftar_portal.database import CheckInRepository, GuestRepository, ParticipantRepository
from iftar_portal.exceptions import NotFoundError, ValidationError


@pytest.fixture
def service(db_session):
    return CheckInService(db_session)


@pytest.fixture
async def paid_participant(db_session, participant):
    """Participant with a settled payment, a QR code and one companion."""
    await ParticipantRepository(db_session).mark_paid(participant)
    await GuestRepository(db_session).create_many(
        participant.id,
        [
            {"first_name": "Awa", "last_name": "Sigué", "is_main_participant": True},
            {"first_name": "Issa", "last_name": "Koné"},
        ],
    )
    return participant


class TestLookupByCode:
    """Tests for CheckInService.lookup_by_code."""

    async def test_lookup_is_case_and_space_insensitive(self, service, paid_participant):
        code = f"  {paid_participant.sms_code.lower()}  "

        found = await service.lookup_by_code(code)

        assert found["id"] == paid_participant.id
        assert found["payment_status"] == "completed"
        assert len(found["guests"]) == 2
        assert found["payments"] == []
        assert found["manual_payments"] == []

    async def test_unknown_code(self, service, paid_participant):
        assert await service.lookup_by_code("ZZZ-0000") is None

    async def test_blank_code(self, service):
        with pytest.raises(ValidationError):
            await service.lookup_by_code("   ")


class TestCheckIn:
    """Tests for recording admissions."""

    async def test_check_in_by_code(self, service, db_session, paid_participant):
        result = await service.check_in_by_code(paid_participant.sms_code, checked_by="door-1")

        assert result.already_checked_in is False
        assert result.guests_checked_in == 2
        assert result.method == "sms_code"
        assert result.warnings == []
        assert paid_participant.check_in_status is True
        assert paid_participant.check_in_timestamp is not None

        guests = await GuestRepository(db_session).list_by_participant(paid_participant.id)
        assert all(g.check_in_status for g in guests)
        entries = await CheckInRepository(db_session).list_by_participant(paid_participant.id)
        assert [(e.method, e.checked_by) for e in entries] == [("sms_code", "door-1")]

    async def test_second_check_in_is_reported_not_logged(self, service, db_session, paid_participant):
        await service.check_in_by_code(paid_participant.sms_code)
        first_timestamp = paid_participant.check_in_timestamp

        result = await service.check_in_by_qr(paid_participant.qr_code_id)

        assert result.already_checked_in is True
        assert paid_participant.check_in_timestamp == first_timestamp
        entries = await CheckInRepository(db_session).list_by_participant(paid_participant.id)
        assert len(entries) == 1

    async def test_check_in_by_qr(self, service, paid_participant):
        result = await service.check_in_by_qr(paid_participant.qr_code_id)

        assert result.method == "qr_scan"
        assert result.to_dict()["participant"]["check_in_status"] is True

    async def test_unknown_qr(self, service, paid_participant):
        with pytest.raises(NotFoundError):
            await service.check_in_by_qr("QR-unknown")

    async def test_unknown_code(self, service):
        with pytest.raises(NotFoundError):
            await service.check_in_by_code("ABC-1234")

    async def test_unpaid_participant_is_flagged(self, service, participant):
        result = await service.check_in_participant(participant.id, method="self-check-in")

        assert result.warnings == ["payment_not_completed"]
        assert participant.check_in_status is True

    async def test_unknown_method(self, service, participant):
        with pytest.raises(ValidationError):
            await service.check_in_participant(participant.id, method="teleport")


class TestSelfCheckIn:
    """Tests for participants confirming their own presence."""

    async def test_venue_code_admits_participant(self, service, db_session, paid_participant):
        result = await service.self_check_in(paid_participant.id, " 009 ", expected_code="009")

        assert result.method == "self-check-in"
        assert result.guests_checked_in == 2
        assert paid_participant.check_in_status is True
        entries = await CheckInRepository(db_session).list_by_participant(paid_participant.id)
        assert [(e.method, e.checked_by) for e in entries] == [("self-check-in", "self-check-in")]

    async def test_wrong_code_rejected(self, service, db_session, paid_participant):
        with pytest.raises(ValidationError) as exc_info:
            await service.self_check_in(paid_participant.id, "123", expected_code="009")

        assert exc_info.value.message == "Code de validation incorrect"
        assert not paid_participant.check_in_status
        assert await CheckInRepository(db_session).list_by_participant(paid_participant.id) == []

    async def test_closed_when_no_code_configured(self, service, paid_participant):
        with pytest.raises(ValidationError):
            await service.self_check_in(paid_participant.id, "", expected_code="")

    async def test_unknown_participant(self, service):
        with pytest.raises(NotFoundError):
            await service.self_check_in("missing", "009", expected_code="009")
