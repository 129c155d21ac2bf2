"""Tests for membership requests and their review."""

import pytest

from iftar_portal.database import ParticipantRepository
from iftar_portal.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from iftar_portal.memberships import MembershipService


@pytest.fixture
def service(db_session, portal_config, notifier):
    return MembershipService(db_session, config=portal_config, notifier=notifier)


@pytest.fixture
def membership_data():
    return {
        "first_name": "Mariam",
        "last_name": "Traoré",
        "email": "mariam.traore@example.com",
        "contact_number": "+225 0505050505",
        "profession": "Ingénieure",
        "subscription_amount": 100000,
        "payment_frequency": "monthly",
        "club_expectations": ["networking", "mentorat"],
    }


class TestRequest:
    """Tests for MembershipService.request."""

    async def test_request_creates_participant_when_missing(self, service, db_session, membership_data, email_sender, portal_config):
        membership = await service.request(**membership_data)

        assert membership.status == "pending"
        assert membership.club_expectations == ["networking", "mentorat"]
        participant = await ParticipantRepository(db_session).get_by_id(membership.participant_id)
        assert participant.email == membership_data["email"]
        assert participant.is_member is False
        assert participant.sms_code

        recipients = [call.args[1]["to_email"] for call in email_sender.send.await_args_list]
        assert recipients == [portal_config.admin_email, membership_data["email"]]

    async def test_request_links_existing_participant(self, service, participant, membership_data):
        membership_data["email"] = participant.email.upper()

        membership = await service.request(**membership_data)

        assert membership.participant_id == participant.id

    async def test_duplicate_request_rejected(self, service, membership_data):
        await service.request(**membership_data)

        with pytest.raises(InvalidTransitionError):
            await service.request(**membership_data)

    async def test_new_request_allowed_after_rejection(self, service, membership_data):
        first = await service.request(**membership_data)
        await service.reject(first.id, reason="Dossier incomplet")

        second = await service.request(**membership_data)

        assert second.id != first.id

    async def test_invalid_frequency(self, service, membership_data):
        membership_data["payment_frequency"] = "weekly"
        with pytest.raises(ValidationError):
            await service.request(**membership_data)


class TestReview:
    """Tests for approve, reject and list."""

    async def test_approve_sets_member_flag(self, service, db_session, membership_data, email_sender):
        membership = await service.request(**membership_data)
        email_sender.send.reset_mock()

        await service.approve(membership.id, reviewed_by="admin@iftar.test")

        assert membership.status == "approved"
        assert membership.reviewed_by == "admin@iftar.test"
        assert membership.reviewed_at is not None
        participant = await ParticipantRepository(db_session).get_by_id(membership.participant_id)
        assert participant.is_member is True
        template_id, params = email_sender.send.await_args.args
        assert template_id == service.config.email_templates.membership_decision
        assert params["decision"] == "approved"

    async def test_reject_records_reason(self, service, membership_data):
        membership = await service.request(**membership_data)

        await service.reject(membership.id, reason="Dossier incomplet")

        assert membership.status == "rejected"
        assert membership.rejection_reason == "Dossier incomplet"
        with pytest.raises(InvalidTransitionError):
            await service.approve(membership.id)

    async def test_unknown_membership(self, service):
        with pytest.raises(NotFoundError):
            await service.approve("missing")

    async def test_list_by_status(self, service, membership_data):
        first = await service.request(**membership_data)
        membership_data["email"] = "other@example.com"
        second = await service.request(**membership_data)
        await service.approve(first.id)

        assert [m.id for m in await service.list("pending")] == [second.id]
        assert {m.id for m in await service.list()} == {first.id, second.id}
        with pytest.raises(ValidationError):
            await service.list("archived")
