"""Tests for priority-ordered payment matching."""

import pytest
from datetime import datetime, timedelta

from iftar_portal.database import Payment
from iftar_portal.reconciliation import (
    MatchStrategy,
    PaymentMatcher,
    alternate_ids,
    map_gateway_status,
)


def make_payment(transaction_id, api_response_id=None, age_minutes=0, payment_id=None):
    """Build a transient payment row."""
    return Payment(
        id=payment_id or f"pay-{transaction_id}",
        participant_id="participant-1",
        amount=1000,
        currency="XOF",
        payment_method="MOBILE_MONEY",
        status="pending",
        transaction_id=transaction_id,
        api_response_id=api_response_id,
        created_at=datetime(2025, 3, 1, 18, 0) - timedelta(minutes=age_minutes),
    )


@pytest.fixture
def matcher():
    return PaymentMatcher()


class TestStatusMapping:
    """Tests for gateway status mapping."""

    def test_known_statuses(self):
        assert map_gateway_status("ACCEPTED") == "success"
        assert map_gateway_status("REFUSED") == "failed"

    def test_everything_else_is_pending(self):
        for status in ("PENDING", "WAITING_FOR_CUSTOMER", "", None):
            assert map_gateway_status(status) == "pending"

    def test_case_and_whitespace_tolerant(self):
        assert map_gateway_status(" accepted ") == "success"


class TestPaymentMatcher:
    """Tests for the matching strategies and their order."""

    def test_exact_transaction_id(self, matcher):
        target = make_payment("3f2b9c1e-1111-4c3a-9d11-000000000001")
        other = make_payment("3f2b9c1e-2222-4c3a-9d11-000000000002")

        result = matcher.match(target.transaction_id, [other, target])

        assert result.payment is target
        assert result.strategy == MatchStrategy.TRANSACTION_ID

    def test_exact_beats_substring(self, matcher):
        """A payment whose id contains the notified id loses to the exact one."""
        exact = make_payment("TXN-20250301-0001", age_minutes=10)
        longer = make_payment("TXN-20250301-0001-retry", age_minutes=0)

        result = matcher.match("TXN-20250301-0001", [longer, exact])

        assert result.payment is exact
        assert result.strategy == MatchStrategy.TRANSACTION_ID

    def test_api_response_id_from_payload(self, matcher):
        target = make_payment("local-tx-000001", api_response_id="cp_api_778899")

        result = matcher.match("gateway-side-id", [target], api_response_id="cp_api_778899")

        assert result.payment is target
        assert result.strategy == MatchStrategy.API_RESPONSE_ID

    def test_api_response_id_equal_to_callback_id(self, matcher):
        target = make_payment("local-tx-000001", api_response_id="cp_api_778899")

        result = matcher.match("cp_api_778899", [target])

        assert result.payment is target
        assert result.strategy == MatchStrategy.API_RESPONSE_ID

    def test_substring_stored_inside_notified(self, matcher):
        target = make_payment("a1b2c3d4e5f6")

        result = matcher.match("CP-a1b2c3d4e5f6-XOF", [target])

        assert result.payment is target
        assert result.strategy == MatchStrategy.SUBSTRING

    def test_substring_notified_inside_stored(self, matcher):
        target = make_payment("prefix-a1b2c3d4e5f6-suffix")

        result = matcher.match("a1b2c3d4e5f6", [target])

        assert result.payment is target
        assert result.strategy == MatchStrategy.SUBSTRING

    def test_substring_tie_goes_to_most_recent(self, matcher):
        older = make_payment("a1b2c3d4e5f6-first", age_minutes=30)
        newer = make_payment("a1b2c3d4e5f6-second", age_minutes=5)

        result = matcher.match("a1b2c3d4e5f6", [older, newer])

        assert result.payment is newer

    def test_short_stored_id_matches_by_substring(self, matcher):
        target = make_payment("TX123")

        result = matcher.match("CP-TX123-XYZ", [target])

        assert result.payment is target
        assert result.strategy == MatchStrategy.SUBSTRING

    def test_empty_stored_id_never_matches(self, matcher):
        assert matcher.is_substring_match("", "CP-TX123-XYZ") is False
        assert matcher.is_substring_match(None, "CP-TX123-XYZ") is False

    def test_no_match(self, matcher):
        assert matcher.match("unknown-transaction", [make_payment("something-else-entirely")]) is None

    def test_empty_candidates(self, matcher):
        assert matcher.match("anything-at-all", []) is None


class TestAlternateIds:
    """Tests for the api_response_id lookup order."""

    def test_payload_id_first(self):
        assert alternate_ids("tx-1", "api-1") == ["api-1", "tx-1"]

    def test_no_duplicates(self):
        assert alternate_ids("tx-1", "tx-1") == ["tx-1"]

    def test_missing_payload_id(self):
        assert alternate_ids("tx-1", None) == ["tx-1"]
