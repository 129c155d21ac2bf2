"""Priority-ordered matching of gateway transaction ids to stored payments."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from ..database import Payment
from .models import MatchStrategy

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class MatchResult:
    payment: Payment
    strategy: MatchStrategy


def alternate_ids(transaction_id: str, api_response_id: Optional[str]) -> List[str]:
    """Ids to look up in the api_response_id column, in priority order."""
    ids = []
    for candidate in (api_response_id, transaction_id):
        if candidate and candidate not in ids:
            ids.append(candidate)
    return ids


def _most_recent(payments: Iterable[Payment]) -> Optional[Payment]:
    return max(payments, key=lambda p: p.created_at or datetime.min, default=None)


class PaymentMatcher:
    """
    Finds the payment a gateway notification refers to.

    Strategies are tried in order and the first that yields a candidate wins:

    1. exact match on the local transaction id;
    2. exact match on the gateway API response id;
    3. bidirectional substring containment between the stored transaction id
       and the notified id.

    Whenever a strategy yields several candidates, the most recently created
    payment is chosen.
    """

    def match_exact(self, transaction_id: str, candidates: Iterable[Payment]) -> Optional[Payment]:
        return _most_recent(p for p in candidates if p.transaction_id == transaction_id)

    def match_api_response_id(self, api_response_id: str, candidates: Iterable[Payment]) -> Optional[Payment]:
        return _most_recent(p for p in candidates if p.api_response_id and p.api_response_id == api_response_id)

    def is_substring_match(self, stored_id: Optional[str], notified_id: str) -> bool:
        if not stored_id or not notified_id:
            return False
        return stored_id in notified_id or notified_id in stored_id

    def match_substring(self, transaction_id: str, candidates: Iterable[Payment]) -> Optional[Payment]:
        matches = [p for p in candidates if self.is_substring_match(p.transaction_id, transaction_id)]
        if len(matches) > 1:
            logger.warning(
                f"Transaction id {transaction_id} is ambiguous: "
                f"{len(matches)} payments match by substring, using the most recent"
            )
        return _most_recent(matches)

    def match(
        self,
        transaction_id: str,
        candidates: Iterable[Payment],
        api_response_id: Optional[str] = None,
    ) -> Optional[MatchResult]:
        """Run every strategy over an in-memory candidate list.

        Args:
            transaction_id: Id carried by the notification.
            candidates: Stored payments to search.
            api_response_id: Id the gateway reported separately; strategy 2
                tries it first, then transaction_id.

        Returns:
            MatchResult, or None when no strategy matched.
        """
        candidates = list(candidates)
        payment = self.match_exact(transaction_id, candidates)
        if payment is not None:
            return MatchResult(payment, MatchStrategy.TRANSACTION_ID)

        for alternate_id in alternate_ids(transaction_id, api_response_id):
            payment = self.match_api_response_id(alternate_id, candidates)
            if payment is not None:
                return MatchResult(payment, MatchStrategy.API_RESPONSE_ID)

        payment = self.match_substring(transaction_id, candidates)
        if payment is not None:
            return MatchResult(payment, MatchStrategy.SUBSTRING)
        return None
