"""
Candidate Matching Rules

Decides which ledger transactions could plausibly be the same real-world
event as a given bank transaction.

A ledger transaction is a candidate iff all of the following hold:
- it is not already matched
- its amount equals the bank amount exactly (Decimal, no tolerance)
- its kind agrees with the bank polarity (credit/income, debit/expense)
- its date is within DATE_TOLERANCE_DAYS of the bank date

The rules are pure: they never mutate their inputs and always return
candidates in input order.
"""

import logging
from typing import Iterable, List, Optional

from reconciliation.models import (
    COMPATIBLE_KIND,
    ExternalTransaction,
    InternalTransaction,
)

logger = logging.getLogger(__name__)


class CandidateMatchingRules:
    """
    Matching rules engine for bank vs. ledger transactions.
    """

    DATE_TOLERANCE_DAYS = 3

    def __init__(self, date_tolerance_days: Optional[int] = None):
        if date_tolerance_days is None:
            date_tolerance_days = self.DATE_TOLERANCE_DAYS
        if date_tolerance_days < 0:
            raise ValueError("date_tolerance_days must be >= 0")
        self.date_tolerance_days = date_tolerance_days

    def find_candidates(
        self,
        external: ExternalTransaction,
        internal_transactions: Iterable[InternalTransaction]
    ) -> List[InternalTransaction]:
        """
        Find ledger candidates for one bank transaction.

        Args:
            external: The bank transaction to match
            internal_transactions: Ledger transactions of the session

        Returns:
            Qualifying ledger transactions, in input order. Empty if the
            bank transaction is already matched.
        """
        if external.matched:
            logger.debug(
                f"Candidate search on matched external transaction {external.id} "
                f"(matched to {external.matched_to_id}), returning no candidates"
            )
            return []

        return [
            internal for internal in internal_transactions
            if self.is_candidate(external, internal)
        ]

    def is_candidate(self, external: ExternalTransaction, internal: InternalTransaction) -> bool:
        return (
            not internal.matched
            and self._amount_matches(external, internal)
            and self._kind_matches(external, internal)
            and self._date_matches(external, internal)
        )

    def _amount_matches(self, external: ExternalTransaction, internal: InternalTransaction) -> bool:
        return internal.amount == external.amount

    def _kind_matches(self, external: ExternalTransaction, internal: InternalTransaction) -> bool:
        return COMPATIBLE_KIND[external.polarity] == internal.kind

    def _date_matches(self, external: ExternalTransaction, internal: InternalTransaction) -> bool:
        return abs((external.date - internal.date).days) <= self.date_tolerance_days


# Default rules engine
candidate_rules = CandidateMatchingRules()


def find_candidates(
    external: ExternalTransaction,
    internal_transactions: Iterable[InternalTransaction],
    date_window_days: Optional[int] = None
) -> List[InternalTransaction]:
    """Module-level shortcut for CandidateMatchingRules.find_candidates."""
    rules = candidate_rules if date_window_days is None else CandidateMatchingRules(date_window_days)
    return rules.find_candidates(external, internal_transactions)
