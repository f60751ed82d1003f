"""
Transaction Store

Owns the two collections of one reconciliation session, keyed by id, and
is the only place that changes a record's match state. Links are always
written to both sides in a single update so the pair is mutual and 1:1.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from reconciliation.errors import (
    InvalidMatchStateError,
    MismatchedPairError,
    TransactionNotFoundError,
)
from reconciliation.models import (
    UNMATCHED,
    ExternalTransaction,
    InternalTransaction,
    Matched,
)

logger = logging.getLogger(__name__)


class TransactionStore:
    """
    In-memory arena of bank (external) and ledger (internal) transactions.

    Insertion order is preserved for both collections.
    """

    def __init__(
        self,
        external_transactions: Iterable[ExternalTransaction] = (),
        internal_transactions: Iterable[InternalTransaction] = ()
    ):
        self._external: Dict[str, ExternalTransaction] = {}
        self._internal: Dict[str, InternalTransaction] = {}

        for txn in external_transactions:
            if txn.id in self._external:
                raise ValueError(f"Duplicate external transaction id {txn.id}")
            self._external[txn.id] = txn
        for txn in internal_transactions:
            if txn.id in self._internal:
                raise ValueError(f"Duplicate internal transaction id {txn.id}")
            self._internal[txn.id] = txn

        self._validate_links()

    # ==================== Lookup ====================

    @property
    def external_transactions(self) -> List[ExternalTransaction]:
        return list(self._external.values())

    @property
    def internal_transactions(self) -> List[InternalTransaction]:
        return list(self._internal.values())

    def get_external(self, external_id: str) -> ExternalTransaction:
        try:
            return self._external[external_id]
        except KeyError:
            raise TransactionNotFoundError("external", external_id) from None

    def get_internal(self, internal_id: str) -> InternalTransaction:
        try:
            return self._internal[internal_id]
        except KeyError:
            raise TransactionNotFoundError("internal", internal_id) from None

    def matched_partner(self, external_id: str) -> Optional[InternalTransaction]:
        """Return the ledger transaction a bank transaction is matched to, if any."""
        external = self.get_external(external_id)
        if not external.matched:
            return None
        return self._internal.get(external.matched_to_id)

    def matched_pairs(self) -> List[Tuple[str, str]]:
        return [
            (txn.id, txn.matched_to_id)
            for txn in self._external.values()
            if txn.matched
        ]

    # ==================== Mutations ====================

    def match(self, external_id: str, internal_id: str) -> bool:
        """
        Link a bank transaction to a ledger transaction.

        Returns:
            True if a new link was created, False if the pair was already linked.

        Raises:
            TransactionNotFoundError: either id is unknown
            InvalidMatchStateError: either side is linked to another record
        """
        external = self.get_external(external_id)
        internal = self.get_internal(internal_id)

        if external.matched_to_id == internal_id and internal.matched_to_id == external_id:
            return False

        if external.matched:
            raise InvalidMatchStateError(
                f"External transaction {external_id} is already matched to {external.matched_to_id}",
                {"external_id": external_id, "matched_to_id": external.matched_to_id},
            )
        if internal.matched:
            raise InvalidMatchStateError(
                f"Internal transaction {internal_id} is already matched to {internal.matched_to_id}",
                {"internal_id": internal_id, "matched_to_id": internal.matched_to_id},
            )

        external.state, internal.state = Matched(internal_id), Matched(external_id)
        logger.debug(f"Matched external {external_id} <-> internal {internal_id}")
        return True

    def unmatch(self, external_id: str, internal_id: str) -> bool:
        """
        Remove the link between a bank transaction and a ledger transaction.

        Returns:
            True if a link was removed, False if both were already unmatched.

        Raises:
            TransactionNotFoundError: either id is unknown
            MismatchedPairError: the two records are not linked to each other
        """
        external = self.get_external(external_id)
        internal = self.get_internal(internal_id)

        if not external.matched and not internal.matched:
            return False

        if external.matched_to_id != internal_id or internal.matched_to_id != external_id:
            raise MismatchedPairError(external_id, internal_id, external.matched_to_id)

        external.state, internal.state = UNMATCHED, UNMATCHED
        logger.debug(f"Unmatched external {external_id} <-> internal {internal_id}")
        return True

    def set_note(self, external_id: str, text: Optional[str]) -> ExternalTransaction:
        """Overwrite the note on a bank transaction. Empty text clears it."""
        external = self.get_external(external_id)
        external.notes = text or None
        return external

    # ==================== Invariants ====================

    def _validate_links(self):
        """Reject loaded collections whose links are one-sided or dangling."""
        for external in self._external.values():
            if not external.matched:
                continue
            partner = self._internal.get(external.matched_to_id)
            if partner is None or partner.matched_to_id != external.id:
                raise ValueError(
                    f"External transaction {external.id} has a one-sided link to {external.matched_to_id}"
                )
        for internal in self._internal.values():
            if not internal.matched:
                continue
            partner = self._external.get(internal.matched_to_id)
            if partner is None or partner.matched_to_id != internal.id:
                raise ValueError(
                    f"Internal transaction {internal.id} has a one-sided link to {internal.matched_to_id}"
                )

    def is_consistent(self) -> bool:
        try:
            self._validate_links()
        except ValueError:
            return False
        return True
