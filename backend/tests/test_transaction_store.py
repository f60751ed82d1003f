"""
Unit Tests for Transaction Store

Tests the match state of a session:
- Mutual, one-to-one links
- Idempotent match, hardened unmatch
- Unknown ids and conflicting links
- Load-time link validation
- Notes independent of match state

Run with: pytest tests/test_transaction_store.py -v
"""

import pytest
from datetime import date
from decimal import Decimal

from reconciliation.errors import (
    InvalidMatchStateError,
    MismatchedPairError,
    TransactionNotFoundError
)
from reconciliation.models import (
    UNMATCHED,
    ExternalTransaction,
    InternalTransaction,
    Matched,
    Polarity,
    TransactionKind
)
from reconciliation.store import TransactionStore


def external(id, **kwargs):
    return ExternalTransaction(
        id=id,
        date=kwargs.pop("date", date(2025, 4, 8)),
        description=kwargs.pop("description", f"Bank {id}"),
        amount=kwargs.pop("amount", Decimal("100.00")),
        polarity=kwargs.pop("polarity", Polarity.CREDIT),
        **kwargs
    )


def internal(id, **kwargs):
    return InternalTransaction(
        id=id,
        date=kwargs.pop("date", date(2025, 4, 8)),
        description=kwargs.pop("description", f"Ledger {id}"),
        amount=kwargs.pop("amount", Decimal("100.00")),
        kind=kwargs.pop("kind", TransactionKind.INCOME),
        **kwargs
    )


@pytest.fixture
def store():
    """Two bank and two ledger transactions, all unmatched."""
    return TransactionStore(
        [external("e1"), external("e2")],
        [internal("i1"), internal("i2")]
    )


class TestMatch:
    """Test creating links."""

    def test_match_links_both_sides(self, store):
        """Test that match writes the link on both records."""
        assert store.match("e1", "i1") is True

        assert store.get_external("e1").state == Matched("i1")
        assert store.get_internal("i1").state == Matched("e1")
        assert store.get_external("e1").matched is True
        assert store.get_internal("i1").matched_to_id == "e1"
        assert store.is_consistent()

    def test_match_same_pair_is_noop(self, store):
        """Test that re-matching an existing pair changes nothing."""
        store.match("e1", "i1")

        assert store.match("e1", "i1") is False
        assert store.matched_pairs() == [("e1", "i1")]

    def test_match_external_already_linked(self, store):
        """Test that a bank transaction cannot be linked twice."""
        store.match("e1", "i1")

        with pytest.raises(InvalidMatchStateError):
            store.match("e1", "i2")

        assert store.get_external("e1").matched_to_id == "i1"
        assert store.get_internal("i2").matched is False

    def test_match_internal_already_linked(self, store):
        """Test that a ledger transaction cannot be linked twice."""
        store.match("e1", "i1")

        with pytest.raises(InvalidMatchStateError) as exc_info:
            store.match("e2", "i1")

        assert exc_info.value.error == "invalid_state"
        assert store.get_external("e2").matched is False
        assert store.get_internal("i1").matched_to_id == "e1"

    def test_match_unknown_external(self, store):
        with pytest.raises(TransactionNotFoundError) as exc_info:
            store.match("missing", "i1")

        assert exc_info.value.details == {"side": "external", "transaction_id": "missing"}
        assert store.get_internal("i1").matched is False

    def test_match_unknown_internal(self, store):
        with pytest.raises(TransactionNotFoundError):
            store.match("e1", "missing")

        assert store.get_external("e1").matched is False

    def test_match_ignores_candidate_rules(self):
        """Test that an explicit match is allowed outside the candidate rules."""
        store = TransactionStore(
            [external("e1", amount=Decimal("10.00"))],
            [internal("i1", amount=Decimal("999.99"), kind=TransactionKind.EXPENSE)]
        )

        assert store.match("e1", "i1") is True


class TestUnmatch:
    """Test removing links."""

    def test_unmatch_clears_both_sides(self, store):
        store.match("e1", "i1")

        assert store.unmatch("e1", "i1") is True

        assert store.get_external("e1").state == UNMATCHED
        assert store.get_internal("i1").state == UNMATCHED
        assert store.get_external("e1").matched_to_id is None
        assert store.is_consistent()

    def test_unmatch_unlinked_pair_is_noop(self, store):
        """Test that unmatching two unmatched records is a no-op."""
        assert store.unmatch("e1", "i1") is False

    def test_unmatch_mismatched_pair(self, store):
        """Test that unmatch refuses to break an unrelated link."""
        store.match("e1", "i1")
        store.match("e2", "i2")

        with pytest.raises(MismatchedPairError) as exc_info:
            store.unmatch("e1", "i2")

        assert exc_info.value.details["linked_to"] == "i1"
        assert store.matched_pairs() == [("e1", "i1"), ("e2", "i2")]

    def test_unmatch_half_linked_pair(self, store):
        """Test unmatch when only one of the two ids is linked."""
        store.match("e1", "i1")

        with pytest.raises(MismatchedPairError):
            store.unmatch("e2", "i1")

        assert store.get_internal("i1").matched_to_id == "e1"

    def test_unmatch_unknown_id(self, store):
        with pytest.raises(TransactionNotFoundError):
            store.unmatch("e1", "missing")

    def test_rematch_after_unmatch(self, store):
        """Test that freed records can be linked to new partners."""
        store.match("e1", "i1")
        store.unmatch("e1", "i1")

        assert store.match("e1", "i2") is True
        assert store.match("e2", "i1") is True
        assert store.is_consistent()


class TestLookup:
    """Test queries over the store."""

    def test_insertion_order(self):
        store = TransactionStore([external("e3"), external("e1"), external("e2")], [])

        assert [t.id for t in store.external_transactions] == ["e3", "e1", "e2"]

    def test_matched_partner(self, store):
        store.match("e2", "i1")

        assert store.matched_partner("e2").id == "i1"
        assert store.matched_partner("e1") is None

    def test_get_unknown(self, store):
        with pytest.raises(TransactionNotFoundError):
            store.get_external("nope")
        with pytest.raises(TransactionNotFoundError):
            store.get_internal("nope")


class TestLoadValidation:
    """Test validation of loaded collections."""

    def test_duplicate_external_id(self):
        with pytest.raises(ValueError, match="Duplicate external"):
            TransactionStore([external("e1"), external("e1")], [])

    def test_duplicate_internal_id(self):
        with pytest.raises(ValueError, match="Duplicate internal"):
            TransactionStore([], [internal("i1"), internal("i1")])

    def test_preloaded_mutual_link_accepted(self):
        store = TransactionStore(
            [external("e1", state=Matched("i1"))],
            [internal("i1", state=Matched("e1"))]
        )

        assert store.matched_pairs() == [("e1", "i1")]

    def test_one_sided_link_rejected(self):
        """Test that a link present on only one side is rejected."""
        with pytest.raises(ValueError, match="one-sided"):
            TransactionStore([external("e1", state=Matched("i1"))], [internal("i1")])

        with pytest.raises(ValueError, match="one-sided"):
            TransactionStore([external("e1")], [internal("i1", state=Matched("e1"))])

    def test_dangling_link_rejected(self):
        with pytest.raises(ValueError):
            TransactionStore([external("e1", state=Matched("ghost"))], [])

    def test_non_finite_amount_rejected(self):
        with pytest.raises(ValueError, match="finite"):
            ExternalTransaction("e1", date(2025, 4, 8), "Deposit", Decimal("Infinity"), polarity=Polarity.CREDIT)


class TestNotes:
    """Test notes on bank transactions."""

    def test_set_and_clear_note(self, store):
        assert store.set_note("e1", "Awaiting receipt").notes == "Awaiting receipt"
        assert store.set_note("e1", "").notes is None

    def test_note_survives_match_cycle(self, store):
        """Test that notes are unaffected by match and unmatch."""
        store.set_note("e1", "Check with branch")
        store.match("e1", "i1")
        store.unmatch("e1", "i1")

        assert store.get_external("e1").notes == "Check with branch"

    def test_note_does_not_change_match_state(self, store):
        store.match("e1", "i1")
        store.set_note("e1", "Verified")

        assert store.get_external("e1").matched_to_id == "i1"

    def test_note_unknown_id(self, store):
        with pytest.raises(TransactionNotFoundError):
            store.set_note("missing", "x")
