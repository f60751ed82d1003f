"""
Unit Tests for Session Registry

Run with: pytest tests/test_session_registry.py -v
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from reconciliation.errors import SessionNotFoundError
from reconciliation.models import ExternalTransaction, InternalTransaction, Polarity, TransactionKind
from reconciliation.session_registry import SessionRegistry


@pytest.fixture
def registry():
    return SessionRegistry()


def transactions():
    return (
        [ExternalTransaction("e1", date(2025, 4, 8), "Deposit", Decimal("50.00"), polarity=Polarity.CREDIT)],
        [InternalTransaction("i1", date(2025, 4, 15), "Income", Decimal("50.00"), kind=TransactionKind.INCOME)],
    )


class TestSessionRegistry:
    """Test opening, fetching and closing sessions."""

    def test_open_and_get(self, registry):
        service = registry.open("acct-1", *transactions())

        assert registry.get(service.session_id) is service
        assert service.account_ref == "acct-1"

    def test_get_unknown(self, registry):
        with pytest.raises(SessionNotFoundError) as exc_info:
            registry.get("nope")

        assert exc_info.value.error == "not_found"

    def test_close(self, registry):
        service = registry.open("acct-1", *transactions())

        assert registry.close(service.session_id) is service
        with pytest.raises(SessionNotFoundError):
            registry.get(service.session_id)
        with pytest.raises(SessionNotFoundError):
            registry.close(service.session_id)

    def test_list_sessions_by_account(self, registry):
        first = registry.open("acct-1", [], [])
        registry.open("acct-2", [], [])

        assert len(registry.list_sessions()) == 2
        assert registry.list_sessions("acct-1") == [first]

    def test_clear(self, registry):
        registry.open("acct-1", [], [])
        registry.clear()

        assert registry.list_sessions() == []

    def test_invalid_collections_not_registered(self, registry):
        """Test that a session with duplicate ledger ids is never registered."""
        external, internal = transactions()
        internal.append(internal[0])

        with pytest.raises(ValueError):
            registry.open("acct-1", external, internal)

        assert registry.list_sessions() == []


class TestRegistryConfiguration:
    """Test tolerances applied to new sessions."""

    def test_defaults(self, registry):
        assert registry.rules.date_tolerance_days == 3
        assert registry.balance_tolerance == Decimal("0.01")
        assert registry.variance_alert_percent == Decimal("10")

    def test_configure_applies_to_new_sessions(self, registry):
        """Test that a wider window lets the week-late ledger entry qualify."""
        before = registry.open("acct-1", *transactions())
        registry.configure(7, balance_tolerance=Decimal("1.00"))
        after = registry.open("acct-1", *transactions())

        assert before.find_candidates("e1") == []
        assert [c.id for c in after.find_candidates("e1")] == ["i1"]
        assert after.balance_tolerance == Decimal("1.00")

    def test_configure_rejects_negative_window(self, registry):
        with pytest.raises(ValueError):
            registry.configure(-2)

    def test_configure_rejects_empty_capacity(self, registry):
        with pytest.raises(ValueError):
            registry.configure(3, max_sessions=0)


class TestSessionLimits:
    """Test idle expiry and capacity eviction."""

    def test_idle_session_expires(self):
        registry = SessionRegistry(session_ttl_minutes=30)
        idle = registry.open("acct-1", [], [])
        active = registry.open("acct-1", [], [])
        registry._last_used[idle.session_id] -= timedelta(minutes=31)

        with pytest.raises(SessionNotFoundError):
            registry.get(idle.session_id)
        assert registry.list_sessions() == [active]

    def test_get_keeps_session_alive(self):
        """Test that using a session resets its idle timer."""
        registry = SessionRegistry(session_ttl_minutes=30)
        service = registry.open("acct-1", [], [])
        registry._last_used[service.session_id] -= timedelta(minutes=20)

        registry.get(service.session_id)
        registry._last_used[service.session_id] -= timedelta(minutes=20)

        assert registry.get(service.session_id) is service

    def test_capacity_evicts_least_recently_used(self):
        registry = SessionRegistry(max_sessions=2)
        first = registry.open("acct-1", [], [])
        second = registry.open("acct-2", [], [])
        registry._last_used[second.session_id] -= timedelta(minutes=5)
        registry.get(first.session_id)

        third = registry.open("acct-3", [], [])

        assert registry.list_sessions() == [first, third]
        with pytest.raises(SessionNotFoundError):
            registry.get(second.session_id)

    def test_close_forgets_last_use(self, registry):
        service = registry.open("acct-1", [], [])

        registry.close(service.session_id)

        assert service.session_id not in registry._last_used
