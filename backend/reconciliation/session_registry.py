"""
Reconciliation Session Registry

Central registry of open reconciliation sessions, keyed by session id.
The API layer opens a session once per account/time window and addresses
every later operation to it by id.

Sessions idle for longer than the session TTL are dropped, and opening a
session beyond the registry's capacity evicts the least recently used one.
Unsaved links and notes of a dropped session are lost.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from reconciliation.errors import SessionNotFoundError
from reconciliation.matching_rules.candidate_rules import CandidateMatchingRules
from reconciliation.models import ExternalTransaction, InternalTransaction
from reconciliation.services.reconciliation_service import ReconciliationService
from reconciliation.summary import BALANCE_TOLERANCE, VARIANCE_ALERT_PERCENT

logger = logging.getLogger(__name__)

SESSION_TTL_MINUTES = 480
MAX_SESSIONS = 500


class SessionRegistry:
    """
    In-process registry of reconciliation sessions.

    Sessions assume a single writer; the registry does no locking.
    """

    def __init__(
        self,
        date_window_days: int = CandidateMatchingRules.DATE_TOLERANCE_DAYS,
        balance_tolerance: Decimal = BALANCE_TOLERANCE,
        variance_alert_percent: Decimal = VARIANCE_ALERT_PERCENT,
        session_ttl_minutes: int = SESSION_TTL_MINUTES,
        max_sessions: int = MAX_SESSIONS
    ):
        self._sessions: Dict[str, ReconciliationService] = {}
        self._last_used: Dict[str, datetime] = {}
        self.configure(
            date_window_days,
            balance_tolerance,
            variance_alert_percent,
            session_ttl_minutes=session_ttl_minutes,
            max_sessions=max_sessions
        )

    def configure(
        self,
        date_window_days: int,
        balance_tolerance: Decimal = BALANCE_TOLERANCE,
        variance_alert_percent: Decimal = VARIANCE_ALERT_PERCENT,
        session_ttl_minutes: int = SESSION_TTL_MINUTES,
        max_sessions: int = MAX_SESSIONS
    ):
        """
        Set the tolerances used for sessions opened from now on.

        The TTL and capacity apply to every open session.
        """
        if session_ttl_minutes < 1:
            raise ValueError("session_ttl_minutes must be at least 1")
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")

        self.rules = CandidateMatchingRules(date_window_days)
        self.balance_tolerance = balance_tolerance
        self.variance_alert_percent = variance_alert_percent
        self.session_ttl = timedelta(minutes=session_ttl_minutes)
        self.max_sessions = max_sessions

    def open(
        self,
        account_ref: str,
        external_transactions: Iterable[ExternalTransaction],
        internal_transactions: Iterable[InternalTransaction],
        actor: str = "system"
    ) -> ReconciliationService:
        """Open a new session over freshly loaded collections."""
        service = ReconciliationService(
            account_ref,
            external_transactions,
            internal_transactions,
            rules=self.rules,
            balance_tolerance=self.balance_tolerance,
            variance_alert_percent=self.variance_alert_percent,
            actor=actor
        )

        self._expire_idle()
        while len(self._sessions) >= self.max_sessions:
            oldest = min(self._last_used, key=self._last_used.get)
            self._drop(oldest)
            logger.warning(f"Evicted reconciliation session {oldest}: registry full ({self.max_sessions})")

        self._sessions[service.session_id] = service
        self._last_used[service.session_id] = self._now()
        logger.info(f"Opened reconciliation session {service.session_id} for account {account_ref}")
        return service

    def get(self, session_id: str) -> ReconciliationService:
        self._expire_idle()
        service = self._sessions.get(session_id)
        if service is None:
            raise SessionNotFoundError(session_id)
        self._last_used[session_id] = self._now()
        return service

    def close(self, session_id: str) -> ReconciliationService:
        service = self._drop(session_id)
        if service is None:
            raise SessionNotFoundError(session_id)
        logger.info(f"Closed reconciliation session {session_id}")
        return service

    def list_sessions(self, account_ref: Optional[str] = None) -> List[ReconciliationService]:
        self._expire_idle()
        return [
            s for s in self._sessions.values()
            if account_ref is None or s.account_ref == account_ref
        ]

    def clear(self):
        self._sessions.clear()
        self._last_used.clear()

    # ==================== Private Methods ====================

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _drop(self, session_id: str) -> Optional[ReconciliationService]:
        self._last_used.pop(session_id, None)
        return self._sessions.pop(session_id, None)

    def _expire_idle(self):
        cutoff = self._now() - self.session_ttl
        for session_id, last_used in list(self._last_used.items()):
            if last_used < cutoff:
                self._drop(session_id)
                logger.info(f"Expired idle reconciliation session {session_id}")


# Global registry instance
session_registry = SessionRegistry()
