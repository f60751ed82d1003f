"""
Reconciliation Service

Core business logic for one reconciliation session:
- Finding match candidates for a bank transaction
- Matching / unmatching bank and ledger transactions
- Annotating bank transactions with notes
- Summaries, search and balance checks
- Finalizing a balanced session
- Audit logging

A session is one loaded working set of bank + ledger transactions for a
single account and time window. All operations are synchronous and act
on the in-memory store; persistence goes through TransactionRepository.
"""

import uuid
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from reconciliation.errors import InvalidMatchStateError, UnbalancedReconciliationError
from reconciliation.matching_rules.candidate_rules import CandidateMatchingRules, candidate_rules
from reconciliation.models import (
    BalanceCheck,
    ExternalTransaction,
    InternalTransaction,
    ReconciliationStatus,
    ReconciliationSummary,
)
from reconciliation.store import TransactionStore
from reconciliation.summary import (
    BALANCE_TOLERANCE,
    VARIANCE_ALERT_PERCENT,
    compute_balance_check,
    search_external,
    summarize,
)

logger = logging.getLogger(__name__)


class ReconciliationAuditEvent:
    """Audit event types for reconciliation operations."""
    SESSION_OPENED = "reconciliation.session_opened"
    CANDIDATES_FOUND = "reconciliation.candidates_found"
    MATCH_CREATED = "reconciliation.match_created"
    MATCH_REMOVED = "reconciliation.match_removed"
    NOTE_UPDATED = "reconciliation.note_updated"
    BALANCE_CHECKED = "reconciliation.balance_checked"
    SESSION_RECONCILED = "reconciliation.session_reconciled"


def log_reconciliation_event(
    event_type: str,
    account_ref: str,
    details: Dict[str, Any],
    session_id: Optional[str] = None,
    actor: str = "system"
):
    """Log reconciliation event for audit trail."""
    log_entry = {
        "event": event_type,
        "account_ref": account_ref,
        "session_id": session_id,
        "details": details,
        "actor": actor,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.info(f"Reconciliation event: {event_type}", extra=log_entry)


class ReconciliationService:
    """
    Service for reconciling one account's bank statement against the ledger.
    """

    def __init__(
        self,
        account_ref: str,
        external_transactions: Iterable[ExternalTransaction] = (),
        internal_transactions: Iterable[InternalTransaction] = (),
        rules: Optional[CandidateMatchingRules] = None,
        balance_tolerance: Decimal = BALANCE_TOLERANCE,
        variance_alert_percent: Decimal = VARIANCE_ALERT_PERCENT,
        session_id: Optional[str] = None,
        actor: str = "system"
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self.account_ref = account_ref
        self.store = TransactionStore(external_transactions, internal_transactions)
        self.rules = rules or candidate_rules
        self.balance_tolerance = balance_tolerance
        self.variance_alert_percent = variance_alert_percent
        self.status = ReconciliationStatus.DRAFT
        self.opened_at = datetime.now(timezone.utc)
        self.reconciled_at: Optional[datetime] = None
        self.last_balance_check: Optional[BalanceCheck] = None

        self._log(
            ReconciliationAuditEvent.SESSION_OPENED,
            {
                "external_count": len(self.store.external_transactions),
                "internal_count": len(self.store.internal_transactions),
                "date_window_days": self.rules.date_tolerance_days
            },
            actor
        )

    # ==================== Queries ====================

    @property
    def external_transactions(self) -> List[ExternalTransaction]:
        return self.store.external_transactions

    @property
    def internal_transactions(self) -> List[InternalTransaction]:
        return self.store.internal_transactions

    def find_candidates(self, external_id: str) -> List[InternalTransaction]:
        """
        Find ledger candidates for a bank transaction of this session.

        Raises:
            TransactionNotFoundError: unknown bank transaction id
        """
        external = self.store.get_external(external_id)
        candidates = self.rules.find_candidates(external, self.store.internal_transactions)

        logger.debug(
            f"Found {len(candidates)} candidate(s) for external transaction {external_id}",
            extra={"session_id": self.session_id}
        )
        return candidates

    def matched_partner(self, external_id: str) -> Optional[InternalTransaction]:
        return self.store.matched_partner(external_id)

    def search(self, term: Optional[str]) -> List[ExternalTransaction]:
        return search_external(self.store.external_transactions, term)

    def summarize(self) -> ReconciliationSummary:
        return summarize(self.store.external_transactions)

    # ==================== Mutations ====================

    def match(self, external_id: str, internal_id: str, actor: str = "system") -> bool:
        """
        Match a bank transaction to a ledger transaction.

        Returns:
            True if a new link was created, False if it already existed
        """
        self._ensure_editable()
        created = self.store.match(external_id, internal_id)

        if created:
            self._log(
                ReconciliationAuditEvent.MATCH_CREATED,
                {"external_id": external_id, "internal_id": internal_id},
                actor
            )
        return created

    def unmatch(self, external_id: str, internal_id: str, actor: str = "system") -> bool:
        """
        Remove the link between a bank transaction and a ledger transaction.

        Returns:
            True if a link was removed, False if neither side was matched
        """
        self._ensure_editable()
        removed = self.store.unmatch(external_id, internal_id)

        if removed:
            self._log(
                ReconciliationAuditEvent.MATCH_REMOVED,
                {"external_id": external_id, "internal_id": internal_id},
                actor
            )
        return removed

    def set_note(self, external_id: str, text: Optional[str], actor: str = "system") -> ExternalTransaction:
        """Attach, replace or clear (empty text) the note on a bank transaction."""
        external = self.store.set_note(external_id, text)

        self._log(
            ReconciliationAuditEvent.NOTE_UPDATED,
            {"external_id": external_id, "cleared": external.notes is None},
            actor
        )
        return external

    # ==================== Balance ====================

    def check_balance(
        self,
        book_balance: Decimal,
        statement_balance: Decimal,
        last_statement_balance: Optional[Decimal] = None,
        cleared_ids: Optional[List[str]] = None,
        actor: str = "system"
    ) -> BalanceCheck:
        """
        Check the statement balance against the book balance adjusted for
        cleared ledger transactions.

        Args:
            book_balance: GL balance of the bank account
            statement_balance: Closing balance on the bank statement
            last_statement_balance: Previous statement balance (variance alert)
            cleared_ids: Ledger ids to treat as cleared; defaults to the
                matched ledger transactions of this session. Repeated ids
                count once.

        Raises:
            TransactionNotFoundError: a cleared id is unknown
        """
        if cleared_ids is None:
            cleared = [txn for txn in self.store.internal_transactions if txn.matched]
        else:
            cleared = [self.store.get_internal(txn_id) for txn_id in dict.fromkeys(cleared_ids)]

        check = compute_balance_check(
            book_balance,
            statement_balance,
            cleared,
            last_statement_balance=last_statement_balance,
            tolerance=self.balance_tolerance,
            variance_alert_percent=self.variance_alert_percent,
        )
        self.last_balance_check = check

        if check.has_large_variance:
            logger.warning(
                f"Statement balance moved {check.variance_percent}% since last reconciliation "
                f"for account {self.account_ref}"
            )

        self._log(
            ReconciliationAuditEvent.BALANCE_CHECKED,
            {
                "difference": str(check.difference),
                "is_balanced": check.is_balanced,
                "cleared_count": len(check.cleared_transaction_ids)
            },
            actor
        )
        return check

    def finalize(
        self,
        book_balance: Decimal,
        statement_balance: Decimal,
        last_statement_balance: Optional[Decimal] = None,
        cleared_ids: Optional[List[str]] = None,
        actor: str = "system"
    ) -> BalanceCheck:
        """
        Mark the session RECONCILED. Only allowed when the balances agree.

        Raises:
            InvalidMatchStateError: session already reconciled
            UnbalancedReconciliationError: balances do not agree
        """
        self._ensure_editable()
        check = self.check_balance(
            book_balance,
            statement_balance,
            last_statement_balance=last_statement_balance,
            cleared_ids=cleared_ids,
            actor=actor
        )

        if not check.is_balanced:
            raise UnbalancedReconciliationError(
                "Balances do not match. Please review transactions.",
                {"difference": str(check.difference)}
            )

        self.status = ReconciliationStatus.RECONCILED
        self.reconciled_at = datetime.now(timezone.utc)

        self._log(
            ReconciliationAuditEvent.SESSION_RECONCILED,
            {"summary": self.summarize().to_dict()},
            actor
        )
        return check

    # ==================== Serialization ====================

    def to_dict(self, include_transactions: bool = True) -> Dict[str, Any]:
        result = {
            "session_id": self.session_id,
            "account_ref": self.account_ref,
            "status": self.status.value,
            "opened_at": self.opened_at.isoformat(),
            "reconciled_at": self.reconciled_at.isoformat() if self.reconciled_at else None,
            "summary": self.summarize().to_dict(),
        }
        if include_transactions:
            result["external_transactions"] = [t.to_dict() for t in self.store.external_transactions]
            result["internal_transactions"] = [t.to_dict() for t in self.store.internal_transactions]
        return result

    # ==================== Private Methods ====================

    def _ensure_editable(self):
        if self.status == ReconciliationStatus.RECONCILED:
            raise InvalidMatchStateError(
                f"Session {self.session_id} is already reconciled",
                {"session_id": self.session_id, "status": self.status.value}
            )

    def _log(self, event_type: str, details: Dict[str, Any], actor: str):
        log_reconciliation_event(
            event_type,
            self.account_ref,
            details,
            session_id=self.session_id,
            actor=actor
        )
