"""
Reconciliation Errors

Every failure raised by the reconciliation core derives from
ReconciliationError and carries a machine-readable `error` code that the
API layer passes through to clients.
"""

from typing import Any, Dict, Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation failures."""
    error = "reconciliation_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        response = {"error": self.error, "message": self.message}
        if self.details:
            response["details"] = self.details
        return response


class TransactionNotFoundError(ReconciliationError):
    """A referenced external or internal transaction id does not exist."""
    error = "not_found"

    def __init__(self, side: str, transaction_id: str):
        super().__init__(
            f"{side.capitalize()} transaction {transaction_id} not found",
            {"side": side, "transaction_id": transaction_id},
        )


class SessionNotFoundError(ReconciliationError):
    error = "not_found"

    def __init__(self, session_id: str):
        super().__init__(f"Reconciliation session {session_id} not found", {"session_id": session_id})


class InvalidMatchStateError(ReconciliationError):
    """Operation is not allowed in the current match or session state."""
    error = "invalid_state"


class MismatchedPairError(ReconciliationError):
    """Unmatch was called with two transactions that are not linked to each other."""
    error = "mismatched_pair"

    def __init__(self, external_id: str, internal_id: str, linked_to: Optional[str]):
        super().__init__(
            f"External transaction {external_id} is not matched to internal transaction {internal_id}",
            {"external_id": external_id, "internal_id": internal_id, "linked_to": linked_to},
        )


class UnbalancedReconciliationError(ReconciliationError):
    error = "unbalanced"
