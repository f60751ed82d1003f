"""
Reconciliation Engine Module

Matches bank statement transactions against ledger transactions:
- Candidate finding (amount, polarity/kind, date window)
- One-to-one, mutual match/unmatch
- Reconciliation summary and balance check
- Notes on bank transactions
- Audit trail for all operations
"""

from reconciliation.errors import (
    ReconciliationError,
    TransactionNotFoundError,
    SessionNotFoundError,
    InvalidMatchStateError,
    MismatchedPairError,
    UnbalancedReconciliationError
)
from reconciliation.models import (
    ExternalTransaction,
    InternalTransaction,
    Polarity,
    TransactionKind,
    ReconciliationStatus,
    ReconciliationSummary,
    BalanceCheck,
    Matched,
    Unmatched,
    UNMATCHED
)
from reconciliation.matching_rules.candidate_rules import (
    CandidateMatchingRules,
    candidate_rules,
    find_candidates
)
from reconciliation.store import TransactionStore
from reconciliation.summary import summarize, search_external, compute_balance_check
from reconciliation.services.reconciliation_service import ReconciliationService
from reconciliation.session_registry import SessionRegistry, session_registry

__all__ = [
    # Errors
    'ReconciliationError',
    'TransactionNotFoundError',
    'SessionNotFoundError',
    'InvalidMatchStateError',
    'MismatchedPairError',
    'UnbalancedReconciliationError',
    # Models
    'ExternalTransaction',
    'InternalTransaction',
    'Polarity',
    'TransactionKind',
    'ReconciliationStatus',
    'ReconciliationSummary',
    'BalanceCheck',
    'Matched',
    'Unmatched',
    'UNMATCHED',
    # Matching Rules
    'CandidateMatchingRules',
    'candidate_rules',
    'find_candidates',
    # Store and reporting
    'TransactionStore',
    'summarize',
    'search_external',
    'compute_balance_check',
    # Service
    'ReconciliationService',
    'SessionRegistry',
    'session_registry'
]
