"""
Reconciliation API Endpoints

REST API for bank reconciliation sessions:
- GET /api/reconciliation/status - Module status
- POST /api/reconciliation/sessions - Open a session from inline transactions
- POST /api/reconciliation/sessions/load - Open a session from the database
- GET /api/reconciliation/sessions - List open sessions
- GET /api/reconciliation/sessions/{session_id} - Session detail
- DELETE /api/reconciliation/sessions/{session_id} - Close a session
- GET /api/reconciliation/sessions/{session_id}/external - Search bank transactions
- GET /api/reconciliation/sessions/{session_id}/candidates/{external_id} - Match candidates
- GET /api/reconciliation/sessions/{session_id}/partner/{external_id} - Matched ledger transaction
- POST /api/reconciliation/sessions/{session_id}/match - Match a pair
- POST /api/reconciliation/sessions/{session_id}/unmatch - Unmatch a pair
- PUT /api/reconciliation/sessions/{session_id}/notes/{external_id} - Set a note
- GET /api/reconciliation/sessions/{session_id}/summary - Reconciliation summary
- POST /api/reconciliation/sessions/{session_id}/balance - Balance check
- POST /api/reconciliation/sessions/{session_id}/finalize - Mark reconciled
- POST /api/reconciliation/sessions/{session_id}/save - Persist links and notes
"""

import os
import logging
from datetime import date as DateType, datetime, timezone
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Header, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import get_db
from reconciliation.errors import ReconciliationError
from reconciliation.models import (
    UNMATCHED,
    ExternalTransaction,
    InternalTransaction,
    Matched,
    Polarity,
    TransactionKind,
)
from reconciliation.services.reconciliation_service import ReconciliationService
from reconciliation.services.transaction_repository import TransactionRepository
from reconciliation.session_registry import SessionRegistry, session_registry
from sentry_integration import capture_exception
from utils.validation_errors import (
    raise_invalid_parameter,
    raise_reconciliation_error,
    validate_required_uuid,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation", tags=["Reconciliation"])


# ==================== Request/Response Models ====================

class ExternalTransactionIn(BaseModel):
    """Bank statement transaction supplied by the caller."""
    id: str
    date: DateType
    description: str = ""
    amount: Decimal = Field(..., ge=0, description="Non-negative magnitude")
    polarity: Polarity
    reference: Optional[str] = None
    notes: Optional[str] = None
    matched_to_id: Optional[str] = Field(default=None, description="Linked ledger transaction id")

    def to_model(self) -> ExternalTransaction:
        return ExternalTransaction(
            id=self.id,
            date=self.date,
            description=self.description,
            amount=self.amount,
            polarity=self.polarity,
            reference=self.reference,
            notes=self.notes,
            state=Matched(self.matched_to_id) if self.matched_to_id else UNMATCHED,
        )


class InternalTransactionIn(BaseModel):
    """Ledger transaction supplied by the caller."""
    id: str
    date: DateType
    description: str = ""
    amount: Decimal = Field(..., ge=0, description="Non-negative magnitude")
    kind: TransactionKind
    category: str = ""
    owner_scope: Optional[str] = Field(default=None, description="Owning branch")
    reference: Optional[str] = None
    matched_to_id: Optional[str] = Field(default=None, description="Linked bank transaction id")

    def to_model(self) -> InternalTransaction:
        return InternalTransaction(
            id=self.id,
            date=self.date,
            description=self.description,
            amount=self.amount,
            kind=self.kind,
            category=self.category,
            owner_scope=self.owner_scope,
            reference=self.reference,
            state=Matched(self.matched_to_id) if self.matched_to_id else UNMATCHED,
        )


class OpenSessionRequest(BaseModel):
    """Request to open a session over caller-supplied transactions."""
    account_ref: str = Field(..., min_length=1, description="Bank account being reconciled")
    external_transactions: List[ExternalTransactionIn] = Field(default_factory=list)
    internal_transactions: List[InternalTransactionIn] = Field(default_factory=list)


class LoadSessionRequest(BaseModel):
    """Request to open a session from stored transactions."""
    account_ref: str = Field(..., min_length=1, description="Bank account being reconciled")
    start_date: Optional[DateType] = None
    end_date: Optional[DateType] = None


class MatchRequest(BaseModel):
    """Request to match or unmatch a bank/ledger pair."""
    external_id: str
    internal_id: str


class NoteRequest(BaseModel):
    """Request to set a note. Empty text clears the note."""
    text: str = ""


class BalanceRequest(BaseModel):
    """Request to check (or finalize) the statement balance."""
    book_balance: Decimal
    statement_balance: Decimal
    last_statement_balance: Optional[Decimal] = None
    cleared_ids: Optional[List[str]] = Field(
        default=None,
        description="Ledger ids treated as cleared (default: matched ledger transactions)"
    )


# ==================== Authentication ====================

def get_internal_api_keys() -> List[str]:
    """Get list of valid internal API keys."""
    primary_key = os.environ.get('INTERNAL_API_KEY', '')
    rotated_keys = os.environ.get('INTERNAL_API_KEYS', '')

    keys = []
    if primary_key:
        keys.append(primary_key)
    if rotated_keys:
        keys.extend([k.strip() for k in rotated_keys.split(',') if k.strip()])

    return keys


def verify_internal_auth(x_internal_api_key: Optional[str] = Header(None, alias="X-Internal-Api-Key")):
    """Verify internal API key authentication."""
    valid_keys = get_internal_api_keys()

    if not valid_keys:
        logger.warning("No internal API keys configured")
        raise HTTPException(status_code=503, detail="Internal authentication not configured")

    if not x_internal_api_key:
        raise HTTPException(status_code=401, detail="Missing X-Internal-Api-Key header")

    if x_internal_api_key not in valid_keys:
        raise HTTPException(status_code=403, detail="Invalid API key")

    return True


def get_session_registry() -> SessionRegistry:
    return session_registry


# ==================== Helpers ====================

def _get_session(registry: SessionRegistry, session_id: str) -> ReconciliationService:
    validated_id = validate_required_uuid(session_id, "session_id")
    try:
        return registry.get(validated_id)
    except ReconciliationError as e:
        raise_reconciliation_error(e)


def _open_session(
    registry: SessionRegistry,
    account_ref: str,
    external: List[ExternalTransaction],
    internal: List[InternalTransaction],
    actor: str
) -> ReconciliationService:
    try:
        return registry.open(account_ref, external, internal, actor=actor)
    except ValueError as e:
        # Duplicate ids or one-sided links in the supplied collections
        raise_invalid_parameter("transactions", str(e))


def _unexpected(e: Exception, action: str, session_id: Optional[str] = None) -> HTTPException:
    logger.error(f"Failed to {action}: {e}")
    capture_exception(e, action=action, session_id=session_id)
    return HTTPException(status_code=500, detail=f"Failed to {action}")


# ==================== Endpoints ====================

@router.get("/status", summary="Module status")
async def get_module_status(registry: SessionRegistry = Depends(get_session_registry)):
    """
    Get reconciliation module status.

    Returns configuration and availability information.
    """
    return {
        "module": "reconciliation",
        "status": "operational",
        "version": "1.0.0",
        "config": {
            "date_window_days": registry.rules.date_tolerance_days,
            "balance_tolerance": str(registry.balance_tolerance),
            "variance_alert_percent": str(registry.variance_alert_percent),
            "session_ttl_minutes": int(registry.session_ttl.total_seconds() // 60),
            "max_sessions": registry.max_sessions
        },
        "open_sessions": len(registry.list_sessions()),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.post("/sessions", status_code=201, summary="Open session")
async def open_session(
    request: OpenSessionRequest,
    registry: SessionRegistry = Depends(get_session_registry),
    x_user_id: Optional[str] = Header(default="system", alias="X-User-Id"),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    Open a reconciliation session over the supplied bank and ledger
    transactions.

    Requires internal API key authentication.
    """
    service = _open_session(
        registry,
        request.account_ref,
        [t.to_model() for t in request.external_transactions],
        [t.to_model() for t in request.internal_transactions],
        x_user_id
    )
    return service.to_dict()


@router.post("/sessions/load", status_code=201, summary="Open session from database")
async def load_session(
    request: LoadSessionRequest,
    db: AsyncSession = Depends(get_db),
    registry: SessionRegistry = Depends(get_session_registry),
    x_user_id: Optional[str] = Header(default="system", alias="X-User-Id"),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    Load an account's bank and ledger transactions and open a session.

    Requires internal API key authentication.
    """
    if request.start_date and request.end_date and request.start_date > request.end_date:
        raise_invalid_parameter("start_date", "start_date must not be after end_date", request.start_date)

    # Ledger rows up to the candidate window outside the range can still match
    margin = registry.rules.date_tolerance_days

    try:
        repository = TransactionRepository(db)
        external = await repository.load_external_transactions(
            request.account_ref, request.start_date, request.end_date, margin
        )
        internal = await repository.load_internal_transactions(
            request.account_ref, request.start_date, request.end_date, margin
        )
    except Exception as e:
        raise _unexpected(e, "load transactions")

    service = _open_session(registry, request.account_ref, external, internal, x_user_id)
    return service.to_dict()


@router.get("/sessions", summary="List sessions")
async def list_sessions(
    account_ref: Optional[str] = Query(default=None, description="Filter by account"),
    registry: SessionRegistry = Depends(get_session_registry),
    _auth: bool = Depends(verify_internal_auth)
):
    sessions = registry.list_sessions(account_ref)
    return {
        "sessions": [s.to_dict(include_transactions=False) for s in sessions],
        "count": len(sessions)
    }


@router.get("/sessions/{session_id}", summary="Get session")
async def get_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
    _auth: bool = Depends(verify_internal_auth)
):
    return _get_session(registry, session_id).to_dict()


@router.delete("/sessions/{session_id}", summary="Close session")
async def close_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    Close a session. Unsaved links and notes are discarded.
    """
    service = _get_session(registry, session_id)
    registry.close(service.session_id)
    return {"success": True, "session_id": service.session_id}


@router.get("/sessions/{session_id}/external", summary="Search bank transactions")
async def search_external(
    session_id: str,
    search: Optional[str] = Query(default=None, description="Description, reference, date or amount"),
    registry: SessionRegistry = Depends(get_session_registry),
    _auth: bool = Depends(verify_internal_auth)
):
    service = _get_session(registry, session_id)
    results = service.search(search)
    return {
        "session_id": service.session_id,
        "transactions": [t.to_dict() for t in results],
        "count": len(results)
    }


@router.get("/sessions/{session_id}/candidates/{external_id}", summary="Find match candidates")
async def find_candidates(
    session_id: str,
    external_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    Find ledger candidates for a bank transaction.

    Returns an empty list when the bank transaction is already matched.
    """
    service = _get_session(registry, session_id)
    try:
        candidates = service.find_candidates(external_id)
    except ReconciliationError as e:
        raise_reconciliation_error(e)

    return {
        "external_id": external_id,
        "candidates": [c.to_dict() for c in candidates],
        "count": len(candidates)
    }


@router.get("/sessions/{session_id}/partner/{external_id}", summary="Get matched ledger transaction")
async def get_partner(
    session_id: str,
    external_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
    _auth: bool = Depends(verify_internal_auth)
):
    service = _get_session(registry, session_id)
    try:
        partner = service.matched_partner(external_id)
    except ReconciliationError as e:
        raise_reconciliation_error(e)

    return {
        "external_id": external_id,
        "partner": partner.to_dict() if partner else None
    }


@router.post("/sessions/{session_id}/match", summary="Match pair")
async def match_transactions(
    session_id: str,
    request: MatchRequest,
    registry: SessionRegistry = Depends(get_session_registry),
    x_user_id: Optional[str] = Header(default="system", alias="X-User-Id"),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    Match a bank transaction to a ledger transaction.

    Matching an already linked pair again is a no-op.
    """
    service = _get_session(registry, session_id)
    try:
        created = service.match(request.external_id, request.internal_id, actor=x_user_id)
    except ReconciliationError as e:
        raise_reconciliation_error(e)

    return {
        "success": True,
        "message": "Transactions matched" if created else "Transactions already matched",
        "created": created,
        "summary": service.summarize().to_dict()
    }


@router.post("/sessions/{session_id}/unmatch", summary="Unmatch pair")
async def unmatch_transactions(
    session_id: str,
    request: MatchRequest,
    registry: SessionRegistry = Depends(get_session_registry),
    x_user_id: Optional[str] = Header(default="system", alias="X-User-Id"),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    Remove the link between a bank transaction and a ledger transaction.

    Returns 409 if the two are not linked to each other.
    """
    service = _get_session(registry, session_id)
    try:
        removed = service.unmatch(request.external_id, request.internal_id, actor=x_user_id)
    except ReconciliationError as e:
        raise_reconciliation_error(e)

    return {
        "success": True,
        "message": "Transactions unmatched" if removed else "Transactions were not matched",
        "removed": removed,
        "summary": service.summarize().to_dict()
    }


@router.put("/sessions/{session_id}/notes/{external_id}", summary="Set note")
async def set_note(
    session_id: str,
    external_id: str,
    request: NoteRequest,
    registry: SessionRegistry = Depends(get_session_registry),
    x_user_id: Optional[str] = Header(default="system", alias="X-User-Id"),
    _auth: bool = Depends(verify_internal_auth)
):
    service = _get_session(registry, session_id)
    try:
        external = service.set_note(external_id, request.text, actor=x_user_id)
    except ReconciliationError as e:
        raise_reconciliation_error(e)

    return external.to_dict()


@router.get("/sessions/{session_id}/summary", summary="Get summary")
async def get_summary(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
    _auth: bool = Depends(verify_internal_auth)
):
    service = _get_session(registry, session_id)
    return {
        "session_id": service.session_id,
        "account_ref": service.account_ref,
        "status": service.status.value,
        **service.summarize().to_dict()
    }


@router.post("/sessions/{session_id}/balance", summary="Check balance")
async def check_balance(
    session_id: str,
    request: BalanceRequest,
    registry: SessionRegistry = Depends(get_session_registry),
    x_user_id: Optional[str] = Header(default="system", alias="X-User-Id"),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    Compare the statement balance with the book balance adjusted for
    cleared ledger transactions.
    """
    service = _get_session(registry, session_id)
    try:
        check = service.check_balance(
            request.book_balance,
            request.statement_balance,
            last_statement_balance=request.last_statement_balance,
            cleared_ids=request.cleared_ids,
            actor=x_user_id
        )
    except ReconciliationError as e:
        raise_reconciliation_error(e)

    return check.to_dict()


@router.post("/sessions/{session_id}/finalize", summary="Finalize session")
async def finalize_session(
    session_id: str,
    request: BalanceRequest,
    registry: SessionRegistry = Depends(get_session_registry),
    x_user_id: Optional[str] = Header(default="system", alias="X-User-Id"),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    Mark the session RECONCILED.

    Returns 409 if the balances do not agree or the session is already
    reconciled.
    """
    service = _get_session(registry, session_id)
    try:
        check = service.finalize(
            request.book_balance,
            request.statement_balance,
            last_statement_balance=request.last_statement_balance,
            cleared_ids=request.cleared_ids,
            actor=x_user_id
        )
    except ReconciliationError as e:
        raise_reconciliation_error(e)

    return {
        "success": True,
        "status": service.status.value,
        "balance": check.to_dict()
    }


@router.post("/sessions/{session_id}/save", summary="Save session")
async def save_session(
    session_id: str,
    db: AsyncSession = Depends(get_db),
    registry: SessionRegistry = Depends(get_session_registry),
    _auth: bool = Depends(verify_internal_auth)
):
    """
    Persist match links and notes of a session.

    Requires internal API key authentication.
    """
    service = _get_session(registry, session_id)
    try:
        written = await TransactionRepository(db).save_session(service)
    except Exception as e:
        raise _unexpected(e, "save session", service.session_id)

    return {
        "success": True,
        "session_id": service.session_id,
        "rows_written": written
    }
