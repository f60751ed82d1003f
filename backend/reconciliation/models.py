"""
Reconciliation Domain Models

Canonical in-memory representation of a reconciliation session:
- ExternalTransaction: bank statement line
- InternalTransaction: ledger (book) entry
- Unmatched / Matched: per-record match status
- ReconciliationSummary: aggregate counts and signed amounts
- BalanceCheck: statement vs. adjusted book balance

Amounts are always non-negative Decimal magnitudes. Direction lives in
`polarity` (bank side) and `kind` (ledger side).
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union


class Polarity(str, Enum):
    """Direction of a bank statement line."""
    CREDIT = "credit"   # Money in
    DEBIT = "debit"     # Money out


class TransactionKind(str, Enum):
    """Direction of a ledger entry."""
    INCOME = "income"
    EXPENSE = "expense"


class ReconciliationStatus(str, Enum):
    """Lifecycle of a reconciliation session."""
    DRAFT = "DRAFT"
    RECONCILED = "RECONCILED"


# A bank credit can only be a ledger income, a bank debit only an expense.
COMPATIBLE_KIND: Dict[Polarity, TransactionKind] = {
    Polarity.CREDIT: TransactionKind.INCOME,
    Polarity.DEBIT: TransactionKind.EXPENSE,
}


@dataclass(frozen=True)
class Unmatched:
    """Record is not linked to anything."""

    @property
    def partner_id(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class Matched:
    """Record is linked to exactly one record on the other side."""
    partner_id: str


MatchState = Union[Unmatched, Matched]

UNMATCHED = Unmatched()


def to_amount(value: Any) -> Decimal:
    """Coerce a raw amount (str, int, float, Decimal) to a Decimal magnitude."""
    if isinstance(value, Decimal):
        amount = value
    else:
        amount = Decimal(str(value))
    if not amount.is_finite():
        raise ValueError(f"Amount must be a finite number, got {amount}")
    if amount < 0:
        raise ValueError(f"Amount must be a non-negative magnitude, got {amount}")
    return amount


def to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass
class _LinkedTransaction:
    id: str
    date: date
    description: str
    amount: Decimal
    reference: Optional[str] = None
    state: MatchState = field(default=UNMATCHED)

    def __post_init__(self):
        self.id = str(self.id)
        self.date = to_date(self.date)
        self.amount = to_amount(self.amount)

    @property
    def matched(self) -> bool:
        return isinstance(self.state, Matched)

    @property
    def matched_to_id(self) -> Optional[str]:
        return self.state.partner_id


@dataclass
class ExternalTransaction(_LinkedTransaction):
    """
    A bank statement transaction.

    `notes` is a free-text annotation that survives match/unmatch.
    """
    polarity: Polarity = Polarity.CREDIT
    notes: Optional[str] = None

    def __post_init__(self):
        super().__post_init__()
        self.polarity = Polarity(self.polarity)

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.polarity == Polarity.CREDIT else -self.amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "description": self.description,
            "amount": str(self.amount),
            "polarity": self.polarity.value,
            "matched": self.matched,
            "matched_to_id": self.matched_to_id,
            "reference": self.reference,
            "notes": self.notes,
        }


@dataclass
class InternalTransaction(_LinkedTransaction):
    """A ledger transaction owned by one branch (`owner_scope`)."""
    kind: TransactionKind = TransactionKind.INCOME
    category: str = ""
    owner_scope: Optional[str] = None

    def __post_init__(self):
        super().__post_init__()
        self.kind = TransactionKind(self.kind)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "description": self.description,
            "amount": str(self.amount),
            "kind": self.kind.value,
            "category": self.category,
            "matched": self.matched,
            "matched_to_id": self.matched_to_id,
            "reference": self.reference,
            "owner_scope": self.owner_scope,
        }


@dataclass(frozen=True)
class ReconciliationSummary:
    """Aggregate status over the bank side of a session."""
    total_count: int
    matched_count: int
    unmatched_count: int
    total_signed_amount: Decimal
    matched_signed_amount: Decimal
    unmatched_signed_amount: Decimal

    @property
    def fully_matched(self) -> bool:
        return self.unmatched_count == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_count": self.total_count,
            "matched_count": self.matched_count,
            "unmatched_count": self.unmatched_count,
            "total_signed_amount": str(self.total_signed_amount),
            "matched_signed_amount": str(self.matched_signed_amount),
            "unmatched_signed_amount": str(self.unmatched_signed_amount),
            "fully_matched": self.fully_matched,
        }


@dataclass(frozen=True)
class BalanceCheck:
    """Result of comparing the bank statement with the adjusted book balance."""
    book_balance: Decimal
    statement_balance: Decimal
    cleared_debits: Decimal
    cleared_credits: Decimal
    adjusted_book_balance: Decimal
    difference: Decimal
    is_balanced: bool
    variance_percent: Decimal
    has_large_variance: bool
    cleared_transaction_ids: tuple = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "book_balance": str(self.book_balance),
            "statement_balance": str(self.statement_balance),
            "cleared_debits": str(self.cleared_debits),
            "cleared_credits": str(self.cleared_credits),
            "adjusted_book_balance": str(self.adjusted_book_balance),
            "difference": str(self.difference),
            "is_balanced": self.is_balanced,
            "variance_percent": str(self.variance_percent),
            "has_large_variance": self.has_large_variance,
            "cleared_transaction_ids": list(self.cleared_transaction_ids),
        }
