"""
Reconciliation Reporting

Pure functions computed on demand over a session's collections:
- summarize: matched/unmatched counts and signed amounts
- search_external: text filter used by the matching table
- compute_balance_check: statement vs. adjusted book balance
"""

from decimal import Decimal
from typing import Iterable, List, Optional

from reconciliation.models import (
    BalanceCheck,
    ExternalTransaction,
    InternalTransaction,
    ReconciliationSummary,
    TransactionKind,
)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")

BALANCE_TOLERANCE = Decimal("0.01")
VARIANCE_ALERT_PERCENT = Decimal("10")


def summarize(external_transactions: Iterable[ExternalTransaction]) -> ReconciliationSummary:
    """Aggregate counts and signed amounts (credit +, debit -) over bank transactions."""
    total_count = 0
    matched_count = 0
    total_signed = ZERO
    matched_signed = ZERO

    for txn in external_transactions:
        total_count += 1
        total_signed += txn.signed_amount
        if txn.matched:
            matched_count += 1
            matched_signed += txn.signed_amount

    return ReconciliationSummary(
        total_count=total_count,
        matched_count=matched_count,
        unmatched_count=total_count - matched_count,
        total_signed_amount=total_signed,
        matched_signed_amount=matched_signed,
        unmatched_signed_amount=total_signed - matched_signed,
    )


def _amount_text(amount: Decimal) -> str:
    if amount.as_tuple().exponent >= -2:
        amount = amount.quantize(CENT)
    return format(amount, "f")


def search_external(
    external_transactions: Iterable[ExternalTransaction],
    term: Optional[str]
) -> List[ExternalTransaction]:
    """
    Filter bank transactions by a search term.

    Description and reference match case-insensitively. The ISO date and
    the amount match on their text, amounts shown with at least two
    decimals so "500" and "500.00" read the same.
    """
    if not term:
        return list(external_transactions)

    term_lower = term.lower()

    def _matches(txn: ExternalTransaction) -> bool:
        return (
            term_lower in (txn.description or "").lower()
            or term_lower in (txn.reference or "").lower()
            or term in txn.date.isoformat()
            or term in _amount_text(txn.amount)
        )

    return [txn for txn in external_transactions if _matches(txn)]


def compute_balance_check(
    book_balance: Decimal,
    statement_balance: Decimal,
    cleared_transactions: Iterable[InternalTransaction],
    last_statement_balance: Optional[Decimal] = None,
    tolerance: Decimal = BALANCE_TOLERANCE,
    variance_alert_percent: Decimal = VARIANCE_ALERT_PERCENT
) -> BalanceCheck:
    """
    Compare the bank statement balance with the book balance adjusted for
    cleared ledger transactions.

    Args:
        book_balance: Balance of the GL account behind the bank account
        statement_balance: Closing balance on the bank statement
        cleared_transactions: Ledger transactions counted as cleared
        last_statement_balance: Previous statement balance, for variance alerts
        tolerance: Largest absolute difference still considered balanced
        variance_alert_percent: Statement movement that triggers an alert

    Returns:
        BalanceCheck
    """
    cleared = list(cleared_transactions)
    cleared_debits = sum(
        (txn.amount for txn in cleared if txn.kind == TransactionKind.INCOME), ZERO
    )
    cleared_credits = sum(
        (txn.amount for txn in cleared if txn.kind == TransactionKind.EXPENSE), ZERO
    )

    adjusted = book_balance + cleared_debits - cleared_credits
    difference = adjusted - statement_balance

    variance_percent = ZERO
    if last_statement_balance:
        variance = abs(statement_balance - last_statement_balance)
        variance_percent = (variance / abs(last_statement_balance) * HUNDRED).quantize(CENT)

    return BalanceCheck(
        book_balance=book_balance,
        statement_balance=statement_balance,
        cleared_debits=cleared_debits,
        cleared_credits=cleared_credits,
        adjusted_book_balance=adjusted,
        difference=difference,
        is_balanced=abs(difference) < tolerance,
        variance_percent=variance_percent,
        has_large_variance=variance_percent > variance_alert_percent,
        cleared_transaction_ids=tuple(txn.id for txn in cleared),
    )
