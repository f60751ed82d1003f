"""
Transaction Repository

Persistence boundary of the reconciliation engine:
- Load bank (external) transactions for an account
- Load ledger (internal) transactions for an account
- Save match links and notes of a session back to the database

Tables are created by migrations/create_reconciliation_tables.py.
"""

import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from reconciliation.models import (
    UNMATCHED,
    ExternalTransaction,
    InternalTransaction,
    Matched,
)
from reconciliation.services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)


def _state(matched_to_id: Optional[Any]):
    return Matched(str(matched_to_id)) if matched_to_id else UNMATCHED


class TransactionRepository:
    """
    Loads and saves reconciliation data for one account.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_external_transactions(
        self,
        account_ref: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        ledger_margin_days: int = 0
    ) -> List[ExternalTransaction]:
        """
        Load bank statement transactions for an account, oldest first.

        With a date window, bank rows outside it are still loaded when a
        ledger row loaded by load_internal_transactions (same arguments)
        is matched to them, so saved links never come back one-sided.
        """
        params = self._window_params(account_ref, start_date, end_date, ledger_margin_days)
        window = self._date_range("", start_date, end_date)
        partners = self._partner_ids(
            "public.ledger_transactions", "ledger_start_date", "ledger_end_date", params
        )

        query = text(f"""
            SELECT
                id, txn_date, description, amount, polarity,
                matched_to_id, reference, notes
            FROM public.bank_transactions
            WHERE account_ref = :account_ref{self._scope(window, partners)}
            ORDER BY txn_date, id
        """)

        result = await self.db.execute(query, params)
        rows = result.fetchall()

        return [
            ExternalTransaction(
                id=str(row[0]),
                date=row[1],
                description=row[2] or "",
                amount=row[3],
                polarity=row[4],
                state=_state(row[5]),
                reference=row[6],
                notes=row[7],
            )
            for row in rows
        ]

    async def load_internal_transactions(
        self,
        account_ref: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        ledger_margin_days: int = 0
    ) -> List[InternalTransaction]:
        """
        Load ledger transactions posted to an account, oldest first.

        The ledger window is the bank window widened by ledger_margin_days
        on both sides, so bank rows near its edges keep every candidate.
        Ledger rows matched to a bank row inside the bank window are loaded
        wherever they fall.
        """
        params = self._window_params(account_ref, start_date, end_date, ledger_margin_days)
        window = self._date_range("ledger_", start_date, end_date)
        partners = self._partner_ids(
            "public.bank_transactions", "start_date", "end_date", params
        )

        query = text(f"""
            SELECT
                id, txn_date, description, amount, kind,
                category, branch_id, matched_to_id, reference
            FROM public.ledger_transactions
            WHERE account_ref = :account_ref{self._scope(window, partners)}
            ORDER BY txn_date, id
        """)

        result = await self.db.execute(query, params)
        rows = result.fetchall()

        return [
            InternalTransaction(
                id=str(row[0]),
                date=row[1],
                description=row[2] or "",
                amount=row[3],
                kind=row[4],
                category=row[5] or "",
                owner_scope=str(row[6]) if row[6] else None,
                state=_state(row[7]),
                reference=row[8],
            )
            for row in rows
        ]

    async def save_session(self, service: ReconciliationService) -> Dict[str, int]:
        """
        Write match links and notes of a session in one transaction.

        Returns:
            Number of bank and ledger rows written
        """
        external_params = [
            {
                "id": txn.id,
                "account_ref": service.account_ref,
                "matched_to_id": txn.matched_to_id,
                "notes": txn.notes,
            }
            for txn in service.external_transactions
        ]
        internal_params = [
            {
                "id": txn.id,
                "account_ref": service.account_ref,
                "matched_to_id": txn.matched_to_id,
            }
            for txn in service.internal_transactions
        ]

        try:
            if external_params:
                await self.db.execute(text("""
                    UPDATE public.bank_transactions
                    SET matched_to_id = :matched_to_id,
                        notes = :notes,
                        updated_at = NOW()
                    WHERE id = :id AND account_ref = :account_ref
                """), external_params)

            if internal_params:
                await self.db.execute(text("""
                    UPDATE public.ledger_transactions
                    SET matched_to_id = :matched_to_id,
                        updated_at = NOW()
                    WHERE id = :id AND account_ref = :account_ref
                """), internal_params)

            await self.db.commit()
        except Exception as e:
            logger.error(f"Failed to save reconciliation session {service.session_id}: {e}")
            await self.db.rollback()
            raise

        logger.info(
            f"Saved reconciliation session {service.session_id}: "
            f"{len(external_params)} bank rows, {len(internal_params)} ledger rows"
        )
        return {"external": len(external_params), "internal": len(internal_params)}

    # ==================== Private Methods ====================

    def _window_params(
        self,
        account_ref: str,
        start_date: Optional[date],
        end_date: Optional[date],
        ledger_margin_days: int
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"account_ref": account_ref}
        margin = timedelta(days=ledger_margin_days)

        if start_date:
            params["start_date"] = start_date
            params["ledger_start_date"] = start_date - margin
        if end_date:
            params["end_date"] = end_date
            params["ledger_end_date"] = end_date + margin

        return params

    def _date_range(self, prefix: str, start_date: Optional[date], end_date: Optional[date]) -> List[str]:
        conditions = []
        if start_date:
            conditions.append(f"txn_date >= :{prefix}start_date")
        if end_date:
            conditions.append(f"txn_date <= :{prefix}end_date")
        return conditions

    def _partner_ids(self, other_table: str, start_param: str, end_param: str, params: Dict[str, Any]) -> str:
        """Subquery selecting the partners of linked rows inside the other table's window."""
        conditions = ["account_ref = :account_ref", "matched_to_id IS NOT NULL"]
        if start_param in params:
            conditions.append(f"txn_date >= :{start_param}")
        if end_param in params:
            conditions.append(f"txn_date <= :{end_param}")

        return f"SELECT matched_to_id FROM {other_table} WHERE {' AND '.join(conditions)}"

    def _scope(self, window: List[str], partners: str) -> str:
        if not window:
            return ""
        return f" AND (({' AND '.join(window)}) OR id IN ({partners}))"
