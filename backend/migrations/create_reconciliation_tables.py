"""
Database Migration: Create Reconciliation Tables

Creates the bank statement and ledger transaction tables the
reconciliation engine loads sessions from and saves match links to.
"""

import asyncio
import logging
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text

logger = logging.getLogger(__name__)


SQL_STATEMENTS = [
    # Bank statement lines (external side)
    """
    CREATE TABLE IF NOT EXISTS public.bank_transactions (
        id VARCHAR(64) PRIMARY KEY,
        account_ref VARCHAR(64) NOT NULL,
        txn_date DATE NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        amount NUMERIC(14,2) NOT NULL,
        polarity VARCHAR(10) NOT NULL,
        matched_to_id VARCHAR(64),
        reference VARCHAR(255),
        notes TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),

        CONSTRAINT bank_transactions_amount_check CHECK (amount >= 0),
        CONSTRAINT bank_transactions_polarity_check
            CHECK (polarity IN ('credit', 'debit'))
    )
    """,

    # Ledger entries (internal side)
    """
    CREATE TABLE IF NOT EXISTS public.ledger_transactions (
        id VARCHAR(64) PRIMARY KEY,
        account_ref VARCHAR(64) NOT NULL,
        branch_id VARCHAR(64),
        txn_date DATE NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        amount NUMERIC(14,2) NOT NULL,
        kind VARCHAR(10) NOT NULL,
        category VARCHAR(100),
        matched_to_id VARCHAR(64),
        reference VARCHAR(255),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),

        CONSTRAINT ledger_transactions_amount_check CHECK (amount >= 0),
        CONSTRAINT ledger_transactions_kind_check
            CHECK (kind IN ('income', 'expense'))
    )
    """,

    "CREATE INDEX IF NOT EXISTS idx_bank_txn_account_date ON public.bank_transactions(account_ref, txn_date)",
    "CREATE INDEX IF NOT EXISTS idx_ledger_txn_account_date ON public.ledger_transactions(account_ref, txn_date)",
]


async def create_tables(engine) -> int:
    """
    Create the reconciliation tables.

    Returns:
        Number of statements executed
    """
    logger.info("Creating reconciliation tables...")

    async with engine.begin() as conn:
        for i, sql in enumerate(SQL_STATEMENTS):
            await conn.execute(text(sql))
            logger.info(f"Statement {i + 1}/{len(SQL_STATEMENTS)} executed")

    logger.info("Reconciliation tables created successfully")
    return len(SQL_STATEMENTS)


if __name__ == "__main__":
    from logging_config import setup_logging
    from database.connection import get_engine

    setup_logging(json_format=False)
    asyncio.run(create_tables(get_engine()))
