"""
Database Migration: Create Corporate Card Reconciliation Tables

Creates tables for cards, imported card transactions, review suggestions
and fraud alerts. expense_items is normally owned by the expense module;
it is created here only when missing so local environments work.
"""

import asyncio
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text
from database.connection import get_engine


SQL_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS public.corporate_cards (
        id VARCHAR(36) PRIMARY KEY,
        tenant_id VARCHAR(36) NOT NULL,

        masked_card_number VARCHAR(32) NOT NULL,
        last_four VARCHAR(4) NOT NULL,
        holder_name TEXT NOT NULL,
        holder_id VARCHAR(36),
        network VARCHAR(20) NOT NULL DEFAULT 'OTHER',
        bank_name TEXT,
        expiry_date DATE,

        credit_limit NUMERIC(14,2) NOT NULL DEFAULT 0,
        available_credit NUMERIC(14,2) NOT NULL DEFAULT 0,
        currency VARCHAR(3) NOT NULL DEFAULT 'BRL',
        home_country VARCHAR(2),

        is_active BOOLEAN NOT NULL DEFAULT true,
        is_business_card BOOLEAN NOT NULL DEFAULT true,
        last_sync_at TIMESTAMPTZ,

        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,

    """
    CREATE TABLE IF NOT EXISTS public.card_transactions (
        id VARCHAR(36) PRIMARY KEY,
        tenant_id VARCHAR(36) NOT NULL,
        card_id VARCHAR(36) NOT NULL REFERENCES public.corporate_cards(id) ON DELETE CASCADE,
        provider_transaction_id VARCHAR(128) NOT NULL,

        amount NUMERIC(14,2) NOT NULL,
        currency VARCHAR(3) NOT NULL,
        merchant_name TEXT NOT NULL,
        merchant_category VARCHAR(64) NOT NULL DEFAULT '',
        transaction_date TIMESTAMPTZ NOT NULL,
        posting_date TIMESTAMPTZ,
        description TEXT NOT NULL DEFAULT '',
        status VARCHAR(20) NOT NULL DEFAULT 'posted',
        kind VARCHAR(20) NOT NULL DEFAULT 'purchase',
        authorization_code VARCHAR(64),
        location JSON,

        -- Link state (never overwritten by re-import)
        is_expensed BOOLEAN NOT NULL DEFAULT false,
        expense_item_id VARCHAR(36),
        link_method VARCHAR(20),
        linked_at TIMESTAMPTZ,

        classification_score DOUBLE PRECISION,
        fraud_score INTEGER,
        provider_metadata JSON NOT NULL DEFAULT '{}',

        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),

        CONSTRAINT uq_card_transactions_provider_id UNIQUE (tenant_id, provider_transaction_id),
        CONSTRAINT card_transactions_status_check
            CHECK (status IN ('pending', 'posted', 'disputed', 'reversed')),
        CONSTRAINT card_transactions_kind_check
            CHECK (kind IN ('purchase', 'refund', 'fee', 'interest')),
        CONSTRAINT card_transactions_fraud_score_check
            CHECK (fraud_score IS NULL OR fraud_score BETWEEN 0 AND 100)
    )
    """,

    """
    CREATE TABLE IF NOT EXISTS public.expense_items (
        id VARCHAR(36) PRIMARY KEY,
        tenant_id VARCHAR(36) NOT NULL,
        expense_date DATE NOT NULL,
        amount NUMERIC(14,2) NOT NULL,
        currency VARCHAR(3) NOT NULL,
        vendor TEXT,
        category VARCHAR(64),
        submitter_id VARCHAR(36),
        receipt_url TEXT
    )
    """,

    """
    CREATE TABLE IF NOT EXISTS public.expense_match_suggestions (
        id VARCHAR(36) PRIMARY KEY DEFAULT gen_random_uuid()::text,
        tenant_id VARCHAR(36) NOT NULL,
        transaction_id VARCHAR(36) NOT NULL REFERENCES public.card_transactions(id) ON DELETE CASCADE,
        expense_item_id VARCHAR(36) NOT NULL,
        match_score DOUBLE PRECISION NOT NULL,
        match_reasons JSON NOT NULL DEFAULT '[]',
        confidence VARCHAR(10) NOT NULL,
        status VARCHAR(20) NOT NULL DEFAULT 'pending',
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),

        CONSTRAINT uq_match_suggestion_pair UNIQUE (transaction_id, expense_item_id)
    )
    """,

    """
    CREATE TABLE IF NOT EXISTS public.card_fraud_alerts (
        id VARCHAR(36) PRIMARY KEY,
        tenant_id VARCHAR(36) NOT NULL,
        transaction_id VARCHAR(36) NOT NULL REFERENCES public.card_transactions(id) ON DELETE CASCADE,
        card_id VARCHAR(36) NOT NULL,
        alert_type VARCHAR(32) NOT NULL,
        risk_score INTEGER NOT NULL,
        description TEXT NOT NULL,
        recommended_action VARCHAR(20) NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        resolved_at TIMESTAMPTZ,
        resolution TEXT,

        CONSTRAINT card_fraud_alerts_action_check
            CHECK (recommended_action IN ('block', 'review', 'approve', 'notify_user'))
    )
    """,

    # One active link per expense item
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_card_transactions_expense_item
        ON public.card_transactions(expense_item_id)
        WHERE expense_item_id IS NOT NULL
    """,

    "CREATE INDEX IF NOT EXISTS ix_corporate_cards_tenant ON public.corporate_cards(tenant_id)",
    "CREATE INDEX IF NOT EXISTS ix_card_transactions_tenant ON public.card_transactions(tenant_id)",
    "CREATE INDEX IF NOT EXISTS ix_card_transactions_card_date ON public.card_transactions(card_id, transaction_date)",
    "CREATE INDEX IF NOT EXISTS ix_card_transactions_unmatched ON public.card_transactions(tenant_id) WHERE is_expensed = false",
    "CREATE INDEX IF NOT EXISTS ix_expense_items_tenant_date ON public.expense_items(tenant_id, expense_date)",
    "CREATE INDEX IF NOT EXISTS ix_match_suggestions_status ON public.expense_match_suggestions(status)",
    "CREATE INDEX IF NOT EXISTS ix_card_fraud_alerts_card ON public.card_fraud_alerts(card_id)",
]


async def create_tables():
    """Create the card reconciliation tables."""
    print("Creating card reconciliation tables...")

    async with get_engine().begin() as conn:
        for i, sql in enumerate(SQL_STATEMENTS):
            try:
                await conn.execute(text(sql))
                print(f"  ✓ Statement {i+1}/{len(SQL_STATEMENTS)} executed")
            except Exception as e:
                if "already exists" in str(e).lower():
                    print(f"  ✓ Statement {i+1}/{len(SQL_STATEMENTS)} (already exists)")
                else:
                    print(f"  ✗ Statement {i+1}/{len(SQL_STATEMENTS)} failed: {e}")
                    raise

        print("\n✅ Card reconciliation tables created successfully!")


if __name__ == "__main__":
    asyncio.run(create_tables())
