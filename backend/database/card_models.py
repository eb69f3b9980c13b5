"""
Corporate Card Reconciliation - Database Models

Tables:
- corporate_cards: Cards per tenant, with sync state
- card_transactions: Imported provider transactions (one row per provider id)
- expense_items: Expense claim lines (owned by the expense module, read here)
- expense_match_suggestions: Pairs flagged for manual review
- card_fraud_alerts: Alerts raised by fraud scans
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Text, Boolean, Date, DateTime, Integer, Float,
    ForeignKey, Index, JSON, Numeric, UniqueConstraint, text
)

from database.connection import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CorporateCardDB(Base):
    __tablename__ = "corporate_cards"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)

    masked_card_number = Column(String(32), nullable=False)
    last_four = Column(String(4), nullable=False)
    holder_name = Column(Text, nullable=False)
    holder_id = Column(String(36), nullable=True)
    network = Column(String(20), nullable=False, default="OTHER")
    bank_name = Column(Text, nullable=True)
    expiry_date = Column(Date, nullable=True)

    credit_limit = Column(Numeric(14, 2), nullable=False, default=0)
    available_credit = Column(Numeric(14, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="BRL")
    home_country = Column(String(2), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    is_business_card = Column(Boolean, nullable=False, default=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class CardTransactionDB(Base):
    """
    Imported card transaction.

    (tenant_id, provider_transaction_id) is the import idempotency key.
    The partial unique index on expense_item_id keeps an expense item
    linked to at most one transaction.
    """
    __tablename__ = "card_transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    card_id = Column(String(36), ForeignKey("corporate_cards.id", ondelete="CASCADE"), nullable=False, index=True)
    provider_transaction_id = Column(String(128), nullable=False)

    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    merchant_name = Column(Text, nullable=False)
    merchant_category = Column(String(64), nullable=False, default="")
    transaction_date = Column(DateTime(timezone=True), nullable=False, index=True)
    posting_date = Column(DateTime(timezone=True), nullable=True)
    description = Column(Text, nullable=False, default="")
    status = Column(String(20), nullable=False, default="posted")
    kind = Column(String(20), nullable=False, default="purchase")
    authorization_code = Column(String(64), nullable=True)
    location = Column(JSON, nullable=True)

    is_expensed = Column(Boolean, nullable=False, default=False, index=True)
    expense_item_id = Column(String(36), nullable=True)
    link_method = Column(String(20), nullable=True)
    linked_at = Column(DateTime(timezone=True), nullable=True)

    classification_score = Column(Float, nullable=True)
    fraud_score = Column(Integer, nullable=True)
    provider_metadata = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint('tenant_id', 'provider_transaction_id', name='uq_card_transactions_provider_id'),
        Index('ix_card_transactions_card_date', 'card_id', 'transaction_date'),
        Index(
            'uq_card_transactions_expense_item',
            'expense_item_id',
            unique=True,
            postgresql_where=text('expense_item_id IS NOT NULL')
        ),
    )


class ExpenseItemDB(Base):
    __tablename__ = "expense_items"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    expense_date = Column(Date, nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    vendor = Column(Text, nullable=True)
    category = Column(String(64), nullable=True)
    submitter_id = Column(String(36), nullable=True)
    receipt_url = Column(Text, nullable=True)


class ExpenseMatchSuggestionDB(Base):
    """Pending review suggestion. Not a link."""
    __tablename__ = "expense_match_suggestions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    transaction_id = Column(String(36), ForeignKey("card_transactions.id", ondelete="CASCADE"), nullable=False)
    expense_item_id = Column(String(36), nullable=False)
    match_score = Column(Float, nullable=False)
    match_reasons = Column(JSON, nullable=False, default=list)
    confidence = Column(String(10), nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint('transaction_id', 'expense_item_id', name='uq_match_suggestion_pair'),
    )


class CardFraudAlertDB(Base):
    __tablename__ = "card_fraud_alerts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    transaction_id = Column(String(36), ForeignKey("card_transactions.id", ondelete="CASCADE"), nullable=False, index=True)
    card_id = Column(String(36), nullable=False, index=True)
    alert_type = Column(String(32), nullable=False)
    risk_score = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)
    recommended_action = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolution = Column(Text, nullable=True)
