"""
Shared fixtures for the card reconciliation tests.

Factories default to a matching pair: a BRL hotel charge on a weekday
afternoon and the travel expense claim submitted for it.
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from card_reconciliation.models import (
    CardTransaction,
    CorporateCard,
    ExpenseItem,
)
from card_reconciliation.repositories.memory import (
    InMemoryStore,
    InMemoryCardRepository,
    InMemoryTransactionRepository,
    InMemoryExpenseRepository,
    InMemoryReviewQueue,
    InMemoryFraudAlertSink,
    StaticFeedSource,
)
from card_reconciliation.services.card_reconciliation_service import CardReconciliationService

TENANT_ID = "tenant-1"
CARD_ID = "card-1"


@pytest.fixture
def make_card():
    def _make(**overrides):
        values = {
            "id": CARD_ID,
            "tenant_id": TENANT_ID,
            "masked_card_number": "**** **** **** 1234",
            "last_four": "1234",
            "holder_name": "Ana Souza",
            "credit_limit": Decimal("20000"),
            "available_credit": Decimal("15000"),
            "currency": "BRL",
            "home_country": "BR",
        }
        values.update(overrides)
        return CorporateCard(**values)
    return _make


@pytest.fixture
def make_transaction():
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        values = {
            "id": f"txn-{counter['n']}",
            "tenant_id": TENANT_ID,
            "card_id": CARD_ID,
            "provider_transaction_id": f"prov-{counter['n']}",
            "amount": Decimal("150.00"),
            "currency": "BRL",
            "merchant_name": "Hotel XYZ",
            "merchant_category": "HOTEL",
            # Tuesday
            "transaction_date": datetime(2024, 3, 12, 14, 30, tzinfo=timezone.utc),
        }
        values.update(overrides)
        return CardTransaction(**values)
    return _make


@pytest.fixture
def make_expense():
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        values = {
            "id": f"exp-{counter['n']}",
            "tenant_id": TENANT_ID,
            "expense_date": date(2024, 3, 12),
            "amount": Decimal("150.00"),
            "currency": "BRL",
            "vendor": "Hotel XYZ",
            "category": "travel",
            "submitter_id": "user-1",
            "receipt_url": "https://receipts.example.com/1.pdf",
        }
        values.update(overrides)
        return ExpenseItem(**values)
    return _make


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def review_queue():
    return InMemoryReviewQueue()


@pytest.fixture
def alert_sink():
    return InMemoryFraudAlertSink()


@pytest.fixture
def feed():
    return StaticFeedSource()


@pytest.fixture
def service(store, review_queue, alert_sink, feed):
    """Service over the in-memory repositories."""
    return CardReconciliationService(
        card_repository=InMemoryCardRepository(store),
        transaction_repository=InMemoryTransactionRepository(store),
        expense_repository=InMemoryExpenseRepository(store),
        review_queue=review_queue,
        fraud_alert_sink=alert_sink,
        feed_source=feed,
    )
