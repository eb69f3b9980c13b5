"""
Repository boundaries and their implementations.

The SQL implementations are imported from card_reconciliation.repositories.sql
directly so that the engine can be used without a database driver.
"""

from .base import (
    CardRepository,
    TransactionRepository,
    ExpenseRepository,
    ReviewQueue,
    FraudAlertSink,
    FeedSource,
)
from .memory import (
    InMemoryStore,
    InMemoryCardRepository,
    InMemoryTransactionRepository,
    InMemoryExpenseRepository,
    InMemoryReviewQueue,
    InMemoryFraudAlertSink,
    StaticFeedSource,
)
from .http_feed import HttpCardFeedSource

__all__ = [
    "CardRepository",
    "TransactionRepository",
    "ExpenseRepository",
    "ReviewQueue",
    "FraudAlertSink",
    "FeedSource",
    "InMemoryStore",
    "InMemoryCardRepository",
    "InMemoryTransactionRepository",
    "InMemoryExpenseRepository",
    "InMemoryReviewQueue",
    "InMemoryFraudAlertSink",
    "StaticFeedSource",
    "HttpCardFeedSource",
]
