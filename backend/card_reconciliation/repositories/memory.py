"""
In-memory repositories.

Used for tests and local runs. They enforce the same invariants as the SQL
implementation: idempotent upsert by provider transaction id and an atomic
compare-and-swap when linking.
"""

import asyncio
import logging
from datetime import date, datetime
from typing import Dict, List, Optional, Set, Tuple, Any

from card_reconciliation.models import (
    CardTransaction,
    CorporateCard,
    ExpenseItem,
    ExpenseMatch,
    FraudAlert,
    LinkMethod,
    LinkOutcome,
)
from card_reconciliation.repositories.base import (
    CardRepository,
    TransactionRepository,
    ExpenseRepository,
    ReviewQueue,
    FraudAlertSink,
    FeedSource,
)

logger = logging.getLogger(__name__)


def _within(day: date, from_date: Optional[date], to_date: Optional[date]) -> bool:
    if from_date and day < from_date:
        return False
    if to_date and day > to_date:
        return False
    return True


class InMemoryStore:
    """Shared state behind the in-memory repositories."""

    def __init__(self):
        self.cards: Dict[str, CorporateCard] = {}
        self.transactions: Dict[str, CardTransaction] = {}
        # (tenant_id, provider_transaction_id) -> transaction id
        self.provider_index: Dict[Tuple[str, str], str] = {}
        self.expense_items: Dict[str, ExpenseItem] = {}
        self.linked_expense_ids: Set[str] = set()
        self.link_log: List[Dict[str, Any]] = []
        self.lock = asyncio.Lock()

    def add_card(self, card: CorporateCard) -> CorporateCard:
        self.cards[card.id] = card
        return card

    def add_expense_item(self, item: ExpenseItem) -> ExpenseItem:
        self.expense_items[item.id] = item
        return item

    def add_transaction(self, transaction: CardTransaction) -> CardTransaction:
        self.transactions[transaction.id] = transaction
        self.provider_index[(transaction.tenant_id, transaction.provider_transaction_id)] = transaction.id
        if transaction.is_expensed and transaction.expense_item_id:
            self.linked_expense_ids.add(transaction.expense_item_id)
        return transaction


class InMemoryCardRepository(CardRepository):

    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get_card(self, card_id: str, tenant_id: str) -> Optional[CorporateCard]:
        card = self.store.cards.get(card_id)
        if card is None or card.tenant_id != tenant_id:
            return None
        return card

    async def list_active_cards(self, tenant_id: str) -> List[CorporateCard]:
        return [
            c for c in self.store.cards.values()
            if c.tenant_id == tenant_id and c.is_active
        ]

    async def update_sync_state(self, card_id: str, tenant_id: str, synced_at: datetime) -> None:
        card = await self.get_card(card_id, tenant_id)
        if card is not None:
            self.store.cards[card_id] = card.model_copy(update={"last_sync_at": synced_at})


class InMemoryTransactionRepository(TransactionRepository):

    def __init__(self, store: InMemoryStore):
        self.store = store

    async def upsert_transaction(self, transaction: CardTransaction) -> CardTransaction:
        async with self.store.lock:
            key = (transaction.tenant_id, transaction.provider_transaction_id)
            existing_id = self.store.provider_index.get(key)

            if existing_id is None:
                self.store.add_transaction(transaction)
                return transaction

            existing = self.store.transactions[existing_id]
            updated = transaction.model_copy(update={
                "id": existing.id,
                "is_expensed": existing.is_expensed,
                "expense_item_id": existing.expense_item_id,
            })
            self.store.transactions[existing_id] = updated
            return updated

    async def find_unmatched_transactions(
        self,
        tenant_id: str,
        card_id: Optional[str] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> List[CardTransaction]:
        return [
            t for t in self.store.transactions.values()
            if t.tenant_id == tenant_id
            and not t.is_expensed
            and (card_id is None or t.card_id == card_id)
            and _within(t.transaction_date.date(), from_date, to_date)
        ]

    async def find_card_transactions(
        self,
        card_id: str,
        tenant_id: str,
        from_date: date,
        to_date: date
    ) -> List[CardTransaction]:
        return [
            t for t in self.store.transactions.values()
            if t.tenant_id == tenant_id
            and t.card_id == card_id
            and _within(t.transaction_date.date(), from_date, to_date)
        ]

    async def link_transaction_to_expense(
        self,
        transaction_id: str,
        expense_item_id: str,
        method: LinkMethod
    ) -> LinkOutcome:
        async with self.store.lock:
            transaction = self.store.transactions.get(transaction_id)
            if transaction is None:
                return LinkOutcome.CONFLICT
            if transaction.is_expensed:
                return LinkOutcome.TRANSACTION_ALREADY_LINKED
            if expense_item_id in self.store.linked_expense_ids:
                return LinkOutcome.CONFLICT

            self.store.transactions[transaction_id] = transaction.model_copy(update={
                "is_expensed": True,
                "expense_item_id": expense_item_id,
            })
            self.store.linked_expense_ids.add(expense_item_id)
            self.store.link_log.append({
                "transaction_id": transaction_id,
                "expense_item_id": expense_item_id,
                "method": method.value
            })
            return LinkOutcome.LINKED


class InMemoryExpenseRepository(ExpenseRepository):

    def __init__(self, store: InMemoryStore):
        self.store = store

    async def find_unmatched_expense_items(
        self,
        tenant_id: str,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> List[ExpenseItem]:
        return [
            e for e in self.store.expense_items.values()
            if e.tenant_id == tenant_id
            and e.id not in self.store.linked_expense_ids
            and _within(e.expense_date, from_date, to_date)
        ]

    async def find_expense_items_for_period(
        self,
        tenant_id: str,
        from_date: date,
        to_date: date
    ) -> List[ExpenseItem]:
        return [
            e for e in self.store.expense_items.values()
            if e.tenant_id == tenant_id and _within(e.expense_date, from_date, to_date)
        ]

    async def get_expense_items(self, tenant_id: str, expense_item_ids: List[str]) -> List[ExpenseItem]:
        return [
            self.store.expense_items[i] for i in expense_item_ids
            if i in self.store.expense_items and self.store.expense_items[i].tenant_id == tenant_id
        ]


class InMemoryReviewQueue(ReviewQueue):

    def __init__(self):
        self.pending: List[Dict[str, Any]] = []

    async def flag_for_manual_review(self, match: ExpenseMatch, tenant_id: str) -> None:
        self.pending.append({"tenant_id": tenant_id, **match.to_dict()})


class InMemoryFraudAlertSink(FraudAlertSink):

    def __init__(self):
        self.alerts: List[FraudAlert] = []

    async def publish(self, alerts: List[FraudAlert], tenant_id: str) -> None:
        self.alerts.extend(alerts)


class StaticFeedSource(FeedSource):
    """Serves canned raw records per card id."""

    def __init__(self, records: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.records = records or {}

    async def fetch_transactions(
        self,
        card: CorporateCard,
        from_date: date,
        to_date: date
    ) -> List[Dict[str, Any]]:
        return list(self.records.get(card.id, []))
