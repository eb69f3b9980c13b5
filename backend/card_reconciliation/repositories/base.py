"""
Repository Boundaries

Abstract contracts for everything the engine reads from or writes to.
Implementations must raise DownstreamUnavailableError when their backing
store or service cannot be reached.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import List, Optional, Dict, Any

from card_reconciliation.models import (
    CardTransaction,
    CorporateCard,
    ExpenseItem,
    ExpenseMatch,
    FraudAlert,
    LinkMethod,
    LinkOutcome,
)


class CardRepository(ABC):

    @abstractmethod
    async def get_card(self, card_id: str, tenant_id: str) -> Optional[CorporateCard]:
        ...

    @abstractmethod
    async def list_active_cards(self, tenant_id: str) -> List[CorporateCard]:
        ...

    @abstractmethod
    async def update_sync_state(self, card_id: str, tenant_id: str, synced_at: datetime) -> None:
        ...


class TransactionRepository(ABC):

    @abstractmethod
    async def upsert_transaction(self, transaction: CardTransaction) -> CardTransaction:
        """
        Insert or update by (tenant_id, provider_transaction_id).

        Returns the stored transaction. Link state of an existing record is
        preserved on re-import.
        """
        ...

    @abstractmethod
    async def find_unmatched_transactions(
        self,
        tenant_id: str,
        card_id: Optional[str] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> List[CardTransaction]:
        ...

    @abstractmethod
    async def find_card_transactions(
        self,
        card_id: str,
        tenant_id: str,
        from_date: date,
        to_date: date
    ) -> List[CardTransaction]:
        ...

    @abstractmethod
    async def link_transaction_to_expense(
        self,
        transaction_id: str,
        expense_item_id: str,
        method: LinkMethod
    ) -> LinkOutcome:
        """
        Atomically claim both sides of the link.

        Returns TRANSACTION_ALREADY_LINKED if the transaction is linked,
        CONFLICT if the expense item is taken or the transaction is unknown.
        """
        ...


class ExpenseRepository(ABC):

    @abstractmethod
    async def find_unmatched_expense_items(
        self,
        tenant_id: str,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> List[ExpenseItem]:
        ...

    @abstractmethod
    async def find_expense_items_for_period(
        self,
        tenant_id: str,
        from_date: date,
        to_date: date
    ) -> List[ExpenseItem]:
        ...

    @abstractmethod
    async def get_expense_items(self, tenant_id: str, expense_item_ids: List[str]) -> List[ExpenseItem]:
        ...


class ReviewQueue(ABC):

    @abstractmethod
    async def flag_for_manual_review(self, match: ExpenseMatch, tenant_id: str) -> None:
        """Persist the pair as a pending suggestion (not a link)."""
        ...


class FraudAlertSink(ABC):

    @abstractmethod
    async def publish(self, alerts: List[FraudAlert], tenant_id: str) -> None:
        ...


class FeedSource(ABC):

    @abstractmethod
    async def fetch_transactions(
        self,
        card: CorporateCard,
        from_date: date,
        to_date: date
    ) -> List[Dict[str, Any]]:
        """Raw provider records; each must carry the provider transaction id."""
        ...
