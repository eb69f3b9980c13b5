"""
SQLAlchemy Repositories

PostgreSQL-backed implementations of the repository boundaries.

- Upsert uses INSERT ... ON CONFLICT (tenant_id, provider_transaction_id)
  DO UPDATE and never touches the link columns, so a re-import keeps links.
- Linking is a conditional UPDATE ... WHERE is_expensed = false AND the
  expense item is not linked elsewhere; the row count decides LINKED or
  not, and a follow-up read says which side was already taken. The
  partial unique index on expense_item_id catches the race the WHERE
  clause cannot see.

Any other SQLAlchemyError is rolled back and re-raised as
DownstreamUnavailableError.
"""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update, and_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from database.card_models import (
    CorporateCardDB,
    CardTransactionDB,
    ExpenseItemDB,
    ExpenseMatchSuggestionDB,
    CardFraudAlertDB,
)
from card_reconciliation.errors import DownstreamUnavailableError
from card_reconciliation.models import (
    CardNetwork,
    CardTransaction,
    CorporateCard,
    ExpenseItem,
    ExpenseMatch,
    FraudAlert,
    LinkMethod,
    LinkOutcome,
    TransactionKind,
    TransactionLocation,
    TransactionStatus,
    utc_now,
)
from card_reconciliation.repositories.base import (
    CardRepository,
    TransactionRepository,
    ExpenseRepository,
    ReviewQueue,
    FraudAlertSink,
)

logger = logging.getLogger(__name__)

# Columns refreshed on re-import; link columns are deliberately absent
UPSERT_UPDATE_COLUMNS = (
    "card_id", "amount", "currency", "merchant_name", "merchant_category",
    "transaction_date", "posting_date", "description", "status", "kind",
    "authorization_code", "location", "classification_score", "fraud_score",
    "provider_metadata",
)


@asynccontextmanager
async def _downstream(session: AsyncSession, component: str):
    try:
        yield
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"{component} query failed: {e}")
        raise DownstreamUnavailableError(component, str(e)) from e


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _day_after(day: date) -> datetime:
    return _day_start(day + timedelta(days=1))


def _card_from_row(row: CorporateCardDB, default_home_country: str) -> CorporateCard:
    return CorporateCard(
        id=row.id,
        tenant_id=row.tenant_id,
        masked_card_number=row.masked_card_number,
        last_four=row.last_four,
        holder_name=row.holder_name,
        holder_id=row.holder_id,
        network=CardNetwork(row.network) if row.network in CardNetwork._value2member_map_ else CardNetwork.OTHER,
        bank_name=row.bank_name,
        expiry_date=row.expiry_date,
        credit_limit=Decimal(row.credit_limit or 0),
        available_credit=Decimal(row.available_credit or 0),
        currency=row.currency,
        home_country=row.home_country or default_home_country,
        is_active=row.is_active,
        is_business_card=row.is_business_card,
        last_sync_at=row.last_sync_at
    )


def _transaction_from_row(row: CardTransactionDB) -> CardTransaction:
    return CardTransaction(
        id=row.id,
        tenant_id=row.tenant_id,
        card_id=row.card_id,
        provider_transaction_id=row.provider_transaction_id,
        amount=Decimal(row.amount),
        currency=row.currency,
        merchant_name=row.merchant_name,
        merchant_category=row.merchant_category or "",
        transaction_date=row.transaction_date,
        posting_date=row.posting_date,
        description=row.description or "",
        status=TransactionStatus(row.status),
        kind=TransactionKind(row.kind),
        authorization_code=row.authorization_code,
        location=TransactionLocation(**row.location) if row.location else None,
        is_expensed=row.is_expensed,
        expense_item_id=row.expense_item_id,
        classification_score=row.classification_score,
        fraud_score=row.fraud_score,
        metadata=row.provider_metadata or {}
    )


def _expense_from_row(row: ExpenseItemDB) -> ExpenseItem:
    return ExpenseItem(
        id=row.id,
        tenant_id=row.tenant_id,
        expense_date=row.expense_date,
        amount=Decimal(row.amount),
        currency=row.currency,
        vendor=row.vendor,
        category=row.category,
        submitter_id=row.submitter_id,
        receipt_url=row.receipt_url
    )


class SqlCardRepository(CardRepository):

    def __init__(self, db: AsyncSession, default_home_country: str = "BR"):
        self.db = db
        self.default_home_country = default_home_country

    async def get_card(self, card_id: str, tenant_id: str) -> Optional[CorporateCard]:
        async with _downstream(self.db, "card repository"):
            result = await self.db.execute(
                select(CorporateCardDB).where(
                    CorporateCardDB.id == card_id,
                    CorporateCardDB.tenant_id == tenant_id
                )
            )
            row = result.scalar_one_or_none()
        return _card_from_row(row, self.default_home_country) if row else None

    async def list_active_cards(self, tenant_id: str) -> List[CorporateCard]:
        async with _downstream(self.db, "card repository"):
            result = await self.db.execute(
                select(CorporateCardDB)
                .where(CorporateCardDB.tenant_id == tenant_id, CorporateCardDB.is_active.is_(True))
                .order_by(CorporateCardDB.id)
            )
            rows = result.scalars().all()
        return [_card_from_row(row, self.default_home_country) for row in rows]

    async def update_sync_state(self, card_id: str, tenant_id: str, synced_at: datetime) -> None:
        async with _downstream(self.db, "card repository"):
            await self.db.execute(
                update(CorporateCardDB)
                .where(CorporateCardDB.id == card_id, CorporateCardDB.tenant_id == tenant_id)
                .values(last_sync_at=synced_at, updated_at=utc_now())
            )
            await self.db.commit()


class SqlTransactionRepository(TransactionRepository):

    def __init__(self, db: AsyncSession):
        self.db = db

    async def upsert_transaction(self, transaction: CardTransaction) -> CardTransaction:
        values = {
            "id": transaction.id,
            "tenant_id": transaction.tenant_id,
            "card_id": transaction.card_id,
            "provider_transaction_id": transaction.provider_transaction_id,
            "amount": transaction.amount,
            "currency": transaction.currency,
            "merchant_name": transaction.merchant_name,
            "merchant_category": transaction.merchant_category,
            "transaction_date": transaction.transaction_date,
            "posting_date": transaction.posting_date,
            "description": transaction.description,
            "status": transaction.status.value,
            "kind": transaction.kind.value,
            "authorization_code": transaction.authorization_code,
            "location": transaction.location.model_dump() if transaction.location else None,
            "is_expensed": transaction.is_expensed,
            "expense_item_id": transaction.expense_item_id,
            "classification_score": transaction.classification_score,
            "fraud_score": transaction.fraud_score,
            "provider_metadata": transaction.metadata,
        }
        stmt = pg_insert(CardTransactionDB).values(**values)
        update_set = {name: getattr(stmt.excluded, name) for name in UPSERT_UPDATE_COLUMNS}
        update_set["updated_at"] = utc_now()
        stmt = stmt.on_conflict_do_update(
            index_elements=["tenant_id", "provider_transaction_id"],
            set_=update_set
        ).returning(CardTransactionDB)

        async with _downstream(self.db, "transaction repository"):
            result = await self.db.scalars(stmt, execution_options={"populate_existing": True})
            row = result.one()
            stored = _transaction_from_row(row)
            await self.db.commit()
        return stored

    async def find_unmatched_transactions(
        self,
        tenant_id: str,
        card_id: Optional[str] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> List[CardTransaction]:
        query = select(CardTransactionDB).where(
            CardTransactionDB.tenant_id == tenant_id,
            CardTransactionDB.is_expensed.is_(False)
        )
        if card_id:
            query = query.where(CardTransactionDB.card_id == card_id)
        if from_date:
            query = query.where(CardTransactionDB.transaction_date >= _day_start(from_date))
        if to_date:
            query = query.where(CardTransactionDB.transaction_date < _day_after(to_date))
        query = query.order_by(CardTransactionDB.transaction_date, CardTransactionDB.id)

        async with _downstream(self.db, "transaction repository"):
            result = await self.db.execute(query)
            rows = result.scalars().all()
        return [_transaction_from_row(row) for row in rows]

    async def find_card_transactions(
        self,
        card_id: str,
        tenant_id: str,
        from_date: date,
        to_date: date
    ) -> List[CardTransaction]:
        query = (
            select(CardTransactionDB)
            .where(
                CardTransactionDB.tenant_id == tenant_id,
                CardTransactionDB.card_id == card_id,
                CardTransactionDB.transaction_date >= _day_start(from_date),
                CardTransactionDB.transaction_date < _day_after(to_date)
            )
            .order_by(CardTransactionDB.transaction_date, CardTransactionDB.id)
        )
        async with _downstream(self.db, "transaction repository"):
            result = await self.db.execute(query)
            rows = result.scalars().all()
        return [_transaction_from_row(row) for row in rows]

    async def link_transaction_to_expense(
        self,
        transaction_id: str,
        expense_item_id: str,
        method: LinkMethod
    ) -> LinkOutcome:
        other = aliased(CardTransactionDB)
        expense_taken = select(other.id).where(other.expense_item_id == expense_item_id).exists()
        stmt = (
            update(CardTransactionDB)
            .where(
                CardTransactionDB.id == transaction_id,
                CardTransactionDB.is_expensed.is_(False),
                ~expense_taken
            )
            .values(
                is_expensed=True,
                expense_item_id=expense_item_id,
                link_method=method.value,
                linked_at=utc_now(),
                updated_at=utc_now()
            )
            .execution_options(synchronize_session=False)
        )

        async with _downstream(self.db, "transaction repository"):
            try:
                result = await self.db.execute(stmt)
            except IntegrityError:
                await self.db.rollback()
                logger.info(f"Link race lost for expense item {expense_item_id}")
                return LinkOutcome.CONFLICT

            if result.rowcount != 1:
                await self.db.rollback()
                already_linked = await self.db.execute(
                    select(CardTransactionDB.is_expensed).where(CardTransactionDB.id == transaction_id)
                )
                if already_linked.scalar_one_or_none() is True:
                    return LinkOutcome.TRANSACTION_ALREADY_LINKED
                return LinkOutcome.CONFLICT

            await self.db.commit()
        return LinkOutcome.LINKED


class SqlExpenseRepository(ExpenseRepository):

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_unmatched_expense_items(
        self,
        tenant_id: str,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> List[ExpenseItem]:
        linked = (
            select(CardTransactionDB.id)
            .where(CardTransactionDB.expense_item_id == ExpenseItemDB.id)
            .exists()
        )
        query = select(ExpenseItemDB).where(ExpenseItemDB.tenant_id == tenant_id, ~linked)
        if from_date:
            query = query.where(ExpenseItemDB.expense_date >= from_date)
        if to_date:
            query = query.where(ExpenseItemDB.expense_date <= to_date)
        query = query.order_by(ExpenseItemDB.expense_date, ExpenseItemDB.id)

        async with _downstream(self.db, "expense repository"):
            result = await self.db.execute(query)
            rows = result.scalars().all()
        return [_expense_from_row(row) for row in rows]

    async def find_expense_items_for_period(
        self,
        tenant_id: str,
        from_date: date,
        to_date: date
    ) -> List[ExpenseItem]:
        query = (
            select(ExpenseItemDB)
            .where(and_(
                ExpenseItemDB.tenant_id == tenant_id,
                ExpenseItemDB.expense_date >= from_date,
                ExpenseItemDB.expense_date <= to_date
            ))
            .order_by(ExpenseItemDB.expense_date, ExpenseItemDB.id)
        )
        async with _downstream(self.db, "expense repository"):
            result = await self.db.execute(query)
            rows = result.scalars().all()
        return [_expense_from_row(row) for row in rows]

    async def get_expense_items(self, tenant_id: str, expense_item_ids: List[str]) -> List[ExpenseItem]:
        if not expense_item_ids:
            return []
        async with _downstream(self.db, "expense repository"):
            result = await self.db.execute(
                select(ExpenseItemDB).where(
                    ExpenseItemDB.tenant_id == tenant_id,
                    ExpenseItemDB.id.in_(expense_item_ids)
                )
            )
            rows = result.scalars().all()
        return [_expense_from_row(row) for row in rows]


class SqlReviewQueue(ReviewQueue):

    def __init__(self, db: AsyncSession):
        self.db = db

    async def flag_for_manual_review(self, match: ExpenseMatch, tenant_id: str) -> None:
        stmt = pg_insert(ExpenseMatchSuggestionDB).values(
            tenant_id=tenant_id,
            transaction_id=match.transaction.id,
            expense_item_id=match.expense_item.id,
            match_score=match.match_score,
            match_reasons=list(match.match_reasons),
            confidence=match.confidence.value,
            status="pending"
        ).on_conflict_do_update(
            index_elements=["transaction_id", "expense_item_id"],
            set_={"match_score": match.match_score, "match_reasons": list(match.match_reasons)}
        )
        async with _downstream(self.db, "review queue"):
            await self.db.execute(stmt)
            await self.db.commit()


class SqlFraudAlertSink(FraudAlertSink):

    def __init__(self, db: AsyncSession):
        self.db = db

    async def publish(self, alerts: List[FraudAlert], tenant_id: str) -> None:
        if not alerts:
            return
        async with _downstream(self.db, "fraud alert sink"):
            self.db.add_all([
                CardFraudAlertDB(
                    id=alert.id,
                    tenant_id=tenant_id,
                    transaction_id=alert.transaction_id,
                    card_id=alert.card_id,
                    alert_type=alert.alert_type.value,
                    risk_score=alert.risk_score,
                    description=alert.description,
                    recommended_action=alert.recommended_action.value,
                    created_at=alert.created_at
                )
                for alert in alerts
            ])
            await self.db.commit()
