"""
Unit Tests for the SQLAlchemy repositories

The AsyncSession is mocked; these tests pin the compare-and-swap outcome
mapping, error translation and the upsert statement shape.

Run with: pytest tests/test_sql_repositories.py -v
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError

from card_reconciliation.errors import DownstreamUnavailableError
from card_reconciliation.models import (
    CardNetwork,
    LinkMethod,
    LinkOutcome,
    TransactionStatus,
)
from card_reconciliation.repositories.sql import (
    SqlCardRepository,
    SqlFraudAlertSink,
    SqlTransactionRepository,
)
from card_reconciliation.scoring.fraud import detect_fraud


@pytest.fixture
def mock_db():
    """AsyncSession stand-in: async query methods, sync add_all."""
    db = MagicMock()
    db.execute = AsyncMock()
    db.scalars = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    return db


def _transaction_row(**overrides):
    values = {
        "id": "txn-1",
        "tenant_id": "tenant-1",
        "card_id": "card-1",
        "provider_transaction_id": "prov-1",
        "amount": Decimal("150.00"),
        "currency": "BRL",
        "merchant_name": "Hotel XYZ",
        "merchant_category": "HOTEL",
        "transaction_date": datetime(2024, 3, 12, 14, 30, tzinfo=timezone.utc),
        "posting_date": None,
        "description": None,
        "status": "posted",
        "kind": "purchase",
        "authorization_code": None,
        "location": {"country": "US", "city": "Miami"},
        "is_expensed": True,
        "expense_item_id": "exp-1",
        "classification_score": 0.8,
        "fraud_score": 25,
        "provider_metadata": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestSqlCardRepository:

    @pytest.mark.asyncio
    async def test_get_card_maps_row(self, mock_db):
        row = SimpleNamespace(
            id="card-1", tenant_id="tenant-1", masked_card_number="**** 1234", last_four="1234",
            holder_name="Ana Souza", holder_id=None, network="DINERS", bank_name=None,
            expiry_date=None, credit_limit=Decimal("20000"), available_credit=None,
            currency="BRL", home_country=None, is_active=True, is_business_card=True,
            last_sync_at=None
        )
        result = MagicMock()
        result.scalar_one_or_none.return_value = row
        mock_db.execute.return_value = result

        card = await SqlCardRepository(mock_db, default_home_country="PT").get_card("card-1", "tenant-1")

        assert card.network == CardNetwork.OTHER
        assert card.home_country == "PT"
        assert card.available_credit == Decimal("0")

    @pytest.mark.asyncio
    async def test_get_card_missing(self, mock_db):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        mock_db.execute.return_value = result

        assert await SqlCardRepository(mock_db).get_card("missing", "tenant-1") is None

    @pytest.mark.asyncio
    async def test_database_error_becomes_downstream_error(self, mock_db):
        mock_db.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))

        with pytest.raises(DownstreamUnavailableError) as exc_info:
            await SqlCardRepository(mock_db).list_active_cards("tenant-1")

        assert exc_info.value.component == "card repository"
        mock_db.rollback.assert_awaited_once()


class TestSqlTransactionRepository:

    @pytest.mark.asyncio
    async def test_link_succeeds_on_single_row(self, mock_db):
        mock_db.execute.return_value = MagicMock(rowcount=1)

        outcome = await SqlTransactionRepository(mock_db).link_transaction_to_expense(
            "txn-1", "exp-1", LinkMethod.AUTOMATIC
        )

        assert outcome == LinkOutcome.LINKED
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_link_conflict_when_no_row_updated(self, mock_db):
        lookup = MagicMock()
        lookup.scalar_one_or_none.return_value = False
        mock_db.execute.side_effect = [MagicMock(rowcount=0), lookup]

        outcome = await SqlTransactionRepository(mock_db).link_transaction_to_expense(
            "txn-1", "exp-1", LinkMethod.MANUAL
        )

        assert outcome == LinkOutcome.CONFLICT
        mock_db.rollback.assert_awaited_once()
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_link_reports_transaction_already_linked(self, mock_db):
        lookup = MagicMock()
        lookup.scalar_one_or_none.return_value = True
        mock_db.execute.side_effect = [MagicMock(rowcount=0), lookup]

        outcome = await SqlTransactionRepository(mock_db).link_transaction_to_expense(
            "txn-1", "exp-1", LinkMethod.AUTOMATIC
        )

        assert outcome == LinkOutcome.TRANSACTION_ALREADY_LINKED
        lookup_sql = str(mock_db.execute.await_args_list[1].args[0].compile(dialect=postgresql.dialect()))
        assert "is_expensed" in lookup_sql
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_link_conflict_on_unique_violation(self, mock_db):
        mock_db.execute.side_effect = IntegrityError("UPDATE", {}, Exception("duplicate key"))

        outcome = await SqlTransactionRepository(mock_db).link_transaction_to_expense(
            "txn-1", "exp-1", LinkMethod.AUTOMATIC
        )

        assert outcome == LinkOutcome.CONFLICT

    @pytest.mark.asyncio
    async def test_link_statement_guards_both_sides(self, mock_db):
        mock_db.execute.return_value = MagicMock(rowcount=1)

        await SqlTransactionRepository(mock_db).link_transaction_to_expense("txn-1", "exp-1", LinkMethod.AUTOMATIC)

        stmt = mock_db.execute.await_args.args[0]
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        assert sql.startswith("UPDATE card_transactions")
        assert "is_expensed IS false" in sql
        assert "NOT (EXISTS" in sql

    @pytest.mark.asyncio
    async def test_upsert_never_overwrites_link(self, mock_db, make_transaction):
        scalars_result = MagicMock()
        scalars_result.one.return_value = _transaction_row()
        mock_db.scalars.return_value = scalars_result

        stored = await SqlTransactionRepository(mock_db).upsert_transaction(make_transaction())

        stmt = mock_db.scalars.await_args.args[0]
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        update_clause = sql.split("DO UPDATE SET", 1)[1].split("RETURNING", 1)[0]
        assert "ON CONFLICT (tenant_id, provider_transaction_id)" in sql
        assert "amount = excluded.amount" in update_clause
        assert "is_expensed" not in update_clause
        assert "expense_item_id" not in update_clause

        assert stored.is_expensed is True
        assert stored.expense_item_id == "exp-1"
        assert stored.status == TransactionStatus.POSTED
        assert stored.location.country == "US"
        assert stored.metadata == {}
        mock_db.commit.assert_awaited_once()


class TestSqlFraudAlertSink:

    @pytest.mark.asyncio
    async def test_publish_persists_alerts(self, mock_db, make_card, make_transaction):
        alerts = detect_fraud([make_transaction(amount=Decimal("12000"))], make_card())

        await SqlFraudAlertSink(mock_db).publish(alerts, "tenant-1")

        rows = mock_db.add_all.call_args.args[0]
        assert len(rows) == 1
        assert rows[0].tenant_id == "tenant-1"
        assert rows[0].alert_type == "unusual_amount"
        assert rows[0].recommended_action == "review"
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_publish_nothing(self, mock_db):
        await SqlFraudAlertSink(mock_db).publish([], "tenant-1")
        mock_db.add_all.assert_not_called()
