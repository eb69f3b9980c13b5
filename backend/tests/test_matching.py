"""
Unit Tests for candidate aggregation and the auto-match decision pass

Run with: pytest tests/test_matching.py -v
"""

import asyncio
import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

from card_reconciliation.models import (
    ExpenseMatch,
    LinkMethod,
    LinkOutcome,
    MatchConfidence,
)
from card_reconciliation.matching.aggregator import MatchAggregator, rank_matches
from card_reconciliation.matching.decision import AutoMatchDecisionEngine, CandidatePool
from card_reconciliation.repositories.memory import (
    InMemoryExpenseRepository,
    InMemoryTransactionRepository,
)


def _match(transaction, expense_item, score, requires_review=False):
    return ExpenseMatch(
        transaction=transaction,
        expense_item=expense_item,
        match_score=score,
        match_reasons=["Same date"],
        confidence=MatchConfidence.HIGH if score >= 0.9 else MatchConfidence.LOW,
        requires_review=requires_review
    )


class TestMatchAggregator:

    @pytest.fixture
    def hotel_and_restaurant(self, make_transaction, make_expense):
        hotel = make_transaction()
        restaurant = make_transaction(
            merchant_name="Restaurante Sabor",
            merchant_category="RESTAURANT",
            amount=Decimal("80.00"),
            transaction_date=datetime(2024, 3, 13, 12, 0, tzinfo=timezone.utc)
        )
        hotel_claim = make_expense()
        restaurant_claim = make_expense(
            vendor="Restaurante Sabor",
            category="meals",
            amount=Decimal("80.00"),
            expense_date=date(2024, 3, 13)
        )
        unrelated = make_expense(
            vendor="Office Depot",
            category="office",
            amount=Decimal("999.00"),
            expense_date=date(2024, 2, 1)
        )
        return [hotel, restaurant], [hotel_claim, restaurant_claim, unrelated]

    def test_drops_pairs_below_min_score(self, hotel_and_restaurant):
        transactions, expense_items = hotel_and_restaurant

        matches = MatchAggregator().score_candidates(transactions, expense_items)

        assert [(m.transaction.id, m.expense_item.id) for m in matches] == [
            (transactions[0].id, expense_items[0].id),
            (transactions[1].id, expense_items[1].id),
        ]
        assert all(m.match_score >= 0.6 for m in matches)

    def test_ranked_highest_first(self, make_transaction, make_expense):
        transaction = make_transaction()
        close = make_expense(amount=Decimal("153.00"))
        exact = make_expense()

        matches = MatchAggregator().score_candidates([transaction], [close, exact])

        assert [m.expense_item.id for m in matches] == [exact.id, close.id]
        assert matches[0].match_score == 1.0
        assert matches[1].match_score == pytest.approx(0.95)

    def test_empty_inputs(self, make_transaction):
        assert MatchAggregator().score_candidates([make_transaction()], []) == []
        assert MatchAggregator().score_candidates([], []) == []

    def test_parallel_scoring_matches_sequential(self, make_transaction, make_expense):
        transactions = [
            make_transaction(
                amount=Decimal("100.00") + i,
                transaction_date=datetime(2024, 3, 10 + i, 10, 0, tzinfo=timezone.utc)
            )
            for i in range(5)
        ]
        expense_items = [
            make_expense(amount=Decimal("100.00") + i, expense_date=date(2024, 3, 10 + i))
            for i in range(4)
        ]

        sequential = MatchAggregator().score_candidates(transactions, expense_items)
        parallel = MatchAggregator(parallel_threshold=1, workers=3).score_candidates(transactions, expense_items)

        def key(matches):
            return [(m.transaction.id, m.expense_item.id, m.match_score) for m in matches]

        assert len(sequential) > 0
        assert key(parallel) == key(sequential)

    @pytest.mark.asyncio
    async def test_async_scoring_matches_sequential(self, make_transaction, make_expense):
        transactions = [
            make_transaction(
                amount=Decimal("100.00") + i,
                transaction_date=datetime(2024, 3, 10 + i, 10, 0, tzinfo=timezone.utc)
            )
            for i in range(5)
        ]
        expense_items = [
            make_expense(amount=Decimal("100.00") + i, expense_date=date(2024, 3, 10 + i))
            for i in range(4)
        ]

        sequential = MatchAggregator().score_candidates(transactions, expense_items)
        offloaded = await MatchAggregator(parallel_threshold=3, workers=2).score_candidates_async(
            transactions, expense_items
        )

        def key(matches):
            return [(m.transaction.id, m.expense_item.id, m.match_score) for m in matches]

        assert key(offloaded) == key(sequential)

    @pytest.mark.asyncio
    async def test_async_scoring_yields_to_event_loop(self, make_transaction, make_expense):
        transactions = [make_transaction() for _ in range(150)]
        expense_items = [make_expense() for _ in range(150)]
        ticks = []

        async def heartbeat():
            while True:
                ticks.append(1)
                await asyncio.sleep(0.001)

        ticker = asyncio.create_task(heartbeat())
        try:
            matches = await MatchAggregator(parallel_threshold=500).score_candidates_async(
                transactions, expense_items
            )
        finally:
            ticker.cancel()

        assert len(matches) == 150 * 150
        assert len(ticks) > 1

    def test_rank_matches_keeps_tie_order(self, make_transaction, make_expense):
        transaction = make_transaction()
        first = _match(transaction, make_expense(), 0.8)
        second = _match(transaction, make_expense(), 0.8)
        best = _match(transaction, make_expense(), 0.9)

        assert rank_matches([first, second, best]) == [best, first, second]

    @pytest.mark.asyncio
    async def test_find_matches_skips_linked(self, store, make_transaction, make_expense):
        linked = store.add_transaction(make_transaction(is_expensed=True, expense_item_id="exp-linked"))
        open_transaction = store.add_transaction(make_transaction())
        store.add_expense_item(make_expense(id="exp-linked"))
        open_claim = store.add_expense_item(make_expense())
        aggregator = MatchAggregator(
            InMemoryTransactionRepository(store),
            InMemoryExpenseRepository(store)
        )

        matches = await aggregator.find_matches("tenant-1")

        assert [(m.transaction.id, m.expense_item.id) for m in matches] == [
            (open_transaction.id, open_claim.id)
        ]
        assert linked.id not in {m.transaction.id for m in matches}

    @pytest.mark.asyncio
    async def test_find_matches_requires_repositories(self):
        with pytest.raises(RuntimeError):
            await MatchAggregator().find_matches("tenant-1")


class TestCandidatePool:

    def test_claim_tombstones_both_sides(self, make_transaction, make_expense):
        t1, t2 = make_transaction(), make_transaction()
        e1, e2 = make_expense(), make_expense()
        matches = [_match(t1, e1, 0.99), _match(t1, e2, 0.97), _match(t2, e1, 0.96)]
        pool = CandidatePool(matches)

        assert pool.available_transactions == 2
        assert pool.available_expense_items == 2
        assert pool.claim(matches[0]) is True

        assert pool.is_available(matches[1]) is False
        assert pool.is_available(matches[2]) is False
        assert pool.claim(matches[0]) is False
        assert pool.is_transaction_claimed(t1.id) is True
        assert pool.is_transaction_claimed(t2.id) is False
        assert pool.available_transactions == 1
        assert pool.available_expense_items == 1

    def test_unknown_match_is_unavailable(self, make_transaction, make_expense):
        pool = CandidatePool([])
        assert pool.is_available(_match(make_transaction(), make_expense(), 0.99)) is False


class TestAutoMatchDecisionEngine:

    @pytest.fixture
    def engine(self, store, review_queue):
        return AutoMatchDecisionEngine(InMemoryTransactionRepository(store), review_queue)

    @pytest.mark.asyncio
    async def test_links_best_and_discards_rest(self, engine, store, review_queue, make_transaction, make_expense):
        transaction = store.add_transaction(make_transaction())
        best, other = make_expense(), make_expense()

        summary = await engine.apply(
            [_match(transaction, best, 0.97), _match(transaction, other, 0.80, requires_review=True)],
            "tenant-1"
        )

        assert summary.to_dict() == {"matched": 1, "requires_review": 0, "discarded": 1, "conflicts": 0}
        assert store.link_log == [{
            "transaction_id": transaction.id,
            "expense_item_id": best.id,
            "method": LinkMethod.AUTOMATIC.value
        }]
        assert store.transactions[transaction.id].is_expensed is True
        assert review_queue.pending == []

    @pytest.mark.asyncio
    async def test_below_threshold_goes_to_review(self, engine, store, review_queue, make_transaction, make_expense):
        transaction = store.add_transaction(make_transaction())
        expense = make_expense()

        summary = await engine.apply([_match(transaction, expense, 0.92)], "tenant-1")

        assert summary.matched == 0
        assert summary.requires_review == 1
        assert review_queue.pending[0]["transaction_id"] == transaction.id
        assert review_queue.pending[0]["expense_item_id"] == expense.id
        assert review_queue.pending[0]["tenant_id"] == "tenant-1"
        assert store.transactions[transaction.id].is_expensed is False

    @pytest.mark.asyncio
    async def test_threshold_override(self, engine, store, make_transaction, make_expense):
        transaction = store.add_transaction(make_transaction())

        summary = await engine.apply([_match(transaction, make_expense(), 0.92)], "tenant-1", threshold=0.9)

        assert summary.matched == 1

    @pytest.mark.asyncio
    async def test_review_flag_prevents_link(self, engine, store, make_transaction, make_expense):
        transaction = store.add_transaction(make_transaction())

        summary = await engine.apply(
            [_match(transaction, make_expense(), 0.97, requires_review=True)], "tenant-1"
        )

        assert summary.matched == 0
        assert summary.requires_review == 1

    @pytest.mark.asyncio
    async def test_expense_linked_once(self, engine, store, make_transaction, make_expense):
        t1 = store.add_transaction(make_transaction())
        t2 = store.add_transaction(make_transaction())
        expense = make_expense()

        summary = await engine.apply(
            [_match(t1, expense, 0.99), _match(t2, expense, 0.98)], "tenant-1"
        )

        assert summary.matched == 1
        assert summary.discarded == 1
        assert store.transactions[t2.id].is_expensed is False

    @pytest.mark.asyncio
    async def test_conflict_falls_through_to_next_candidate(self, engine, store, make_transaction, make_expense):
        store.add_transaction(make_transaction(is_expensed=True, expense_item_id="exp-taken"))
        transaction = store.add_transaction(make_transaction())
        taken = make_expense(id="exp-taken")
        free = make_expense()

        summary = await engine.apply(
            [_match(transaction, taken, 0.99), _match(transaction, free, 0.96)], "tenant-1"
        )

        assert summary.conflicts == 1
        assert summary.matched == 1
        assert summary.requires_review == 0
        assert store.transactions[transaction.id].expense_item_id == free.id

    @pytest.mark.asyncio
    async def test_unresolved_conflict_deferred_to_review(self, engine, store, review_queue, make_transaction, make_expense):
        store.add_transaction(make_transaction(is_expensed=True, expense_item_id="exp-taken"))
        transaction = store.add_transaction(make_transaction())

        summary = await engine.apply([_match(transaction, make_expense(id="exp-taken"), 0.99)], "tenant-1")

        assert summary.to_dict() == {"matched": 0, "requires_review": 1, "discarded": 0, "conflicts": 1}
        assert len(review_queue.pending) == 1
        assert review_queue.pending[0]["transaction_id"] == transaction.id

    @pytest.mark.asyncio
    async def test_transaction_linked_elsewhere_is_not_reviewed(self, engine, store, review_queue, make_transaction, make_expense):
        transaction = make_transaction()
        store.add_transaction(transaction.model_copy(update={"is_expensed": True, "expense_item_id": "exp-other"}))
        first, second, weak = make_expense(), make_expense(), make_expense()

        summary = await engine.apply(
            [
                _match(transaction, first, 0.99),
                _match(transaction, second, 0.97),
                _match(transaction, weak, 0.70, requires_review=True),
            ],
            "tenant-1"
        )

        assert summary.to_dict() == {"matched": 0, "requires_review": 0, "discarded": 2, "conflicts": 1}
        assert review_queue.pending == []
        assert store.transactions[transaction.id].expense_item_id == "exp-other"

    @pytest.mark.asyncio
    async def test_conflict_from_repository(self, review_queue, make_transaction, make_expense):
        repository = AsyncMock()
        repository.link_transaction_to_expense = AsyncMock(return_value=LinkOutcome.CONFLICT)
        engine = AutoMatchDecisionEngine(repository, review_queue)
        transaction = make_transaction()

        summary = await engine.apply([_match(transaction, make_expense(), 0.99)], "tenant-1")

        repository.link_transaction_to_expense.assert_awaited_once()
        args = repository.link_transaction_to_expense.await_args.args
        assert args[0] == transaction.id
        assert args[2] == LinkMethod.AUTOMATIC
        assert summary.conflicts == 1
        assert summary.requires_review == 1
