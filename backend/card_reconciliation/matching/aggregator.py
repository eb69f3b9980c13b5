"""
Match Aggregator

Scores every unmatched transaction against every unmatched expense item for
a tenant (optionally scoped to a card and date range), drops pairs below the
minimum viable score and returns the rest ranked highest first.

A transaction or expense item may appear in several candidates; the decision
engine resolves that.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import List, Optional, Sequence

from card_reconciliation.models import CardTransaction, ExpenseItem, ExpenseMatch
from card_reconciliation.repositories.base import ExpenseRepository, TransactionRepository
from card_reconciliation.scoring.matcher import build_match
from card_reconciliation.scoring_tables import ScoringTables, scoring_tables

logger = logging.getLogger(__name__)

DEFAULT_MIN_MATCH_SCORE = 0.60
DEFAULT_PARALLEL_THRESHOLD = 2000
DEFAULT_WORKERS = 4


def _score_chunk(
    transactions: Sequence[CardTransaction],
    expense_items: Sequence[ExpenseItem],
    min_score: float,
    tables: ScoringTables
) -> List[ExpenseMatch]:
    matches = []
    for transaction in transactions:
        for expense_item in expense_items:
            match = build_match(transaction, expense_item, tables)
            if match.match_score >= min_score:
                matches.append(match)
    return matches


def rank_matches(matches: List[ExpenseMatch]) -> List[ExpenseMatch]:
    """Descending by score; ties keep their input order."""
    return sorted(matches, key=lambda m: m.match_score, reverse=True)


class MatchAggregator:
    """
    Cross-product matcher.

    Scoring is pure, so above `parallel_threshold` pairs the transaction list
    is split into chunks of roughly `parallel_threshold` pairs each, scored on
    a thread pool and merged in chunk order.

    The async entry points never score a large cross-product on the event
    loop. Cancelling them drops the chunks that have not started yet.
    """

    def __init__(
        self,
        transaction_repository: Optional[TransactionRepository] = None,
        expense_repository: Optional[ExpenseRepository] = None,
        min_score: float = DEFAULT_MIN_MATCH_SCORE,
        parallel_threshold: int = DEFAULT_PARALLEL_THRESHOLD,
        workers: int = DEFAULT_WORKERS,
        tables: ScoringTables = scoring_tables
    ):
        self.transaction_repository = transaction_repository
        self.expense_repository = expense_repository
        self.min_score = min_score
        self.parallel_threshold = max(1, parallel_threshold)
        self.workers = max(1, workers)
        self.tables = tables

    def _chunks(
        self,
        transactions: Sequence[CardTransaction],
        expense_items: Sequence[ExpenseItem]
    ) -> List[Sequence[CardTransaction]]:
        rows = max(1, self.parallel_threshold // max(1, len(expense_items)))
        return [transactions[i:i + rows] for i in range(0, len(transactions), rows)]

    def _is_small(self, transactions: Sequence[CardTransaction], expense_items: Sequence[ExpenseItem]) -> bool:
        return len(transactions) * len(expense_items) <= self.parallel_threshold

    def score_candidates(
        self,
        transactions: Sequence[CardTransaction],
        expense_items: Sequence[ExpenseItem]
    ) -> List[ExpenseMatch]:
        if not transactions or not expense_items:
            return []

        if self._is_small(transactions, expense_items) or self.workers == 1:
            return rank_matches(_score_chunk(transactions, expense_items, self.min_score, self.tables))

        chunks = self._chunks(transactions, expense_items)
        matches = []
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            for chunk_matches in executor.map(
                lambda chunk: _score_chunk(chunk, expense_items, self.min_score, self.tables),
                chunks
            ):
                matches.extend(chunk_matches)
        return rank_matches(matches)

    async def score_candidates_async(
        self,
        transactions: Sequence[CardTransaction],
        expense_items: Sequence[ExpenseItem]
    ) -> List[ExpenseMatch]:
        """Same result as score_candidates, scored off the event loop."""
        if not transactions or not expense_items:
            return []

        if self._is_small(transactions, expense_items):
            return self.score_candidates(transactions, expense_items)

        chunks = self._chunks(transactions, expense_items)
        logger.debug(
            f"Scoring {len(transactions) * len(expense_items)} pairs "
            f"across {len(chunks)} chunks off the event loop"
        )

        loop = asyncio.get_running_loop()
        executor = ThreadPoolExecutor(max_workers=self.workers)
        try:
            chunk_results = await asyncio.gather(*[
                loop.run_in_executor(
                    executor, _score_chunk, chunk, expense_items, self.min_score, self.tables
                )
                for chunk in chunks
            ])
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return rank_matches([match for chunk_matches in chunk_results for match in chunk_matches])

    async def find_matches(
        self,
        tenant_id: str,
        card_id: Optional[str] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> List[ExpenseMatch]:
        """Load unmatched transactions and expense items, then score them."""
        if self.transaction_repository is None or self.expense_repository is None:
            raise RuntimeError("MatchAggregator requires repositories to load candidates")

        transactions = await self.transaction_repository.find_unmatched_transactions(
            tenant_id, card_id=card_id, from_date=from_date, to_date=to_date
        )
        expense_items = await self.expense_repository.find_unmatched_expense_items(
            tenant_id, from_date=from_date, to_date=to_date
        )

        matches = await self.score_candidates_async(transactions, expense_items)
        logger.info(
            f"Scored {len(transactions)} transactions x {len(expense_items)} expense items "
            f"for tenant {tenant_id}: {len(matches)} candidates"
        )
        return matches
