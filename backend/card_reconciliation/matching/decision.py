"""
Auto-Match Decision Engine

Walks ranked matches highest score first:
- score >= threshold and no review required: link automatically
- otherwise: flag the pair for manual review

Greedy, not an optimal bipartite assignment. Once a transaction or expense
item is linked it is tombstoned in the CandidatePool, so every later match
touching it is discarded. That is what keeps a transaction at one link.

Linking is a compare-and-swap in the repository. A CONFLICT means another
run got there first. If the expense item was taken, the next-ranked
candidate is tried, and a transaction that never links is deferred to
manual review. If the transaction itself was already linked, it is
tombstoned and none of its remaining candidates are tried or flagged.
"""

import logging
from typing import Dict, List, Optional, Sequence

from card_reconciliation.audit import CardReconciliationAuditEvent, log_card_event
from card_reconciliation.models import (
    AutoMatchSummary,
    ExpenseMatch,
    LinkMethod,
    LinkOutcome,
)
from card_reconciliation.repositories.base import ReviewQueue, TransactionRepository

logger = logging.getLogger(__name__)

DEFAULT_AUTO_MATCH_THRESHOLD = 0.95


class CandidatePool:
    """
    Index-based arena of the entities still available for linking.

    Each transaction and expense item gets a slot; claiming tombstones both
    slots so later candidates touching either side are rejected.
    """

    def __init__(self, matches: Sequence[ExpenseMatch]):
        self._transaction_slots: Dict[str, int] = {}
        self._expense_slots: Dict[str, int] = {}
        for match in matches:
            self._transaction_slots.setdefault(match.transaction.id, len(self._transaction_slots))
            self._expense_slots.setdefault(match.expense_item.id, len(self._expense_slots))

        self._transaction_alive = [True] * len(self._transaction_slots)
        self._expense_alive = [True] * len(self._expense_slots)

    def is_available(self, match: ExpenseMatch) -> bool:
        t_slot = self._transaction_slots.get(match.transaction.id)
        e_slot = self._expense_slots.get(match.expense_item.id)
        if t_slot is None or e_slot is None:
            return False
        return self._transaction_alive[t_slot] and self._expense_alive[e_slot]

    def claim(self, match: ExpenseMatch) -> bool:
        """Tombstone both sides. Returns False if either was already gone."""
        if not self.is_available(match):
            return False
        self._transaction_alive[self._transaction_slots[match.transaction.id]] = False
        self._expense_alive[self._expense_slots[match.expense_item.id]] = False
        return True

    def retire_transaction(self, transaction_id: str):
        """Tombstone a transaction that was linked outside this pass."""
        slot = self._transaction_slots.get(transaction_id)
        if slot is not None:
            self._transaction_alive[slot] = False

    def is_transaction_claimed(self, transaction_id: str) -> bool:
        slot = self._transaction_slots.get(transaction_id)
        return slot is not None and not self._transaction_alive[slot]

    @property
    def available_transactions(self) -> int:
        return sum(self._transaction_alive)

    @property
    def available_expense_items(self) -> int:
        return sum(self._expense_alive)


class AutoMatchDecisionEngine:

    def __init__(
        self,
        transaction_repository: TransactionRepository,
        review_queue: ReviewQueue,
        threshold: float = DEFAULT_AUTO_MATCH_THRESHOLD
    ):
        self.transaction_repository = transaction_repository
        self.review_queue = review_queue
        self.threshold = threshold

    async def apply(
        self,
        matches: Sequence[ExpenseMatch],
        tenant_id: str,
        threshold: Optional[float] = None
    ) -> AutoMatchSummary:
        """
        Apply link / review decisions to matches in the order given.

        Callers pass the ranked output of MatchAggregator.
        """
        threshold = self.threshold if threshold is None else threshold
        pool = CandidatePool(matches)
        summary = AutoMatchSummary()
        flagged_transactions = set()
        # transaction id -> first match that hit a CONFLICT
        conflicted: Dict[str, ExpenseMatch] = {}

        for match in matches:
            if not pool.is_available(match):
                summary.discarded += 1
                continue

            if match.match_score >= threshold and not match.requires_review:
                outcome = await self.transaction_repository.link_transaction_to_expense(
                    match.transaction.id,
                    match.expense_item.id,
                    LinkMethod.AUTOMATIC
                )
                if outcome == LinkOutcome.LINKED:
                    pool.claim(match)
                    summary.matched += 1
                    log_card_event(
                        CardReconciliationAuditEvent.AUTO_LINKED,
                        tenant_id,
                        {
                            "transaction_id": match.transaction.id,
                            "expense_item_id": match.expense_item.id,
                            "match_score": match.match_score,
                            "match_reasons": match.match_reasons
                        },
                        card_id=match.transaction.card_id
                    )
                else:
                    summary.conflicts += 1
                    if outcome == LinkOutcome.TRANSACTION_ALREADY_LINKED:
                        pool.retire_transaction(match.transaction.id)
                    else:
                        conflicted.setdefault(match.transaction.id, match)
                    log_card_event(
                        CardReconciliationAuditEvent.LINK_CONFLICT,
                        tenant_id,
                        {
                            "transaction_id": match.transaction.id,
                            "expense_item_id": match.expense_item.id,
                            "match_score": match.match_score,
                            "outcome": outcome.value
                        },
                        card_id=match.transaction.card_id
                    )
                continue

            await self._flag(match, tenant_id)
            flagged_transactions.add(match.transaction.id)
            summary.requires_review += 1

        for transaction_id, match in conflicted.items():
            if pool.is_transaction_claimed(transaction_id) or transaction_id in flagged_transactions:
                continue
            logger.info(f"Deferring transaction {transaction_id} to review after link conflict")
            await self._flag(match, tenant_id)
            summary.requires_review += 1

        logger.info(
            f"Auto-match for tenant {tenant_id}: matched={summary.matched} "
            f"review={summary.requires_review} discarded={summary.discarded} "
            f"conflicts={summary.conflicts}"
        )
        return summary

    async def _flag(self, match: ExpenseMatch, tenant_id: str):
        await self.review_queue.flag_for_manual_review(match, tenant_id)
        log_card_event(
            CardReconciliationAuditEvent.REVIEW_FLAGGED,
            tenant_id,
            {
                "transaction_id": match.transaction.id,
                "expense_item_id": match.expense_item.id,
                "match_score": match.match_score,
                "confidence": match.confidence.value
            },
            card_id=match.transaction.card_id
        )
