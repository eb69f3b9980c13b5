"""
Card Reconciliation Service

Orchestrates the engine over the repository boundaries:
- Importing card feed transactions (classify, fraud-score, pre-match)
- Fraud scans that publish alerts to the alert sink
- Matching unmatched transactions with expense claims
- Auto-linking high-confidence matches, flagging the rest for review
- Per-card reconciliation reports and the bounded tenant sweep

Scoring itself lives in pure modules (card_reconciliation.scoring); this
class only loads state, calls them and records the outcome.
"""

import asyncio
import dataclasses
import logging
from datetime import date, timedelta
from typing import List, Optional

from card_reconciliation.audit import CardReconciliationAuditEvent, log_card_event
from card_reconciliation.errors import (
    CardInactiveError,
    CardNotFoundError,
    ReconciliationTimeoutError,
)
from card_reconciliation.feed_transformer import CardFeedTransformer
from card_reconciliation.matching.aggregator import MatchAggregator
from card_reconciliation.matching.decision import AutoMatchDecisionEngine
from card_reconciliation.models import (
    AutoMatchSummary,
    CardReconciliation,
    CorporateCard,
    ExpenseMatch,
    FraudAlert,
    ImportResult,
    LinkMethod,
    LinkOutcome,
    TenantSweepResult,
    utc_now,
)
from card_reconciliation.reporting.report_builder import ReconciliationReportBuilder
from card_reconciliation.repositories.base import (
    CardRepository,
    ExpenseRepository,
    FeedSource,
    FraudAlertSink,
    ReviewQueue,
    TransactionRepository,
)
from card_reconciliation.scoring.classifier import classify_merchant
from card_reconciliation.scoring.fraud import calculate_fraud_score, detect_fraud
from card_reconciliation.scoring_tables import ScoringTables, scoring_tables

logger = logging.getLogger(__name__)


class CardReconciliationService:
    """
    Service for reconciling corporate card transactions with expense claims.
    """

    def __init__(
        self,
        card_repository: CardRepository,
        transaction_repository: TransactionRepository,
        expense_repository: ExpenseRepository,
        review_queue: ReviewQueue,
        fraud_alert_sink: FraudAlertSink,
        feed_source: FeedSource,
        tables: ScoringTables = scoring_tables,
        auto_match_threshold: float = 0.95,
        min_match_score: float = 0.60,
        import_lookback_days: int = 30,
        unmatched_after_days: int = 7,
        parallel_match_threshold: int = 2000,
        match_workers: int = 4,
        sweep_timeout_seconds: float = 300.0
    ):
        self.cards = card_repository
        self.transactions = transaction_repository
        self.expenses = expense_repository
        self.review_queue = review_queue
        self.fraud_alert_sink = fraud_alert_sink
        self.feed_source = feed_source
        self.tables = tables
        self.import_lookback_days = import_lookback_days
        self.sweep_timeout_seconds = sweep_timeout_seconds

        self.aggregator = MatchAggregator(
            transaction_repository,
            expense_repository,
            min_score=min_match_score,
            parallel_threshold=parallel_match_threshold,
            workers=match_workers,
            tables=tables
        )
        self.decision_engine = AutoMatchDecisionEngine(
            transaction_repository,
            review_queue,
            threshold=auto_match_threshold
        )
        self.report_builder = ReconciliationReportBuilder(
            card_repository,
            transaction_repository,
            expense_repository,
            unmatched_after_days=unmatched_after_days,
            tables=tables
        )

    @classmethod
    def from_settings(cls, settings, **repositories) -> "CardReconciliationService":
        """Build a service with engine tunables taken from Settings."""
        tables = dataclasses.replace(scoring_tables, alert_threshold=settings.FRAUD_ALERT_THRESHOLD)
        return cls(
            tables=tables,
            auto_match_threshold=settings.AUTO_MATCH_THRESHOLD,
            min_match_score=settings.MIN_MATCH_SCORE,
            import_lookback_days=settings.IMPORT_LOOKBACK_DAYS,
            unmatched_after_days=settings.UNMATCHED_AFTER_DAYS,
            parallel_match_threshold=settings.PARALLEL_MATCH_THRESHOLD,
            match_workers=settings.MATCH_WORKERS,
            sweep_timeout_seconds=settings.SWEEP_TIMEOUT_SECONDS,
            **repositories
        )

    async def _get_card(self, card_id: str, tenant_id: str) -> CorporateCard:
        card = await self.cards.get_card(card_id, tenant_id)
        if card is None:
            raise CardNotFoundError(card_id, tenant_id)
        return card

    def _window(self, from_date: Optional[date], to_date: Optional[date]):
        to_date = to_date or utc_now().date()
        from_date = from_date or (to_date - timedelta(days=self.import_lookback_days))
        return from_date, to_date

    # ==================== IMPORT ====================

    async def import_card_transactions(
        self,
        card_id: str,
        tenant_id: str,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> ImportResult:
        """
        Import provider transactions for a card.

        Each record is independent: malformed records are reported and
        skipped, and transactions already upserted stay imported if a later
        record fails. Re-importing is safe (upsert by provider id).

        Raises:
            CardNotFoundError: unknown card for this tenant
            CardInactiveError: card is deactivated
            DownstreamUnavailableError: feed or repository unreachable
        """
        card = await self._get_card(card_id, tenant_id)
        if not card.is_active:
            raise CardInactiveError(card_id)

        from_date, to_date = self._window(from_date, to_date)
        log_card_event(
            CardReconciliationAuditEvent.IMPORT_STARTED,
            tenant_id,
            {"from_date": from_date.isoformat(), "to_date": to_date.isoformat()},
            card_id=card_id
        )

        raw_records = await self.feed_source.fetch_transactions(card, from_date, to_date)
        parsed, issues = CardFeedTransformer.transform_batch(raw_records, card)
        result = ImportResult(card_id=card_id, tenant_id=tenant_id, issues=issues)

        for issue in issues:
            log_card_event(
                CardReconciliationAuditEvent.TRANSACTION_SKIPPED,
                tenant_id,
                {
                    "provider_transaction_id": issue.provider_transaction_id,
                    "field": issue.field,
                    "error": issue.error
                },
                card_id=card_id
            )

        candidates = await self.expenses.find_unmatched_expense_items(tenant_id, from_date, to_date)

        for transaction in parsed:
            classification = classify_merchant(transaction.merchant_name, self.tables)
            matches = await self.aggregator.score_candidates_async([transaction], candidates)
            metadata = dict(transaction.metadata)
            metadata["potential_matches"] = len(matches)
            metadata["best_match_score"] = matches[0].match_score if matches else 0.0

            annotated = transaction.model_copy(update={
                "classification_score": classification.business_probability,
                "fraud_score": calculate_fraud_score(transaction, card, self.tables),
                "metadata": metadata,
            })
            result.transactions.append(await self.transactions.upsert_transaction(annotated))

        await self.cards.update_sync_state(card_id, tenant_id, utc_now())

        log_card_event(
            CardReconciliationAuditEvent.IMPORT_COMPLETED,
            tenant_id,
            {
                "imported": result.imported_count,
                "skipped": len(result.issues),
                "business_transactions": result.business_count,
                "high_risk_transactions": result.high_risk_count
            },
            card_id=card_id
        )
        return result

    # ==================== FRAUD ====================

    async def detect_fraud(
        self,
        card_id: str,
        tenant_id: str,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> List[FraudAlert]:
        """Run the fraud checks over a card's window and publish any alerts."""
        card = await self._get_card(card_id, tenant_id)
        from_date, to_date = self._window(from_date, to_date)

        transactions = await self.transactions.find_card_transactions(card_id, tenant_id, from_date, to_date)
        alerts = detect_fraud(transactions, card, self.tables)

        if alerts:
            await self.fraud_alert_sink.publish(alerts, tenant_id)
            log_card_event(
                CardReconciliationAuditEvent.FRAUD_ALERTS_RAISED,
                tenant_id,
                {
                    "alerts": len(alerts),
                    "transactions_scanned": len(transactions),
                    "alert_types": sorted({a.alert_type.value for a in alerts})
                },
                card_id=card_id
            )
        return alerts

    # ==================== MATCHING ====================

    async def match_transactions_with_expenses(
        self,
        tenant_id: str,
        card_id: Optional[str] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None
    ) -> List[ExpenseMatch]:
        matches = await self.aggregator.find_matches(tenant_id, card_id, from_date, to_date)
        log_card_event(
            CardReconciliationAuditEvent.MATCHING_COMPLETED,
            tenant_id,
            {
                "candidates": len(matches),
                "best_score": matches[0].match_score if matches else None
            },
            card_id=card_id
        )
        return matches

    async def auto_match_transactions(
        self,
        tenant_id: str,
        card_id: Optional[str] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        threshold: Optional[float] = None
    ) -> AutoMatchSummary:
        matches = await self.match_transactions_with_expenses(tenant_id, card_id, from_date, to_date)
        return await self.decision_engine.apply(matches, tenant_id, threshold)

    async def link_manually(
        self,
        tenant_id: str,
        transaction_id: str,
        expense_item_id: str,
        actor: str = "reviewer"
    ) -> LinkOutcome:
        """Reviewer confirms a pair. Anything but LINKED means one side was already taken."""
        outcome = await self.transactions.link_transaction_to_expense(
            transaction_id, expense_item_id, LinkMethod.MANUAL
        )
        log_card_event(
            CardReconciliationAuditEvent.LINK_CONFLICT if outcome != LinkOutcome.LINKED
            else CardReconciliationAuditEvent.MANUAL_LINKED,
            tenant_id,
            {
                "transaction_id": transaction_id,
                "expense_item_id": expense_item_id,
                "method": LinkMethod.MANUAL.value,
                "outcome": outcome.value
            },
            actor=actor
        )
        return outcome

    # ==================== REPORTING ====================

    async def reconcile_card(
        self,
        card_id: str,
        tenant_id: str,
        period_start: date,
        period_end: date
    ) -> CardReconciliation:
        report = await self.report_builder.build(card_id, tenant_id, period_start, period_end)
        log_card_event(
            CardReconciliationAuditEvent.RECONCILIATION_COMPLETED,
            tenant_id,
            {
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
                "total_transactions": report.total_transactions,
                "matched_transactions": report.matched_transactions,
                "issues": len(report.issues),
                "reconciliation_score": report.reconciliation_score
            },
            card_id=card_id
        )
        return report

    async def reconcile_tenant(
        self,
        tenant_id: str,
        period_start: date,
        period_end: date,
        timeout_seconds: Optional[float] = None
    ) -> TenantSweepResult:
        """
        Match, auto-link and report every active card of a tenant.

        The whole sweep is bounded; links made before the bound was hit
        stay in place.

        Raises:
            ReconciliationTimeoutError: sweep exceeded the bound
        """
        timeout_seconds = self.sweep_timeout_seconds if timeout_seconds is None else timeout_seconds
        try:
            result = await asyncio.wait_for(
                self._sweep(tenant_id, period_start, period_end),
                timeout=timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.error(f"Reconciliation sweep for tenant {tenant_id} timed out after {timeout_seconds}s")
            raise ReconciliationTimeoutError(tenant_id, timeout_seconds)

        log_card_event(
            CardReconciliationAuditEvent.SWEEP_COMPLETED,
            tenant_id,
            {
                "cards": len(result.reports),
                **result.auto_match.to_dict()
            }
        )
        return result

    async def _sweep(self, tenant_id: str, period_start: date, period_end: date) -> TenantSweepResult:
        result = TenantSweepResult(tenant_id=tenant_id, period_start=period_start, period_end=period_end)

        for card in await self.cards.list_active_cards(tenant_id):
            summary = await self.auto_match_transactions(tenant_id, card.id, period_start, period_end)
            result.auto_match.matched += summary.matched
            result.auto_match.requires_review += summary.requires_review
            result.auto_match.discarded += summary.discarded
            result.auto_match.conflicts += summary.conflicts
            result.reports.append(await self.reconcile_card(card.id, tenant_id, period_start, period_end))

        return result
