"""
Corporate Card Reconciliation Module

Reconciles corporate card transactions with submitted expense claims:
- Feed import with business/personal classification and fraud scoring
- Independent fraud checks that raise typed alerts
- Weighted fuzzy matching of transactions against expense items
- Greedy auto-linking above a confidence threshold, review queue otherwise
- Period reconciliation reports with detected issues
"""

from card_reconciliation.models import (
    CorporateCard,
    CardTransaction,
    ExpenseItem,
    ExpenseMatch,
    FraudAlert,
    CardReconciliation,
    ReconciliationIssue,
    AutoMatchSummary,
    ImportResult,
    LinkOutcome,
)
from card_reconciliation.errors import (
    CardReconciliationError,
    CardNotFoundError,
    CardInactiveError,
    MalformedTransactionError,
    DownstreamUnavailableError,
    ReconciliationTimeoutError,
)
from card_reconciliation.scoring_tables import ScoringTables, scoring_tables
from card_reconciliation.services.card_reconciliation_service import CardReconciliationService

__all__ = [
    # Models
    'CorporateCard',
    'CardTransaction',
    'ExpenseItem',
    'ExpenseMatch',
    'FraudAlert',
    'CardReconciliation',
    'ReconciliationIssue',
    'AutoMatchSummary',
    'ImportResult',
    'LinkOutcome',
    # Errors
    'CardReconciliationError',
    'CardNotFoundError',
    'CardInactiveError',
    'MalformedTransactionError',
    'DownstreamUnavailableError',
    'ReconciliationTimeoutError',
    # Tables
    'ScoringTables',
    'scoring_tables',
    # Service
    'CardReconciliationService',
]
