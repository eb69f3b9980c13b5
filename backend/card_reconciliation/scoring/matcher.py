"""
Expense Matcher

Scores one card transaction against one expense-claim candidate.

Points out of 100, normalised to [0, 1]:
- Date proximity (max 30)
- Amount match (max 40)
- Merchant similarity (max 20)
- Currency match (max 5)
- Category match (max 5)

Reasons are appended in that evaluation order, one per triggered component.
The function is asymmetric (transaction vs expense) but deterministic.
"""

from decimal import Decimal
from typing import List, Optional, Tuple

from card_reconciliation.models import (
    CardTransaction,
    ExpenseItem,
    ExpenseMatch,
    MatchConfidence,
    MatchScore,
)
from card_reconciliation.scoring.similarity import string_similarity
from card_reconciliation.scoring_tables import ScoringTables, scoring_tables


def _score_date(
    transaction: CardTransaction,
    expense_item: ExpenseItem,
    tables: ScoringTables
) -> Tuple[int, Optional[str]]:
    days_apart = abs((transaction.transaction_date.date() - expense_item.expense_date).days)
    for max_days, points, reason in tables.date_bands:
        if days_apart <= max_days:
            return points, reason
    return 0, None


def _score_amount(
    transaction: CardTransaction,
    expense_item: ExpenseItem,
    tables: ScoringTables
) -> Tuple[int, Optional[str]]:
    transaction_amount = abs(Decimal(transaction.amount))
    expense_amount = abs(Decimal(expense_item.amount))
    diff = abs(transaction_amount - expense_amount)

    if diff == 0:
        return tables.exact_amount_points, tables.exact_amount_reason

    relative = float(diff / max(transaction_amount, expense_amount))
    for max_relative, points, reason in tables.amount_bands:
        if relative <= max_relative:
            return points, reason
    return 0, None


def _score_merchant(
    transaction: CardTransaction,
    expense_item: ExpenseItem,
    tables: ScoringTables
) -> Tuple[int, Optional[str]]:
    if not expense_item.vendor or not transaction.merchant_name:
        return 0, None

    similarity = string_similarity(expense_item.vendor.lower(), transaction.merchant_name.lower())
    for min_similarity, points, reason in tables.merchant_bands:
        if similarity >= min_similarity:
            return points, reason
    return 0, None


def categories_match(
    expense_category: Optional[str],
    merchant_category: Optional[str],
    tables: ScoringTables = scoring_tables
) -> bool:
    """Expense category keyword maps onto one of the merchant category codes."""
    if not expense_category or not merchant_category:
        return False

    expense_lower = expense_category.lower()
    merchant_upper = merchant_category.upper()
    for category, merchant_codes in tables.category_mappings.items():
        if category in expense_lower and any(code in merchant_upper for code in merchant_codes):
            return True
    return False


def score_match(
    transaction: CardTransaction,
    expense_item: ExpenseItem,
    tables: ScoringTables = scoring_tables
) -> MatchScore:
    reasons: List[str] = []
    total = 0

    for scorer in (_score_date, _score_amount, _score_merchant):
        points, reason = scorer(transaction, expense_item, tables)
        if points:
            total += points
            reasons.append(reason)

    if transaction.currency.upper() == expense_item.currency.upper():
        total += tables.currency_points
        reasons.append(tables.currency_reason)

    if categories_match(expense_item.category, transaction.merchant_category, tables):
        total += tables.category_points
        reasons.append(tables.category_reason)

    return MatchScore(score=min(total / tables.max_match_points, 1.0), reasons=reasons)


def match_confidence(score: float, tables: ScoringTables = scoring_tables) -> MatchConfidence:
    if score >= tables.high_confidence:
        return MatchConfidence.HIGH
    if score >= tables.medium_confidence:
        return MatchConfidence.MEDIUM
    return MatchConfidence.LOW


def build_match(
    transaction: CardTransaction,
    expense_item: ExpenseItem,
    tables: ScoringTables = scoring_tables
) -> ExpenseMatch:
    result = score_match(transaction, expense_item, tables)
    return ExpenseMatch(
        transaction=transaction,
        expense_item=expense_item,
        match_score=result.score,
        match_reasons=result.reasons,
        confidence=match_confidence(result.score, tables),
        requires_review=result.score < tables.review_below
    )
