"""
Reconciliation Report Builder

Derives a CardReconciliation for one card and period from the current
transaction and expense state. Nothing is updated incrementally; every call
recomputes from scratch.

Score:
    round(match_rate * 100 - issue_rate * 20), clamped to [0, 100]

where issue_rate counts only high and critical issues. A period with no
transactions scores 100 (nothing to reconcile).
"""

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence, Tuple

from card_reconciliation.errors import CardNotFoundError
from card_reconciliation.models import (
    CardReconciliation,
    CardTransaction,
    ExpenseItem,
    IssueKind,
    IssueSeverity,
    ReconciliationIssue,
    TransactionStatus,
)
from card_reconciliation.repositories.base import (
    CardRepository,
    ExpenseRepository,
    TransactionRepository,
)
from card_reconciliation.scoring_tables import ScoringTables, scoring_tables

logger = logging.getLogger(__name__)

DEFAULT_UNMATCHED_AFTER_DAYS = 7

SEVERE = (IssueSeverity.HIGH, IssueSeverity.CRITICAL)
CLOSED_STATUSES = (TransactionStatus.DISPUTED, TransactionStatus.REVERSED)


def calculate_reconciliation_score(
    matched_transactions: int,
    total_transactions: int,
    issues: Sequence[ReconciliationIssue],
    tables: ScoringTables = scoring_tables
) -> int:
    if total_transactions <= 0:
        return 100

    severe_issues = sum(1 for issue in issues if issue.severity in SEVERE)
    total = Decimal(total_transactions)
    raw = (
        Decimal(matched_transactions) * 100 / total
        - Decimal(severe_issues) * tables.issue_rate_weight / total
    )
    score = int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return max(0, min(score, 100))


def _amount_mismatch_severity(relative: Decimal, tables: ScoringTables) -> IssueSeverity:
    if relative <= tables.amount_mismatch_medium:
        return IssueSeverity.MEDIUM
    if relative <= tables.amount_mismatch_high:
        return IssueSeverity.HIGH
    return IssueSeverity.CRITICAL


def _unmatched_issue(
    transaction: CardTransaction,
    age_days: int,
    tables: ScoringTables
) -> ReconciliationIssue:
    if transaction.fraud_score is not None and transaction.fraud_score >= tables.critical_fraud_score:
        severity = IssueSeverity.CRITICAL
        action = "Investigate possible fraud before requesting an expense claim"
    elif (
        transaction.classification_score is not None
        and transaction.classification_score > tables.business_classification_cutoff
    ):
        severity = IssueSeverity.HIGH
        action = "Ask the card holder to submit the expense claim"
    else:
        severity = IssueSeverity.MEDIUM
        action = "Confirm whether the charge is personal and arrange repayment"

    return ReconciliationIssue(
        kind=IssueKind.UNMATCHED_TRANSACTION,
        transaction_id=transaction.id,
        description=(
            f"{transaction.merchant_name} {transaction.currency} {transaction.amount} "
            f"unmatched for {age_days} days"
        ),
        suggested_action=action,
        severity=severity
    )


def _linked_pair_issues(
    transaction: CardTransaction,
    expense_item: ExpenseItem,
    tables: ScoringTables
) -> List[ReconciliationIssue]:
    issues = []
    transaction_amount = abs(transaction.amount)
    expense_amount = abs(expense_item.amount)

    if transaction.currency.upper() == expense_item.currency.upper():
        largest = max(transaction_amount, expense_amount)
        relative = abs(transaction_amount - expense_amount) / largest if largest else Decimal("0")
        if relative > tables.amount_mismatch_tolerance:
            issues.append(ReconciliationIssue(
                kind=IssueKind.AMOUNT_MISMATCH,
                transaction_id=transaction.id,
                expense_item_id=expense_item.id,
                description=(
                    f"Card charge {transaction_amount} differs from claimed "
                    f"{expense_amount} ({relative:.1%})"
                ),
                suggested_action="Correct the expense claim amount or attach the adjustment",
                severity=_amount_mismatch_severity(relative, tables)
            ))

    days_apart = abs((transaction.transaction_date.date() - expense_item.expense_date).days)
    if days_apart > tables.date_mismatch_days:
        issues.append(ReconciliationIssue(
            kind=IssueKind.DATE_MISMATCH,
            transaction_id=transaction.id,
            expense_item_id=expense_item.id,
            description=f"Expense date is {days_apart} days from the card transaction",
            suggested_action="Verify the expense date against the receipt",
            severity=IssueSeverity.MEDIUM
        ))

    if expense_amount > tables.receipt_required_above and not expense_item.has_receipt:
        issues.append(ReconciliationIssue(
            kind=IssueKind.MISSING_RECEIPT,
            transaction_id=transaction.id,
            expense_item_id=expense_item.id,
            description=f"No receipt attached for {expense_item.currency} {expense_amount}",
            suggested_action="Upload the receipt",
            severity=IssueSeverity.LOW
        ))

    return issues


def _duplicate_expense_issues(expense_items: Sequence[ExpenseItem]) -> List[ReconciliationIssue]:
    groups: Dict[Tuple, List[ExpenseItem]] = defaultdict(list)
    for item in expense_items:
        key = (
            item.submitter_id,
            (item.vendor or "").strip().lower(),
            item.expense_date,
            abs(item.amount),
        )
        groups[key].append(item)

    issues = []
    for items in groups.values():
        original = items[0]
        for copy in items[1:]:
            issues.append(ReconciliationIssue(
                kind=IssueKind.DUPLICATE_EXPENSE,
                expense_item_id=copy.id,
                description=(
                    f"Expense {copy.id} duplicates {original.id} "
                    f"({copy.vendor} {copy.amount} on {copy.expense_date})"
                ),
                suggested_action="Withdraw the duplicate claim",
                severity=IssueSeverity.HIGH
            ))
    return issues


def identify_issues(
    transactions: Sequence[CardTransaction],
    expense_items: Sequence[ExpenseItem],
    as_of: date,
    unmatched_after_days: int = DEFAULT_UNMATCHED_AFTER_DAYS,
    tables: ScoringTables = scoring_tables
) -> List[ReconciliationIssue]:
    """
    Detect issues for a period.

    Order: per transaction (unmatched, then linked-pair checks), then
    duplicate expense claims.
    """
    expense_by_id = {item.id: item for item in expense_items}
    issues: List[ReconciliationIssue] = []

    for transaction in transactions:
        if transaction.is_expensed:
            expense_item = expense_by_id.get(transaction.expense_item_id)
            if expense_item is None:
                logger.warning(
                    f"Transaction {transaction.id} linked to unknown expense item "
                    f"{transaction.expense_item_id}"
                )
                continue
            issues.extend(_linked_pair_issues(transaction, expense_item, tables))
            continue

        if transaction.status in CLOSED_STATUSES:
            continue

        age_days = (as_of - transaction.transaction_date.date()).days
        if age_days > unmatched_after_days:
            issues.append(_unmatched_issue(transaction, age_days, tables))

    issues.extend(_duplicate_expense_issues(expense_items))
    return issues


class ReconciliationReportBuilder:

    def __init__(
        self,
        card_repository: Optional[CardRepository] = None,
        transaction_repository: Optional[TransactionRepository] = None,
        expense_repository: Optional[ExpenseRepository] = None,
        unmatched_after_days: int = DEFAULT_UNMATCHED_AFTER_DAYS,
        tables: ScoringTables = scoring_tables
    ):
        self.card_repository = card_repository
        self.transaction_repository = transaction_repository
        self.expense_repository = expense_repository
        self.unmatched_after_days = unmatched_after_days
        self.tables = tables

    def summarize(
        self,
        card_id: str,
        tenant_id: str,
        period_start: date,
        period_end: date,
        transactions: Sequence[CardTransaction],
        expense_items: Sequence[ExpenseItem]
    ) -> CardReconciliation:
        """Pure aggregation over already-loaded state."""
        matched = sum(1 for t in transactions if t.is_expensed)
        business_total = Decimal("0")
        personal_total = Decimal("0")
        disputed_total = Decimal("0")

        for transaction in transactions:
            amount = transaction.amount
            if transaction.status == TransactionStatus.DISPUTED:
                disputed_total += amount
            elif (
                transaction.classification_score is not None
                and transaction.classification_score > self.tables.business_classification_cutoff
            ):
                business_total += amount
            else:
                personal_total += amount

        issues = identify_issues(
            transactions,
            expense_items,
            as_of=period_end,
            unmatched_after_days=self.unmatched_after_days,
            tables=self.tables
        )

        return CardReconciliation(
            card_id=card_id,
            tenant_id=tenant_id,
            period_start=period_start,
            period_end=period_end,
            total_transactions=len(transactions),
            matched_transactions=matched,
            unmatched_transactions=len(transactions) - matched,
            business_expense_total=business_total,
            personal_expense_total=personal_total,
            disputed_amount_total=disputed_total,
            reconciliation_score=calculate_reconciliation_score(
                matched, len(transactions), issues, self.tables
            ),
            issues=issues
        )

    async def build(
        self,
        card_id: str,
        tenant_id: str,
        period_start: date,
        period_end: date
    ) -> CardReconciliation:
        """
        Load the period from the repositories and summarize it.

        Linked expense items dated outside the period are fetched by id so
        their pairs are still checked.
        """
        if self.card_repository is None or self.transaction_repository is None or self.expense_repository is None:
            raise RuntimeError("ReconciliationReportBuilder requires repositories to build a report")

        card = await self.card_repository.get_card(card_id, tenant_id)
        if card is None:
            raise CardNotFoundError(card_id, tenant_id)

        transactions = await self.transaction_repository.find_card_transactions(
            card_id, tenant_id, period_start, period_end
        )
        expense_items = await self.expense_repository.find_expense_items_for_period(
            tenant_id, period_start, period_end
        )

        known = {item.id for item in expense_items}
        missing = [
            t.expense_item_id for t in transactions
            if t.is_expensed and t.expense_item_id and t.expense_item_id not in known
        ]
        if missing:
            expense_items = list(expense_items) + await self.expense_repository.get_expense_items(
                tenant_id, missing
            )

        return self.summarize(card_id, tenant_id, period_start, period_end, transactions, expense_items)
