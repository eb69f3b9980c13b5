"""
Fraud Risk Scoring

Two layers:
- calculate_fraud_score: additive 0-100 heuristic stored on each transaction
- run_fraud_checks / detect_fraud: independent, typed checks that each carry
  their own risk and raise one FraudAlert per check above the threshold

Neither layer blocks anything by itself; alerts go to a downstream sink
where the recommended action is applied by the alert workflow.
"""

from datetime import timedelta
from decimal import Decimal
from typing import List, Optional, Sequence

from card_reconciliation.models import (
    CardTransaction,
    CorporateCard,
    FraudAlert,
    FraudAlertType,
    FraudCheckResult,
)
from card_reconciliation.scoring.classifier import is_personal_merchant
from card_reconciliation.scoring_tables import ScoringTables, scoring_tables


def _is_weekend(transaction: CardTransaction) -> bool:
    return transaction.transaction_date.weekday() >= 5


def _is_unusual_hour(transaction: CardTransaction, tables: ScoringTables) -> bool:
    hour = transaction.transaction_date.hour
    return hour < tables.unusual_hour_start or hour > tables.unusual_hour_end


def _is_international(transaction: CardTransaction, card: CorporateCard) -> bool:
    if transaction.location is None or not transaction.location.country:
        return False
    return transaction.location.country.upper() != card.home_country.upper()


def _has_velocity_flag(transaction: CardTransaction, tables: ScoringTables) -> bool:
    return bool(transaction.metadata.get(tables.velocity_flag_key))


def calculate_fraud_score(
    transaction: CardTransaction,
    card: CorporateCard,
    tables: ScoringTables = scoring_tables
) -> int:
    """
    Sum the fixed points of every triggered risk factor, capped at 100.

    Amount thresholds are in card currency units.
    """
    score = 0
    amount = abs(transaction.amount)

    if amount > tables.high_amount_limit:
        score += tables.high_amount_points
    elif amount > tables.elevated_amount_limit:
        score += tables.elevated_amount_points

    if _is_weekend(transaction):
        score += tables.weekend_points

    if _is_unusual_hour(transaction, tables):
        score += tables.unusual_hour_points

    if _is_international(transaction, card):
        score += tables.international_points

    if _has_velocity_flag(transaction, tables):
        score += tables.velocity_flag_points

    return max(0, min(score, tables.max_fraud_score))


# ==================== INDIVIDUAL CHECKS ====================

def check_unusual_amount(
    transaction: CardTransaction,
    card: CorporateCard,
    tables: ScoringTables = scoring_tables
) -> Optional[FraudCheckResult]:
    amount = abs(transaction.amount)

    if card.credit_limit > 0 and amount >= card.credit_limit * tables.credit_limit_share:
        risk = tables.credit_limit_risk
        description = f"Amount {amount} uses at least {tables.credit_limit_share:.0%} of the card's credit limit"
    elif amount > tables.high_amount_limit:
        risk = tables.high_amount_risk
        description = f"Amount {amount} exceeds {tables.high_amount_limit}"
    elif amount > tables.elevated_amount_limit:
        risk = tables.elevated_amount_risk
        description = f"Amount {amount} exceeds {tables.elevated_amount_limit}"
    else:
        return None

    return FraudCheckResult(FraudAlertType.UNUSUAL_AMOUNT, risk, description)


def check_unusual_location(
    transaction: CardTransaction,
    card: CorporateCard,
    tables: ScoringTables = scoring_tables
) -> Optional[FraudCheckResult]:
    if not _is_international(transaction, card):
        return None

    risk = tables.international_risk
    description = (
        f"Transaction in {transaction.location.country} "
        f"outside card home country {card.home_country}"
    )
    if _is_unusual_hour(transaction, tables):
        risk += tables.international_odd_hour_bonus
        description += f" at {transaction.transaction_date:%H:%M}"

    return FraudCheckResult(FraudAlertType.UNUSUAL_LOCATION, min(risk, 100), description)


def check_velocity(
    transaction: CardTransaction,
    batch: Sequence[CardTransaction],
    tables: ScoringTables = scoring_tables
) -> Optional[FraudCheckResult]:
    if _has_velocity_flag(transaction, tables):
        return FraudCheckResult(
            FraudAlertType.VELOCITY,
            tables.velocity_flag_risk,
            "Upstream velocity detection flagged this transaction"
        )

    window = timedelta(minutes=tables.velocity_window_minutes)
    nearby = [
        other for other in batch
        if other.card_id == transaction.card_id
        and abs(other.transaction_date - transaction.transaction_date) <= window
    ]
    # `nearby` includes the transaction itself
    if len(nearby) < tables.velocity_min_count:
        return None

    extra = len(nearby) - tables.velocity_min_count
    risk = min(tables.velocity_base_risk + extra * tables.velocity_step_risk, tables.velocity_max_risk)
    return FraudCheckResult(
        FraudAlertType.VELOCITY,
        risk,
        f"{len(nearby)} transactions on the same card within {tables.velocity_window_minutes} minutes"
    )


def check_merchant_category(
    transaction: CardTransaction,
    card: CorporateCard,
    tables: ScoringTables = scoring_tables
) -> Optional[FraudCheckResult]:
    category = (transaction.merchant_category or "").upper()
    for risky in tables.high_risk_merchant_categories:
        if risky in category:
            return FraudCheckResult(
                FraudAlertType.MERCHANT_CATEGORY,
                tables.high_risk_category_risk,
                f"High-risk merchant category {transaction.merchant_category}"
            )

    if card.is_business_card and is_personal_merchant(transaction.merchant_name, tables):
        return FraudCheckResult(
            FraudAlertType.MERCHANT_CATEGORY,
            tables.personal_on_business_card_risk,
            f"Personal-type merchant '{transaction.merchant_name}' on a business card"
        )

    return None


def check_duplicate(
    transaction: CardTransaction,
    batch: Sequence[CardTransaction],
    tables: ScoringTables = scoring_tables
) -> Optional[FraudCheckResult]:
    exact = 0
    near = 0
    amount = abs(transaction.amount)

    for other in batch:
        if other.provider_transaction_id == transaction.provider_transaction_id:
            continue
        if other.card_id != transaction.card_id:
            continue
        if other.merchant_name.strip().lower() != transaction.merchant_name.strip().lower():
            continue
        if other.transaction_date.date() != transaction.transaction_date.date():
            continue

        diff = abs(abs(other.amount) - amount)
        if diff < Decimal("0.01"):
            exact += 1
        elif amount > 0 and diff < amount * tables.near_duplicate_tolerance:
            near += 1

    if exact:
        return FraudCheckResult(
            FraudAlertType.DUPLICATE,
            tables.exact_duplicate_risk,
            f"{exact} identical charge(s) at {transaction.merchant_name} on the same day"
        )
    if near:
        return FraudCheckResult(
            FraudAlertType.DUPLICATE,
            tables.near_duplicate_risk,
            f"{near} similar charge(s) at {transaction.merchant_name} on the same day"
        )
    return None


def check_offline_transaction(
    transaction: CardTransaction,
    tables: ScoringTables = scoring_tables
) -> Optional[FraudCheckResult]:
    metadata = transaction.metadata
    flagged = any(bool(metadata.get(key)) for key in tables.offline_metadata_keys)
    entry_mode = str(metadata.get("entry_mode") or "").lower()

    if flagged or entry_mode in tables.offline_entry_modes:
        return FraudCheckResult(
            FraudAlertType.OFFLINE_TRANSACTION,
            tables.offline_risk,
            "Transaction was authorised offline or via fallback entry"
        )
    return None


def run_fraud_checks(
    transaction: CardTransaction,
    card: CorporateCard,
    batch: Sequence[CardTransaction] = (),
    tables: ScoringTables = scoring_tables
) -> List[FraudCheckResult]:
    """Run every check; returns the ones that produced a risk, in a fixed order."""
    results = [
        check_unusual_amount(transaction, card, tables),
        check_unusual_location(transaction, card, tables),
        check_velocity(transaction, batch, tables),
        check_merchant_category(transaction, card, tables),
        check_duplicate(transaction, batch, tables),
        check_offline_transaction(transaction, tables),
    ]
    return [r for r in results if r is not None]


def detect_fraud(
    transactions: Sequence[CardTransaction],
    card: CorporateCard,
    tables: ScoringTables = scoring_tables
) -> List[FraudAlert]:
    """
    One alert per check whose risk exceeds the alert threshold.

    A single transaction may yield zero, one or several alerts.
    """
    alerts = []
    for transaction in transactions:
        for check in run_fraud_checks(transaction, card, transactions, tables):
            if check.risk_score > tables.alert_threshold:
                alerts.append(FraudAlert(
                    transaction_id=transaction.id,
                    card_id=transaction.card_id,
                    alert_type=check.alert_type,
                    risk_score=check.risk_score,
                    description=check.description,
                    recommended_action=tables.recommended_action(check.alert_type)
                ))
    return alerts
