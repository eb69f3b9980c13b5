"""
Scoring Tables

Central registry of every tunable heuristic used by the engine:
- Merchant keyword lists for business/personal classification
- Fraud risk factor points and per-check risk values
- Match scoring bands (date, amount, merchant, currency, category)
- Expense category -> merchant category mapping
- Fraud alert type -> recommended action policy
- Reconciliation issue rules

Scoring functions take a ScoringTables argument (defaulting to the global
`scoring_tables`) so thresholds can be tuned and tested without touching
the algorithms.
"""

from decimal import Decimal
from typing import Dict, Any, List, Tuple
from dataclasses import dataclass, field

from card_reconciliation.models import FraudAlertType, RecommendedAction


# (max_days_apart, points, reason)
DateBand = Tuple[int, int, str]
# (max_relative_difference, points, reason)
AmountBand = Tuple[float, int, str]
# (min_similarity, points, reason)
SimilarityBand = Tuple[float, int, str]


def _default_category_mappings() -> Dict[str, List[str]]:
    return {
        "meals": ["RESTAURANT", "FOOD"],
        "travel": ["AIRLINE", "HOTEL", "TAXI"],
        "office": ["OFFICE_SUPPLIES", "SOFTWARE"],
        "fuel": ["GAS_STATION", "FUEL"],
    }


def _default_action_policy() -> Dict[FraudAlertType, RecommendedAction]:
    return {
        FraudAlertType.UNUSUAL_AMOUNT: RecommendedAction.REVIEW,
        FraudAlertType.UNUSUAL_LOCATION: RecommendedAction.NOTIFY_USER,
        FraudAlertType.VELOCITY: RecommendedAction.BLOCK,
        FraudAlertType.MERCHANT_CATEGORY: RecommendedAction.REVIEW,
        FraudAlertType.DUPLICATE: RecommendedAction.REVIEW,
        FraudAlertType.OFFLINE_TRANSACTION: RecommendedAction.NOTIFY_USER,
    }


@dataclass
class ScoringTables:
    """
    Data-driven heuristics for classification, fraud and matching.
    """

    # ==================== CLASSIFICATION ====================
    business_keywords: Tuple[str, ...] = (
        "hotel", "restaurant", "airline", "taxi", "uber", "office", "conference"
    )
    personal_keywords: Tuple[str, ...] = (
        "grocery", "pharmacy", "gas station", "entertainment"
    )
    business_probability: float = 0.8
    personal_probability: float = 0.3
    neutral_probability: float = 0.5
    business_classification_cutoff: float = 0.7

    # ==================== FRAUD RISK SCORE ====================
    high_amount_limit: Decimal = Decimal("5000")
    high_amount_points: int = 20
    elevated_amount_limit: Decimal = Decimal("1000")
    elevated_amount_points: int = 10
    weekend_points: int = 15
    # Hour window is exclusive on both ends: hour < start or hour > end
    unusual_hour_start: int = 6
    unusual_hour_end: int = 23
    unusual_hour_points: int = 10
    international_points: int = 25
    velocity_flag_points: int = 30
    velocity_flag_key: str = "velocity_flag"
    max_fraud_score: int = 100

    # ==================== FRAUD CHECKS ====================
    alert_threshold: int = 50
    credit_limit_share: Decimal = Decimal("0.5")
    credit_limit_risk: int = 80
    high_amount_risk: int = 65
    elevated_amount_risk: int = 35
    international_risk: int = 60
    international_odd_hour_bonus: int = 15
    velocity_flag_risk: int = 75
    velocity_window_minutes: int = 60
    velocity_min_count: int = 3
    velocity_base_risk: int = 55
    velocity_step_risk: int = 10
    velocity_max_risk: int = 95
    high_risk_merchant_categories: Tuple[str, ...] = (
        "GAMBLING", "CASINO", "CRYPTO", "MONEY_TRANSFER", "JEWELRY", "PAWN"
    )
    high_risk_category_risk: int = 70
    personal_on_business_card_risk: int = 55
    exact_duplicate_risk: int = 85
    near_duplicate_risk: int = 60
    near_duplicate_tolerance: Decimal = Decimal("0.05")
    offline_metadata_keys: Tuple[str, ...] = ("offline", "fallback_entry")
    offline_entry_modes: Tuple[str, ...] = ("offline", "fallback", "manual_key")
    offline_risk: int = 60
    action_policy: Dict[FraudAlertType, RecommendedAction] = field(default_factory=_default_action_policy)

    # ==================== MATCHING ====================
    date_bands: Tuple[DateBand, ...] = (
        (0, 30, "Same date"),
        (1, 25, "Within 1 day"),
        (3, 15, "Within 3 days"),
        (7, 5, "Within 1 week"),
    )
    exact_amount_points: int = 40
    exact_amount_reason: str = "Exact amount match"
    amount_bands: Tuple[AmountBand, ...] = (
        (0.02, 35, "Very close amount"),
        (0.05, 25, "Close amount"),
        (0.10, 10, "Similar amount"),
    )
    merchant_bands: Tuple[SimilarityBand, ...] = (
        (0.8, 20, "Strong merchant match"),
        (0.6, 15, "Good merchant match"),
        (0.4, 8, "Partial merchant match"),
    )
    currency_points: int = 5
    currency_reason: str = "Same currency"
    category_points: int = 5
    category_reason: str = "Category match"
    category_mappings: Dict[str, List[str]] = field(default_factory=_default_category_mappings)
    max_match_points: int = 100

    high_confidence: float = 0.9
    medium_confidence: float = 0.7
    review_below: float = 0.9

    # ==================== RECONCILIATION ISSUES ====================
    amount_mismatch_tolerance: Decimal = Decimal("0.02")
    amount_mismatch_medium: Decimal = Decimal("0.10")
    amount_mismatch_high: Decimal = Decimal("0.25")
    date_mismatch_days: int = 7
    receipt_required_above: Decimal = Decimal("25")
    critical_fraud_score: int = 70
    issue_rate_weight: int = 20

    def recommended_action(self, alert_type: FraudAlertType) -> RecommendedAction:
        return self.action_policy.get(alert_type, RecommendedAction.REVIEW)

    def to_dict(self) -> Dict[str, Any]:
        """Export tables for inspection (API /scoring-tables)."""
        return {
            "classification": {
                "business_keywords": list(self.business_keywords),
                "personal_keywords": list(self.personal_keywords),
                "business_probability": self.business_probability,
                "personal_probability": self.personal_probability,
                "neutral_probability": self.neutral_probability,
            },
            "fraud_risk_factors": {
                "high_amount": {"above": str(self.high_amount_limit), "points": self.high_amount_points},
                "elevated_amount": {"above": str(self.elevated_amount_limit), "points": self.elevated_amount_points},
                "weekend": {"points": self.weekend_points},
                "unusual_hour": {
                    "before": self.unusual_hour_start,
                    "after": self.unusual_hour_end,
                    "points": self.unusual_hour_points
                },
                "international": {"points": self.international_points},
                "velocity_flag": {"key": self.velocity_flag_key, "points": self.velocity_flag_points},
            },
            "fraud_alerts": {
                "threshold": self.alert_threshold,
                "action_policy": {k.value: v.value for k, v in self.action_policy.items()},
                "high_risk_merchant_categories": list(self.high_risk_merchant_categories),
            },
            "matching": {
                "date_bands": [list(b) for b in self.date_bands],
                "exact_amount_points": self.exact_amount_points,
                "amount_bands": [list(b) for b in self.amount_bands],
                "merchant_bands": [list(b) for b in self.merchant_bands],
                "currency_points": self.currency_points,
                "category_points": self.category_points,
                "category_mappings": self.category_mappings,
                "confidence": {"high": self.high_confidence, "medium": self.medium_confidence},
                "review_below": self.review_below,
            },
        }


# Global tables instance
scoring_tables = ScoringTables()
