"""
Business vs personal classification from merchant-name keywords.

The first keyword set that hits wins; several hits in the same set do not
raise the probability further.
"""

from typing import Optional

from card_reconciliation.models import ClassificationResult
from card_reconciliation.scoring_tables import ScoringTables, scoring_tables


def classify_merchant(
    merchant_name: Optional[str],
    tables: ScoringTables = scoring_tables
) -> ClassificationResult:
    merchant_lower = (merchant_name or "").lower()

    if any(keyword in merchant_lower for keyword in tables.business_keywords):
        return ClassificationResult(business_probability=tables.business_probability)

    if any(keyword in merchant_lower for keyword in tables.personal_keywords):
        return ClassificationResult(business_probability=tables.personal_probability)

    return ClassificationResult(business_probability=tables.neutral_probability)


def is_personal_merchant(merchant_name: Optional[str], tables: ScoringTables = scoring_tables) -> bool:
    """True when the merchant hits a personal keyword and no business keyword."""
    merchant_lower = (merchant_name or "").lower()
    if any(keyword in merchant_lower for keyword in tables.business_keywords):
        return False
    return any(keyword in merchant_lower for keyword in tables.personal_keywords)
