"""
Scoring Module

Pure, stateless scoring functions: safe to run concurrently.
"""

from .similarity import string_similarity, edit_distance
from .classifier import classify_merchant, is_personal_merchant
from .fraud import calculate_fraud_score, run_fraud_checks, detect_fraud
from .matcher import score_match, build_match, match_confidence, categories_match

__all__ = [
    "string_similarity",
    "edit_distance",
    "classify_merchant",
    "is_personal_merchant",
    "calculate_fraud_score",
    "run_fraud_checks",
    "detect_fraud",
    "score_match",
    "build_match",
    "match_confidence",
    "categories_match",
]
