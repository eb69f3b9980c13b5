"""
Matching Module

Cross-product candidate scoring and the greedy link/review decision pass.
"""

from .aggregator import MatchAggregator, rank_matches
from .decision import AutoMatchDecisionEngine, CandidatePool

__all__ = [
    "MatchAggregator",
    "rank_matches",
    "AutoMatchDecisionEngine",
    "CandidatePool",
]
