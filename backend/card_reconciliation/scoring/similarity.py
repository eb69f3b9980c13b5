"""
String similarity primitive.

similarity = (len(longer) - levenshtein(longer, shorter)) / len(longer),
defined as 1.0 when both strings are empty.
"""

from rapidfuzz.distance import Levenshtein


def edit_distance(a: str, b: str) -> int:
    """Classic Levenshtein distance (unit cost insert/delete/substitute)."""
    return Levenshtein.distance(a, b)


def string_similarity(a: str, b: str) -> float:
    longer, shorter = (a, b) if len(a) > len(b) else (b, a)

    if len(longer) == 0:
        return 1.0

    distance = edit_distance(longer, shorter)
    return (len(longer) - distance) / len(longer)
