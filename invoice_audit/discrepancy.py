"""
Numeric helpers shared by the audit stages.

- Percentage discrepancy between an expected and an actual amount
- Levenshtein edit distance and the normalized similarity built on it
"""

from .config import EPSILON


def percent_discrepancy(expected: float, actual: float) -> float:
    """
    Percentage by which `actual` deviates from `expected`.

    A zero expected value is replaced by a tiny epsilon so the result stays
    finite; two zeros give 0.

    Args:
        expected: Reference amount (e.g. the PO total)
        actual: Observed amount (e.g. the invoice total)

    Returns:
        Absolute discrepancy as a percentage of `expected`
    """
    difference = abs(expected - actual)
    if difference == 0:
        return 0.0
    return difference / max(abs(expected), EPSILON) * 100


def levenshtein_distance(a: str, b: str) -> int:
    """Minimum number of single-character edits turning `a` into `b`."""
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j - 1], previous[j], current[j - 1]))
        previous = current

    return previous[-1]


def string_similarity(a: str, b: str) -> float:
    """
    Normalized edit-distance similarity in [0, 1].

    Comparison is case-sensitive; callers lower-case both inputs first.
    Two empty strings are identical.
    """
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1 - levenshtein_distance(a, b) / longest
