"""
Skip-number policy for the Triple-Helix scheduler.

A perfect score moves a stitch exactly one tier up the fixed sequence
1 -> 3 -> 5 -> 10 -> 25 -> 100, saturating at 100. Anything less than
perfect sends it back to the first tier.
"""

from __future__ import annotations

SKIP_SEQUENCE: tuple[int, ...] = (1, 3, 5, 10, 25, 100)
FIRST_TIER = SKIP_SEQUENCE[0]
MAX_SKIP = SKIP_SEQUENCE[-1]


def is_valid_skip_number(value: int) -> bool:
    """Check whether a value is one of the scheduling tiers."""
    return value in SKIP_SEQUENCE


def next_skip_number(current: int, was_perfect: bool) -> int:
    """
    Compute the skip number after a completed session.

    Args:
        current: The stitch's current skip number
        was_perfect: True when every question was answered correctly

    Returns:
        The next tier on a perfect score, otherwise the first tier

    Raises:
        ValueError: If current is not a scheduling tier
    """
    if not is_valid_skip_number(current):
        raise ValueError(f"Unknown skip number {current}; expected one of {SKIP_SEQUENCE}")

    if not was_perfect:
        return FIRST_TIER

    index = SKIP_SEQUENCE.index(current)
    return SKIP_SEQUENCE[min(index + 1, len(SKIP_SEQUENCE) - 1)]


def is_perfect(correct: int, total: int) -> bool:
    """A session is perfect when every question was answered correctly."""
    return total > 0 and correct == total
