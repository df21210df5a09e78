"""
Engagement Level Classification.

Responsibilities:
- Map a total engagement score to an ordinal level.

Invariant:
The mapping is monotonic: a higher score never yields a lower level.
"""

LEVELS = ("inactive", "low", "medium", "high", "champion")

# (exclusive upper bound, level); scores at or above the last bound are champions
_THRESHOLDS = (
    (1, "inactive"),
    (25, "low"),
    (50, "medium"),
    (100, "high"),
)


def classify_score(total_score: int) -> str:
    """
    0 -> inactive, 1-24 -> low, 25-49 -> medium, 50-99 -> high, 100+ -> champion.

    Scores are sums of non-negative points, so anything below 1 is inactive.
    """
    for upper, level in _THRESHOLDS:
        if total_score < upper:
            return level
    return "champion"


def level_rank(level: str) -> int:
    return LEVELS.index(level)
