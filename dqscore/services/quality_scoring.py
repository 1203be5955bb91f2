from __future__ import annotations

import math
from typing import Iterable


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 fractions going away from zero."""

    if value < 0:
        return -math.floor(-value + 0.5)
    return math.floor(value + 0.5)


def compute_rule_score(total_count: int, violation_count: int) -> int:
    if total_count <= 0:
        return 100
    passing = max(total_count - violation_count, 0)
    return max(0, min(100, round_half_up(passing / total_count * 100)))


def mean_score(scores: Iterable[int]) -> int | None:
    values = list(scores)
    if not values:
        return None
    return round_half_up(sum(values) / len(values))
