"""Letter grades and optimization suggestions for analyzed queries."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from dqscore.schemas.query_performance import PerformanceGrade
from dqscore.services.source_connector import PlanNode

SLOW_QUERY_SUGGESTION = "Query is slow - consider query optimization"
SCAN_RATIO_SUGGESTION = "High scan-to-return ratio - check if proper indexes exist"
MEMORY_SUGGESTION = "High memory usage - consider reducing result set size"
SEQ_SCAN_SUGGESTION = "Sequential scan detected - consider adding an index"
NESTED_LOOP_SUGGESTION = "Large nested loop join - consider using hash join instead"

_GRADE_THRESHOLDS = (
    (90, PerformanceGrade.A),
    (80, PerformanceGrade.B),
    (70, PerformanceGrade.C),
    (60, PerformanceGrade.D),
)


@dataclass
class QueryMetrics:
    query_id: str
    execution_time_ms: int
    rows_returned: int = 0
    rows_scanned: int = 0
    memory_usage_mb: float = 0.0
    cpu_time_ms: float = 0.0
    io_operations: int = 0
    cache_hits: int = 0
    indexes_used: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


def performance_score(metrics: QueryMetrics) -> int:
    score = 100

    elapsed = metrics.execution_time_ms
    if elapsed > 10_000:
        score -= 40
    elif elapsed > 5_000:
        score -= 30
    elif elapsed > 1_000:
        score -= 20
    elif elapsed > 500:
        score -= 10

    scan_ratio = metrics.rows_scanned / max(metrics.rows_returned, 1)
    if scan_ratio > 100:
        score -= 30
    elif scan_ratio > 50:
        score -= 20
    elif scan_ratio > 10:
        score -= 10

    if metrics.memory_usage_mb > 500:
        score -= 20
    elif metrics.memory_usage_mb > 100:
        score -= 10

    if metrics.indexes_used:
        score += 5

    score -= 5 * len(metrics.warnings)
    return score


def letter_grade(score: int) -> PerformanceGrade:
    for threshold, grade_value in _GRADE_THRESHOLDS:
        if score >= threshold:
            return grade_value
    return PerformanceGrade.F


def grade(metrics: QueryMetrics, plan: PlanNode | None = None) -> tuple[PerformanceGrade, list[str]]:
    """Grade a query run and collect deduplicated suggestions, metric suggestions first."""

    suggestions = list(metrics.suggestions)
    if metrics.execution_time_ms > 1_000:
        suggestions.append(SLOW_QUERY_SUGGESTION)
    if metrics.rows_scanned > metrics.rows_returned * 10:
        suggestions.append(SCAN_RATIO_SUGGESTION)
    if metrics.memory_usage_mb > 100:
        suggestions.append(MEMORY_SUGGESTION)

    if plan is not None:
        nodes = list(plan.walk())
        if any(node.node_type == "Seq Scan" for node in nodes):
            suggestions.append(SEQ_SCAN_SUGGESTION)
        if any(node.node_type == "Nested Loop" and node.actual_rows > 1_000 for node in nodes):
            suggestions.append(NESTED_LOOP_SUGGESTION)

    return letter_grade(performance_score(metrics)), _dedupe(suggestions)


def _dedupe(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))
