from __future__ import annotations

import pytest

from dqscore.schemas.query_performance import PerformanceGrade
from dqscore.services.performance_grader import (
    MEMORY_SUGGESTION,
    NESTED_LOOP_SUGGESTION,
    SCAN_RATIO_SUGGESTION,
    SEQ_SCAN_SUGGESTION,
    SLOW_QUERY_SUGGESTION,
    QueryMetrics,
    grade,
    letter_grade,
    performance_score,
)
from dqscore.services.source_connector import PlanNode


def _metrics(**overrides) -> QueryMetrics:
    base = dict(
        query_id="abc123",
        execution_time_ms=50,
        rows_returned=100,
        rows_scanned=100,
        memory_usage_mb=0.1,
    )
    base.update(overrides)
    return QueryMetrics(**base)


def test_moderate_query_with_index_grades_a():
    metrics = _metrics(
        execution_time_ms=600,
        rows_returned=100,
        rows_scanned=500,
        memory_usage_mb=50,
        indexes_used=["orders_pkey"],
    )

    assert performance_score(metrics) == 95
    assert grade(metrics) == (PerformanceGrade.A, [])


def test_only_the_steepest_time_penalty_applies():
    assert performance_score(_metrics(execution_time_ms=12_000)) == 60
    assert performance_score(_metrics(execution_time_ms=6_000)) == 70
    assert performance_score(_metrics(execution_time_ms=1_500)) == 80
    assert performance_score(_metrics(execution_time_ms=501)) == 90
    assert performance_score(_metrics(execution_time_ms=500)) == 100


def test_penalties_accumulate_to_f():
    metrics = _metrics(
        execution_time_ms=12_000,
        rows_returned=10,
        rows_scanned=2_000,
        memory_usage_mb=600,
        warnings=["slow", "big"],
    )

    assert performance_score(metrics) == 100 - 40 - 30 - 20 - 10
    assert grade(metrics)[0] == PerformanceGrade.F


@pytest.mark.parametrize(
    ("score", "expected"),
    [
        (100, PerformanceGrade.A),
        (90, PerformanceGrade.A),
        (89, PerformanceGrade.B),
        (80, PerformanceGrade.B),
        (70, PerformanceGrade.C),
        (60, PerformanceGrade.D),
        (59, PerformanceGrade.F),
    ],
)
def test_letter_grade_thresholds(score, expected):
    assert letter_grade(score) == expected


def test_metric_suggestions_come_first_and_are_deduplicated():
    metrics = _metrics(
        execution_time_ms=2_000,
        rows_returned=1,
        rows_scanned=50,
        memory_usage_mb=150,
        suggestions=["Specify only the columns you need", SLOW_QUERY_SUGGESTION],
    )

    _, suggestions = grade(metrics)

    assert suggestions == [
        "Specify only the columns you need",
        SLOW_QUERY_SUGGESTION,
        SCAN_RATIO_SUGGESTION,
        MEMORY_SUGGESTION,
    ]


def test_plan_suggestions_search_the_whole_tree():
    plan = PlanNode(
        node_type="Nested Loop",
        operation="join",
        actual_rows=5_000,
        children=[
            PlanNode(node_type="Seq Scan", operation="scan orders"),
            PlanNode(node_type="Index Scan", operation="scan customers", index_name="customers_pkey"),
        ],
    )

    _, suggestions = grade(_metrics(), plan)

    assert SEQ_SCAN_SUGGESTION in suggestions
    assert NESTED_LOOP_SUGGESTION in suggestions


def test_small_nested_loops_are_fine():
    plan = PlanNode(node_type="Nested Loop", operation="join", actual_rows=10)

    _, suggestions = grade(_metrics(), plan)

    assert suggestions == []
