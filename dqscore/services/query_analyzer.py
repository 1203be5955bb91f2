"""Run ad-hoc read-only queries against a source and evaluate their performance.

Metrics are heuristics over the query text and the returned row count,
optionally enriched with index names from the source's execution plan.
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.orm import Session

from dqscore.models import DataSource
from dqscore.schemas.query_performance import PerformanceGrade
from dqscore.services.activity_log import ACTIVITY_QUERY_EXECUTED, record_activity
from dqscore.services.connection_resolver import (
    UnsupportedConnectionError,
    resolve_connection_descriptor,
)
from dqscore.services.performance_grader import QueryMetrics, grade
from dqscore.services.quality_scoring import round_half_up
from dqscore.services.source_connector import (
    ConnectorError,
    PlanNode,
    SourceConnector,
    SourceNotFoundError,
    SourceSession,
)

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 10
FAILED_QUERY_SUGGESTION = "Check query syntax and table/column names"

_FORBIDDEN_KEYWORDS = (
    "DROP",
    "DELETE",
    "TRUNCATE",
    "ALTER",
    "CREATE",
    "UPDATE",
    "INSERT",
    "MERGE",
    "GRANT",
    "REVOKE",
    "EXEC",
    "EXECUTE",
    "CALL",
    "INTO",
)
# REPLACE is only a write when it is not the string function.
_FORBIDDEN_PATTERN = re.compile(
    r"\b(" + "|".join(_FORBIDDEN_KEYWORDS) + r")\b|\bREPLACE\b(?!\s*\()", re.IGNORECASE
)


class QueryNotAllowedError(ValueError):
    """Raised when an analyzed query contains a write or DDL statement."""


@dataclass
class QueryExecutionResult:
    success: bool
    query_id: str
    metrics: QueryMetrics
    performance_grade: PerformanceGrade
    columns: list[str] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None
    error_type: str | None = None
    execution_plan: PlanNode | None = None
    optimization_suggestions: list[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass
class PerformanceStats:
    total_queries: int
    average_execution_time_ms: int
    slowest_queries: list[dict[str, Any]]
    most_frequent_suggestions: list[dict[str, Any]]


class QueryHistory:
    """Rolling per-query metrics history, bounded to the last ``size`` runs of each query."""

    def __init__(self, size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._size = max(1, size)
        self._entries: dict[str, deque[QueryMetrics]] = {}
        self._lock = threading.Lock()

    def record(self, metrics: QueryMetrics) -> None:
        with self._lock:
            entries = self._entries.setdefault(metrics.query_id, deque(maxlen=self._size))
            entries.append(metrics)

    def get(self, query_id: str) -> list[QueryMetrics]:
        with self._lock:
            return list(self._entries.get(query_id, ()))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def performance_stats(self, top: int = 5) -> PerformanceStats:
        with self._lock:
            all_metrics = [metrics for entries in self._entries.values() for metrics in entries]

        if not all_metrics:
            return PerformanceStats(0, 0, [], [])

        average = sum(metrics.execution_time_ms for metrics in all_metrics) / len(all_metrics)
        slowest = sorted(all_metrics, key=lambda metrics: metrics.execution_time_ms, reverse=True)[:top]
        suggestion_counts = Counter(
            suggestion for metrics in all_metrics for suggestion in metrics.suggestions
        )
        return PerformanceStats(
            total_queries=len(all_metrics),
            average_execution_time_ms=round_half_up(average),
            slowest_queries=[
                {"query_id": metrics.query_id, "execution_time_ms": metrics.execution_time_ms}
                for metrics in slowest
            ],
            most_frequent_suggestions=[
                {"suggestion": suggestion, "count": count}
                for suggestion, count in suggestion_counts.most_common(top)
            ],
        )


def build_query_id(sql: str) -> str:
    normalized = re.sub(r"\s+", " ", sql.strip().lower())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]


def ensure_read_only(sql: str) -> None:
    match = _FORBIDDEN_PATTERN.search(sql)
    if match:
        raise QueryNotAllowedError(
            f"Only read-only queries can be analyzed; found '{match.group(0).upper()}'"
        )


def placeholder_plan() -> PlanNode:
    return PlanNode(node_type="Unknown", operation="Query execution")


class QueryAnalyzer:
    def __init__(
        self,
        session: Session,
        connector: SourceConnector,
        history: QueryHistory,
        *,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._session = session
        self._connector = connector
        self._history = history
        self._timer = timer

    def analyze(self, sql: str, source_id: UUID | str, *, explain: bool = False) -> QueryExecutionResult:
        query_id = build_query_id(sql)
        started = self._timer()
        plan: PlanNode | None = None
        try:
            ensure_read_only(sql)
            source = self._session.get(DataSource, UUID(str(source_id)))
            if source is None:
                raise SourceNotFoundError(f"Data source {source_id} not found")
            descriptor = resolve_connection_descriptor(source)

            with self._connector.open(descriptor) as connection:
                if explain:
                    plan = self._fetch_plan(connection, sql)
                query_started = self._timer()
                rows = connection.query(sql)
                execution_time_ms = self._elapsed_ms(query_started)
        except (QueryNotAllowedError, SourceNotFoundError, UnsupportedConnectionError, ConnectorError) as exc:
            logger.warning("Query %s failed: %s", query_id, exc)
            return self._failed_result(query_id, exc, self._elapsed_ms(started))

        metrics = derive_metrics(query_id, sql, execution_time_ms, rows.row_count, plan)
        self._history.record(metrics)
        performance_grade, suggestions = grade(metrics, plan)

        record_activity(
            self._session,
            ACTIVITY_QUERY_EXECUTED,
            f"Query executed in {execution_time_ms}ms - {rows.row_count} rows returned",
            entity_type="data_source",
            entity_id=source.id,
            payload={
                "source_id": str(source.id),
                "query_id": query_id,
                "execution_time_ms": execution_time_ms,
                "rows_returned": rows.row_count,
                "performance_grade": performance_grade.value,
            },
        )
        logger.info(
            "Query %s on '%s' returned %d rows in %dms (grade %s)",
            query_id,
            source.name,
            rows.row_count,
            execution_time_ms,
            performance_grade.value,
        )
        return QueryExecutionResult(
            success=True,
            query_id=query_id,
            metrics=metrics,
            performance_grade=performance_grade,
            columns=rows.columns,
            rows=rows.rows,
            execution_plan=plan,
            optimization_suggestions=suggestions,
        )

    def _fetch_plan(self, connection: SourceSession, sql: str) -> PlanNode:
        try:
            return connection.explain(sql)
        except ConnectorError as exc:
            logger.info("Execution plan unavailable, using placeholder: %s", exc)
            return placeholder_plan()

    def _failed_result(self, query_id: str, exc: Exception, execution_time_ms: int) -> QueryExecutionResult:
        metrics = QueryMetrics(
            query_id=query_id,
            execution_time_ms=execution_time_ms,
            warnings=[str(exc)],
            suggestions=[FAILED_QUERY_SUGGESTION],
        )
        return QueryExecutionResult(
            success=False,
            query_id=query_id,
            metrics=metrics,
            performance_grade=PerformanceGrade.F,
            error=str(exc),
            error_type=type(exc).__name__,
            optimization_suggestions=[FAILED_QUERY_SUGGESTION],
        )

    def _elapsed_ms(self, started: float) -> int:
        return max(0, int(round((self._timer() - started) * 1000)))


# Heuristic metrics. None of these are measured on the source.

_AGGREGATE_PATTERN = re.compile(r"GROUP BY|COUNT|SUM|AVG|MAX|MIN")

SLOW_EXECUTION_WARNING = "Query execution time exceeds 5 seconds"
SLOW_EXECUTION_SUGGESTION = "Consider adding indexes or optimizing WHERE clauses"
WILDCARD_WARNING = "Using SELECT * can impact performance"
WILDCARD_SUGGESTION = "Specify only the columns you need"
LARGE_RESULT_WARNING = "Large result set returned"
LARGE_RESULT_SUGGESTION = "Consider using LIMIT clause or adding filters"
JOIN_INDEX_SUGGESTION = "Consider adding indexes on join columns"


def query_complexity(sql: str) -> int:
    upper = sql.upper()
    has_join = "JOIN" in upper
    has_subquery = "(SELECT" in upper
    has_aggregate = _AGGREGATE_PATTERN.search(upper) is not None
    return 1 + (2 if has_join else 0) + (3 if has_subquery else 0) + (1 if has_aggregate else 0)


def collect_index_names(plan: PlanNode | None) -> list[str]:
    if plan is None:
        return []
    names = (node.index_name for node in plan.walk() if node.index_name)
    return list(dict.fromkeys(names))


def derive_metrics(
    query_id: str,
    sql: str,
    execution_time_ms: int,
    rows_returned: int,
    plan: PlanNode | None = None,
) -> QueryMetrics:
    upper = sql.upper()
    rows_scanned = max(rows_returned * query_complexity(sql), rows_returned)
    io_operations = math.ceil(rows_scanned / 1000)
    indexes_used = collect_index_names(plan)

    warnings: list[str] = []
    suggestions: list[str] = []
    if execution_time_ms > 5_000:
        warnings.append(SLOW_EXECUTION_WARNING)
        suggestions.append(SLOW_EXECUTION_SUGGESTION)
    if "SELECT *" in upper:
        warnings.append(WILDCARD_WARNING)
        suggestions.append(WILDCARD_SUGGESTION)
    if rows_returned > 10_000:
        warnings.append(LARGE_RESULT_WARNING)
        suggestions.append(LARGE_RESULT_SUGGESTION)
    if "JOIN" in upper and not indexes_used:
        suggestions.append(JOIN_INDEX_SUGGESTION)

    return QueryMetrics(
        query_id=query_id,
        execution_time_ms=execution_time_ms,
        rows_returned=rows_returned,
        rows_scanned=rows_scanned,
        memory_usage_mb=rows_returned * 0.001,
        cpu_time_ms=execution_time_ms * 0.8,
        io_operations=io_operations,
        cache_hits=max(0, io_operations - math.ceil(io_operations * 0.3)),
        indexes_used=indexes_used,
        warnings=warnings,
        suggestions=suggestions,
    )
