from __future__ import annotations

import uuid

import pytest
from sqlalchemy import create_engine, select, text

from dqscore.models import ActivityLog
from dqscore.schemas.query_performance import PerformanceGrade
from dqscore.services.performance_grader import QueryMetrics, SEQ_SCAN_SUGGESTION
from dqscore.services.query_analyzer import (
    FAILED_QUERY_SUGGESTION,
    JOIN_INDEX_SUGGESTION,
    WILDCARD_SUGGESTION,
    QueryAnalyzer,
    QueryHistory,
    QueryNotAllowedError,
    build_query_id,
    derive_metrics,
    ensure_read_only,
)
from dqscore.services.source_connector import ConnectorError, PlanNode, SourceSession


class SteppingTimer:
    def __init__(self, step: float = 0.012) -> None:
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


class ExplodingConnector:
    def open(self, descriptor):
        raise AssertionError("the connector must not be opened")


@pytest.fixture()
def people(sqlite_source):
    seeded = sqlite_source(
        "people",
        {"id": "INTEGER PRIMARY KEY", "name": "TEXT", "email": "TEXT"},
        [{"id": i, "name": f"person {i}", "email": f"p{i}@example.com"} for i in range(1, 6)],
    )
    source_engine = create_engine(f"sqlite:///{seeded.database_path}")
    try:
        with source_engine.begin() as conn:
            conn.execute(text("CREATE INDEX idx_people_email ON people (email)"))
    finally:
        source_engine.dispose()
    return seeded


def test_analyze_returns_rows_and_metrics(db_session, people, connector):
    history = QueryHistory()
    analyzer = QueryAnalyzer(db_session, connector, history, timer=SteppingTimer())

    result = analyzer.analyze("SELECT id, name FROM people ORDER BY id", people.source.id)

    assert result.success is True
    assert result.columns == ["id", "name"]
    assert result.row_count == 5
    assert result.rows[0] == {"id": 1, "name": "person 1"}
    assert result.metrics.rows_returned == 5
    assert result.metrics.rows_scanned == 5
    assert result.metrics.execution_time_ms == 12
    assert result.performance_grade == PerformanceGrade.A
    assert history.get(result.query_id) == [result.metrics]

    activity = db_session.execute(select(ActivityLog)).scalars().all()
    assert [entry.activity_type for entry in activity] == ["query_executed"]
    assert activity[0].payload["query_id"] == result.query_id


def test_analyze_is_idempotent_for_identical_queries(db_session, people, connector):
    history = QueryHistory()
    analyzer = QueryAnalyzer(db_session, connector, history, timer=SteppingTimer())

    first = analyzer.analyze("SELECT *  FROM people", people.source.id)
    second = analyzer.analyze("select * from   PEOPLE", people.source.id)

    assert first.query_id == second.query_id
    assert first.metrics == second.metrics
    assert WILDCARD_SUGGESTION in first.optimization_suggestions
    assert len(history.get(first.query_id)) == 2


def test_explain_collects_indexes_from_plan(db_session, people, connector):
    analyzer = QueryAnalyzer(db_session, connector, QueryHistory())

    result = analyzer.analyze(
        "SELECT email FROM people WHERE email = 'p2@example.com'",
        people.source.id,
        explain=True,
    )

    assert result.success is True
    assert result.execution_plan is not None
    assert "idx_people_email" in result.metrics.indexes_used


def test_explain_flags_sequential_scans(db_session, people, connector):
    analyzer = QueryAnalyzer(db_session, connector, QueryHistory())

    result = analyzer.analyze("SELECT name FROM people", people.source.id, explain=True)

    node_types = [node.node_type for node in result.execution_plan.walk()]
    assert "Seq Scan" in node_types
    assert SEQ_SCAN_SUGGESTION in result.optimization_suggestions


def test_plan_failure_falls_back_to_placeholder(db_session, people, connector, monkeypatch):
    def failing_explain(self, sql):
        raise ConnectorError("explain not permitted")

    monkeypatch.setattr(SourceSession, "explain", failing_explain)
    analyzer = QueryAnalyzer(db_session, connector, QueryHistory())

    result = analyzer.analyze("SELECT name FROM people", people.source.id, explain=True)

    assert result.success is True
    plan = result.execution_plan
    assert (plan.node_type, plan.operation, plan.actual_loops, plan.cost) == ("Unknown", "Query execution", 1, 0.0)


def test_failed_query_is_graded_f_and_not_recorded(db_session, people, connector):
    history = QueryHistory()
    analyzer = QueryAnalyzer(db_session, connector, history)

    result = analyzer.analyze("SELECT missing_column FROM people", people.source.id)

    assert result.success is False
    assert result.performance_grade == PerformanceGrade.F
    assert "missing_column" in result.error
    assert result.metrics.warnings == [result.error]
    assert result.metrics.suggestions == [FAILED_QUERY_SUGGESTION]
    assert result.metrics.rows_returned == 0
    assert history.get(result.query_id) == []
    assert history.performance_stats().total_queries == 0
    assert db_session.execute(select(ActivityLog)).scalars().all() == []


def test_write_statements_are_rejected_before_connecting(db_session, people):
    analyzer = QueryAnalyzer(db_session, ExplodingConnector(), QueryHistory())

    result = analyzer.analyze("DELETE FROM people", people.source.id)

    assert result.success is False
    assert result.error_type == "QueryNotAllowedError"


def test_unknown_source_is_a_failed_result(db_session):
    analyzer = QueryAnalyzer(db_session, ExplodingConnector(), QueryHistory())

    result = analyzer.analyze("SELECT 1", uuid.uuid4())

    assert result.success is False
    assert result.error_type == "SourceNotFoundError"
    assert result.optimization_suggestions == [FAILED_QUERY_SUGGESTION]


@pytest.mark.parametrize(
    "sql",
    [
        "drop table people",
        "SELECT 1; TRUNCATE people",
        "insert into t values (1)",
        "GRANT ALL ON t TO bob",
        "REPLACE INTO people (id) VALUES (1)",
        "REPLACE people SET id = 1",
        "SELECT id INTO people_copy FROM people",
        "EXEC dbo.purge_people",
        "CALL refresh_people()",
    ],
)
def test_read_only_guard_rejects_writes(sql):
    with pytest.raises(QueryNotAllowedError):
        ensure_read_only(sql)


def test_read_only_guard_matches_whole_words_only():
    ensure_read_only("SELECT created_at, updated_by, deleted FROM audit_log")
    ensure_read_only("SELECT REPLACE(name, ' ', '_') AS slug, callback_url, intos FROM people")


def test_query_id_ignores_case_and_whitespace():
    assert build_query_id("SELECT  1\n FROM t") == build_query_id("select 1 from T")
    assert build_query_id("SELECT 1") != build_query_id("SELECT 2")
    assert len(build_query_id("SELECT 1")) == 16


def test_heuristic_metrics_follow_query_shape():
    sql = "SELECT c.id, COUNT(*) FROM customers c JOIN orders o ON o.customer_id = c.id GROUP BY c.id"

    metrics = derive_metrics("q1", sql, 2000, 1500)

    assert metrics.rows_scanned == 1500 * 4
    assert metrics.io_operations == 6
    assert metrics.cache_hits == 4
    assert metrics.memory_usage_mb == pytest.approx(1.5)
    assert metrics.cpu_time_ms == pytest.approx(1600)
    assert JOIN_INDEX_SUGGESTION in metrics.suggestions


def test_subqueries_weigh_heaviest():
    metrics = derive_metrics("q2", "SELECT * FROM t WHERE id IN (SELECT id FROM u)", 10, 10)

    assert metrics.rows_scanned == 40


def test_join_with_index_in_plan_skips_join_suggestion():
    plan = PlanNode(
        node_type="Nested Loop",
        operation="join",
        children=[PlanNode(node_type="Index Scan", operation="scan", index_name="orders_customer_idx")],
    )

    metrics = derive_metrics("q3", "SELECT * FROM a JOIN b ON a.id = b.a_id", 5, 1, plan)

    assert metrics.indexes_used == ["orders_customer_idx"]
    assert JOIN_INDEX_SUGGESTION not in metrics.suggestions


def test_slow_and_large_queries_warn():
    metrics = derive_metrics("q4", "SELECT id FROM t", 6000, 20000)

    assert len(metrics.warnings) == 2
    assert "Consider using LIMIT clause or adding filters" in metrics.suggestions


def test_history_keeps_last_ten_runs_per_query():
    history = QueryHistory(size=10)
    for elapsed in range(12):
        history.record(QueryMetrics(query_id="q", execution_time_ms=elapsed))

    entries = history.get("q")

    assert len(entries) == 10
    assert [entry.execution_time_ms for entry in entries] == list(range(2, 12))


def test_performance_stats_summarise_history():
    history = QueryHistory()
    history.record(QueryMetrics(query_id="a", execution_time_ms=100, suggestions=["x", "y"]))
    history.record(QueryMetrics(query_id="a", execution_time_ms=300, suggestions=["x"]))
    history.record(QueryMetrics(query_id="b", execution_time_ms=201, suggestions=["z"]))

    stats = history.performance_stats()

    assert stats.total_queries == 3
    assert stats.average_execution_time_ms == 200
    assert stats.slowest_queries[0] == {"query_id": "a", "execution_time_ms": 300}
    assert [entry["query_id"] for entry in stats.slowest_queries] == ["a", "b", "a"]
    assert stats.most_frequent_suggestions[0] == {"suggestion": "x", "count": 2}


def test_performance_stats_with_empty_history():
    stats = QueryHistory().performance_stats()

    assert (stats.total_queries, stats.average_execution_time_ms) == (0, 0)
    assert stats.slowest_queries == []
    assert stats.most_frequent_suggestions == []
