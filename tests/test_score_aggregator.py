from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from dqscore.models import DataQualityResult, DataQualityRule, DataSource, DataTable
from dqscore.schemas.data_quality import QualityTrend
from dqscore.services.quality_scoring import compute_rule_score, round_half_up
from dqscore.services.score_aggregator import build_score_cards, compute_trend

BASE_TIME = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)


def _table(db_session, name="sales.orders"):
    source = DataSource(name="warehouse", source_type="sqlite", connection_string="sqlite:///warehouse.db")
    table = DataTable(source=source, name=name.split(".")[-1], schema_name="sales", full_name=name)
    db_session.add_all([source, table])
    db_session.flush()
    return table


def _rule(db_session, table, name):
    rule = DataQualityRule(name=name, rule_type="non_null", rule_config={}, table_id=table.id)
    db_session.add(rule)
    db_session.flush()
    return rule


def _result(db_session, rule, score, minutes, passed=None):
    db_session.add(
        DataQualityResult(
            rule_id=rule.id,
            passed=score == 100 if passed is None else passed,
            violation_count=100 - score,
            total_count=100,
            score=score,
            details={},
            execution_time_ms=5,
            run_at=BASE_TIME + timedelta(minutes=minutes),
        )
    )
    db_session.flush()


def test_rising_scores_are_improving(db_session):
    table = _table(db_session)
    rule = _rule(db_session, table, "not null")
    _result(db_session, rule, 70, minutes=0)
    _result(db_session, rule, 90, minutes=5)

    [card] = build_score_cards(db_session)

    assert card.overall_score == 90
    assert card.previous_score == 70
    assert card.trend == QualityTrend.IMPROVING
    assert card.rule_count == 1
    assert card.table_name == "sales.orders"
    assert card.source_name == "warehouse"
    assert card.last_executed == BASE_TIME + timedelta(minutes=5)


def test_falling_and_flat_scores(db_session):
    declining = _table(db_session, "sales.orders")
    stable = _table(db_session, "sales.refunds")
    declining_rule = _rule(db_session, declining, "orders check")
    stable_rule = _rule(db_session, stable, "refunds check")
    _result(db_session, declining_rule, 95, minutes=0)
    _result(db_session, declining_rule, 80, minutes=1)
    _result(db_session, stable_rule, 88, minutes=0)
    _result(db_session, stable_rule, 88, minutes=1)

    cards = {card.table_name: card for card in build_score_cards(db_session)}

    assert cards["sales.orders"].trend == QualityTrend.DECLINING
    assert cards["sales.refunds"].trend == QualityTrend.STABLE


def test_overall_score_is_rounded_mean_of_latest_score_per_rule(db_session):
    table = _table(db_session)
    first = _rule(db_session, table, "first")
    second = _rule(db_session, table, "second")
    _result(db_session, first, 40, minutes=0)
    _result(db_session, first, 85, minutes=10)
    _result(db_session, second, 90, minutes=5, passed=False)

    [card] = build_score_cards(db_session)

    assert card.overall_score == 88
    assert card.passed_rules == 0
    assert card.failed_rules == 2
    assert card.rule_count == 2


def test_single_run_per_rule_is_new(db_session):
    table = _table(db_session)
    rule = _rule(db_session, table, "only once")
    _result(db_session, rule, 100, minutes=0)

    [card] = build_score_cards(db_session)

    assert card.trend == QualityTrend.NEW
    assert card.previous_score is None
    assert card.passed_rules == 1


def test_rules_without_results_report_zero_and_new(db_session):
    table = _table(db_session)
    _rule(db_session, table, "never run")

    [card] = build_score_cards(db_session)

    assert card.overall_score == 0
    assert card.last_executed is None
    assert card.trend == QualityTrend.NEW
    assert card.passed_rules == 0
    assert card.failed_rules == 0


def test_tables_without_rules_are_omitted(db_session):
    _table(db_session, "sales.orders")

    assert build_score_cards(db_session) == []


@pytest.mark.parametrize(
    ("total", "violations", "expected"),
    [(0, 0, 100), (4, 2, 50), (8, 1, 88), (3, 1, 67), (200, 1, 100), (200, 199, 1), (5, 5, 0)],
)
def test_rule_score_bounds(total, violations, expected):
    score = compute_rule_score(total, violations)

    assert 0 <= score <= 100
    assert score == expected


def test_half_values_round_up():
    assert round_half_up(87.5) == 88
    assert round_half_up(62.5) == 63
    assert round_half_up(-2.5) == -3


def test_compute_trend_thresholds():
    assert compute_trend(80, 70) == QualityTrend.IMPROVING
    assert compute_trend(70, 80) == QualityTrend.DECLINING
    assert compute_trend(75, 75) == QualityTrend.STABLE
    assert compute_trend(75, None) == QualityTrend.NEW
