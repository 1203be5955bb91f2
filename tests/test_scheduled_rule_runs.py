from __future__ import annotations

import logging
from datetime import timezone

from dqscore.services.bulk_orchestrator import BulkExecutionSummary
from dqscore.services.scheduled_rule_runs import ScheduledRuleRunEngine


class DummyOrchestrator:
    def __init__(self, summary: BulkExecutionSummary) -> None:
        self.summary = summary
        self.calls = 0

    def execute_all_active(self) -> BulkExecutionSummary:
        self.calls += 1
        return self.summary


def test_start_without_schedule_is_a_no_op():
    engine = ScheduledRuleRunEngine(lambda: DummyOrchestrator(BulkExecutionSummary()))

    engine.start()

    assert engine.running is False
    engine.shutdown()


def test_invalid_cron_expression_is_skipped(caplog):
    engine = ScheduledRuleRunEngine(
        lambda: DummyOrchestrator(BulkExecutionSummary()),
        cron_expression="not a cron",
    )

    with caplog.at_level(logging.WARNING, logger="dqscore.services.scheduled_rule_runs"):
        engine.start()

    assert engine.running is False
    assert "invalid cron expression" in caplog.text


def test_unknown_timezone_falls_back_to_utc():
    engine = ScheduledRuleRunEngine(cron_expression="0 2 * * *", timezone_name="Mars/Olympus_Mons")

    trigger = engine._build_trigger("0 2 * * *", "Mars/Olympus_Mons")

    assert trigger.timezone == timezone.utc


def test_named_timezone_is_applied():
    engine = ScheduledRuleRunEngine()

    trigger = engine._build_trigger("*/15 * * * *", "Europe/Berlin")

    assert str(trigger.timezone) == "Europe/Berlin"


def test_run_sweep_executes_every_active_rule(caplog):
    orchestrator = DummyOrchestrator(
        BulkExecutionSummary(executed_count=3, errors=["Rule Broken: Unsupported rule type: freshness"])
    )
    engine = ScheduledRuleRunEngine(lambda: orchestrator, cron_expression="0 * * * *")

    with caplog.at_level(logging.WARNING, logger="dqscore.services.scheduled_rule_runs"):
        summary = engine.run_sweep()

    assert orchestrator.calls == 1
    assert summary.executed_count == 3
    assert "Rule Broken" in caplog.text
