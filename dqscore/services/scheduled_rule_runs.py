from __future__ import annotations

import logging
from datetime import timezone
from typing import Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dqscore.config import get_settings
from dqscore.services.bulk_orchestrator import BulkExecutionSummary, BulkRuleOrchestrator
from dqscore.services.source_connector import SourceConnector

logger = logging.getLogger(__name__)

RULE_SWEEP_JOB_ID = "dq-rule-sweep"


def build_default_orchestrator() -> BulkRuleOrchestrator:
    settings = get_settings()
    connector = SourceConnector(
        timeout_seconds=settings.source_query_timeout_seconds,
        connect_timeout_seconds=settings.source_connect_timeout_seconds,
    )
    return BulkRuleOrchestrator(connector, max_workers=settings.max_connections_per_source)


class ScheduledRuleRunEngine:
    def __init__(
        self,
        orchestrator_factory: Callable[[], BulkRuleOrchestrator] = build_default_orchestrator,
        *,
        cron_expression: str | None = None,
        timezone_name: str | None = None,
    ) -> None:
        self._orchestrator_factory = orchestrator_factory
        self._cron_expression = cron_expression
        self._timezone_name = timezone_name
        self._scheduler: AsyncIOScheduler | None = None

    @classmethod
    def from_settings(cls) -> "ScheduledRuleRunEngine":
        settings = get_settings()
        return cls(cron_expression=settings.rule_run_cron, timezone_name=settings.rule_run_timezone)

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        if self.running:
            return
        if not self._cron_expression:
            logger.info("No rule sweep schedule configured; scheduled rule runs disabled")
            return
        try:
            trigger = self._build_trigger(self._cron_expression, self._timezone_name)
        except ValueError as exc:
            logger.warning("Skipping rule sweep schedule due to invalid cron expression: %s", exc)
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.run_sweep,
            trigger=trigger,
            id=RULE_SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("Scheduled rule sweeps with cron '%s'", self._cron_expression)

    def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

    def run_sweep(self) -> BulkExecutionSummary:
        logger.info("Launching scheduled rule sweep")
        summary = self._orchestrator_factory().execute_all_active()
        for error in summary.errors:
            logger.warning("Scheduled rule sweep error: %s", error)
        return summary

    def _build_trigger(self, expression: str, tz_name: str | None) -> CronTrigger:
        tz = timezone.utc
        if tz_name:
            try:
                tz = ZoneInfo(tz_name)
            except ZoneInfoNotFoundError:
                logger.warning("Unknown timezone '%s' for rule sweeps; defaulting to UTC", tz_name)
        return CronTrigger.from_crontab(expression, timezone=tz)
