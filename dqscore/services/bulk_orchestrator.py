"""Run the rule executor over many rules, isolating each rule's failures."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Generator, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from dqscore.database import SessionLocal
from dqscore.models import DataQualityRule
from dqscore.services.rule_executor import RuleExecutionResult, RuleExecutor
from dqscore.services.source_connector import SourceConnector

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[Session, SourceConnector], RuleExecutor]


@dataclass
class BulkExecutionSummary:
    executed_count: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _RuleUnit:
    rule_id: UUID
    name: str


class BulkRuleOrchestrator:
    def __init__(
        self,
        connector: SourceConnector,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        max_workers: int = 1,
        executor_factory: ExecutorFactory = RuleExecutor,
    ) -> None:
        self._connector = connector
        self._session_factory = session_factory
        self._max_workers = max(1, max_workers)
        self._executor_factory = executor_factory

    def execute_all_for_table(self, table_id: UUID) -> list[RuleExecutionResult]:
        units = self._load_active_rules(table_id)
        logger.info("Executing %d active rules for table %s", len(units), table_id)
        results: list[RuleExecutionResult] = []
        for unit, outcome in self._run_units(units):
            if isinstance(outcome, Exception):
                outcome = RuleExecutionResult(
                    rule_id=unit.rule_id,
                    passed=False,
                    violation_count=0,
                    total_count=0,
                    score=0,
                    details={"error": str(outcome), "error_type": type(outcome).__name__},
                )
            results.append(outcome)
        return results

    def execute_all_active(self) -> BulkExecutionSummary:
        units = self._load_active_rules()
        logger.info("Executing %d active rules", len(units))
        summary = BulkExecutionSummary()
        for unit, outcome in self._run_units(units):
            if isinstance(outcome, Exception):
                summary.errors.append(f"Rule {unit.name}: {outcome}")
            elif outcome.is_structural_failure:
                summary.errors.append(f"Rule {unit.name}: {outcome.details.get('error')}")
            else:
                summary.executed_count += 1
        logger.info(
            "Bulk rule execution finished: %d executed, %d errors",
            summary.executed_count,
            len(summary.errors),
        )
        return summary

    def _load_active_rules(self, table_id: UUID | None = None) -> list[_RuleUnit]:
        statement = select(DataQualityRule.id, DataQualityRule.name).where(
            DataQualityRule.is_active.is_(True)
        )
        if table_id is not None:
            statement = statement.where(DataQualityRule.table_id == table_id)
        statement = statement.order_by(DataQualityRule.created_at, DataQualityRule.id)
        with self._session_scope() as session:
            rows = session.execute(statement).all()
        return [_RuleUnit(rule_id=row.id, name=row.name) for row in rows]

    def _run_units(
        self, units: Sequence[_RuleUnit]
    ) -> list[tuple[_RuleUnit, RuleExecutionResult | Exception]]:
        if self._max_workers <= 1 or len(units) <= 1:
            return [(unit, self._execute_unit(unit)) for unit in units]

        with ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(units)), thread_name_prefix="dq-rule"
        ) as pool:
            futures = [(unit, pool.submit(self._execute_unit, unit)) for unit in units]
            return [(unit, future.result()) for unit, future in futures]

    def _execute_unit(self, unit: _RuleUnit) -> RuleExecutionResult | Exception:
        try:
            with self._session_scope() as session:
                executor = self._executor_factory(session, self._connector)
                return executor.execute(unit.rule_id)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure while executing rule '%s' (%s)", unit.name, unit.rule_id)
            return exc

    @contextmanager
    def _session_scope(self) -> Generator[Session, None, None]:
        session = self._session_factory()
        session.expire_on_commit = False
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
