"""Run one data-quality rule against its source and persist the outcome."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.orm import Session

from dqscore.models import DataQualityResult, DataQualityRule, utcnow
from dqscore.services.activity_log import ACTIVITY_RULE_EXECUTED, record_activity
from dqscore.services.connection_resolver import (
    UnsupportedConnectionError,
    resolve_connection_descriptor,
)
from dqscore.services.quality_scoring import compute_rule_score
from dqscore.services.rule_translator import (
    CombinedQuery,
    ConfigurationError,
    build_details,
    build_rule_target,
    translate,
)
from dqscore.services.source_connector import (
    ConnectorError,
    SourceConnector,
    SourceNotFoundError,
    SourceSession,
)

logger = logging.getLogger(__name__)

STRUCTURAL_ERROR_TYPES = frozenset(
    {"ConfigurationError", "SourceNotFoundError", "UnsupportedConnectionError", "RuleNotFoundError"}
)


class RuleNotFoundError(LookupError):
    """Raised when a rule id does not exist."""


class InvalidRuleResultError(Exception):
    """Raised when a custom rule query returns an unusable row."""


@dataclass
class RuleExecutionResult:
    rule_id: UUID
    passed: bool
    violation_count: int
    total_count: int
    score: int
    details: dict[str, Any] = field(default_factory=dict)
    execution_time_ms: int = 0
    executed_at: datetime = field(default_factory=utcnow)

    @property
    def error_type(self) -> str | None:
        return self.details.get("error_type")

    @property
    def is_structural_failure(self) -> bool:
        return self.error_type in STRUCTURAL_ERROR_TYPES


class RuleExecutor:
    def __init__(
        self,
        session: Session,
        connector: SourceConnector,
        *,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._session = session
        self._connector = connector
        self._timer = timer

    def execute(self, rule_id: UUID | str) -> RuleExecutionResult:
        started = self._timer()
        rule_uuid = UUID(str(rule_id))
        rule = self._session.get(DataQualityRule, rule_uuid)
        if rule is None:
            logger.warning("Rule %s not found", rule_uuid)
            return self._failed_result(rule_uuid, RuleNotFoundError(f"Rule {rule_uuid} not found"), started)

        try:
            passed, total_count, violation_count, details = self._evaluate(rule)
        except (
            ConfigurationError,
            SourceNotFoundError,
            UnsupportedConnectionError,
            ConnectorError,
            InvalidRuleResultError,
        ) as exc:
            logger.warning("Rule '%s' (%s) failed: %s", rule.name, rule.id, exc)
            result = self._failed_result(rule.id, exc, started)
            self._persist(result)
            return result

        result = RuleExecutionResult(
            rule_id=rule.id,
            passed=passed,
            violation_count=violation_count,
            total_count=total_count,
            score=compute_rule_score(total_count, violation_count),
            details=details,
            execution_time_ms=self._elapsed_ms(started),
        )
        self._persist(result)
        table_name = rule.table.full_name
        record_activity(
            self._session,
            ACTIVITY_RULE_EXECUTED,
            f"rule '{rule.name}' executed on {table_name} — score {result.score}%",
            entity_type="rule",
            entity_id=rule.id,
            payload={"score": result.score, "passed": result.passed},
        )
        logger.info("Rule '%s' executed on %s: score %s%%", rule.name, table_name, result.score)
        return result

    def _evaluate(self, rule: DataQualityRule) -> tuple[bool, int, int, dict[str, Any]]:
        table = rule.table
        source = table.source if table is not None else None
        if table is None or source is None:
            raise SourceNotFoundError(f"Rule '{rule.name}' is missing its table or source")

        descriptor = resolve_connection_descriptor(source)
        translation = translate(rule, descriptor.dialect)
        target = build_rule_target(rule, descriptor.dialect)
        logger.info("Executing rule '%s' on %s", rule.name, target.table_name)

        with self._connector.open(descriptor) as connection:
            if isinstance(translation, CombinedQuery):
                return self._evaluate_custom(rule, target, connection, translation)
            total_count = connection.scalar_count(translation.total_query)
            violation_count = connection.scalar_count(translation.violation_query, translation.params)

        details = build_details(rule, target, total_count, violation_count)
        return violation_count == 0, total_count, violation_count, details

    def _evaluate_custom(self, rule, target, connection: SourceSession, translation: CombinedQuery):
        row = connection.query(translation.query).first()
        if row is None:
            raise InvalidRuleResultError("Custom rule query returned no results")

        values = {str(key).lower(): value for key, value in row.items()}
        total_count = _coerce_count(values.get("total_count"), "total_count")
        violation_count = _coerce_count(values.get("violation_count"), "violation_count")
        if violation_count > total_count:
            raise InvalidRuleResultError(
                f"Custom rule query reported {violation_count} violations for {total_count} rows"
            )

        passed = _is_true(values.get("passed")) or violation_count == 0
        details = build_details(rule, target, total_count, violation_count, row)
        return passed, total_count, violation_count, details

    def _persist(self, result: RuleExecutionResult) -> None:
        self._session.add(
            DataQualityResult(
                rule_id=result.rule_id,
                passed=result.passed,
                violation_count=result.violation_count,
                total_count=result.total_count,
                score=result.score,
                details=result.details,
                execution_time_ms=result.execution_time_ms,
                run_at=result.executed_at,
            )
        )
        self._session.flush()

    def _failed_result(self, rule_id: UUID, exc: Exception, started: float) -> RuleExecutionResult:
        elapsed = self._elapsed_ms(started)
        return RuleExecutionResult(
            rule_id=rule_id,
            passed=False,
            violation_count=0,
            total_count=0,
            score=0,
            details={
                "error": str(exc),
                "error_type": type(exc).__name__,
                "execution_time_ms": elapsed,
            },
            execution_time_ms=elapsed,
        )

    def _elapsed_ms(self, started: float) -> int:
        return max(0, int(round((self._timer() - started) * 1000)))


def _coerce_count(value: Any, column: str) -> int:
    if value is None:
        return 0
    try:
        count = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidRuleResultError(f"Custom rule column '{column}' is not a number: {value!r}") from exc
    if count < 0:
        raise InvalidRuleResultError(f"Custom rule column '{column}' is negative: {count}")
    return count


_TRUE_STRINGS = frozenset({"true", "t", "yes", "y", "1"})


def _is_true(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    return isinstance(value, str) and value.strip().lower() in _TRUE_STRINGS
