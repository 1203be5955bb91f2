"""Per-table quality score cards derived from the append-only result history."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from dqscore.models import DataQualityResult, DataQualityRule, DataTable
from dqscore.schemas.data_quality import QualityTrend
from dqscore.services.quality_scoring import mean_score

logger = logging.getLogger(__name__)


@dataclass
class QualityScoreCard:
    table_id: UUID
    table_name: str
    source_id: UUID
    source_name: str
    rule_count: int
    passed_rules: int
    failed_rules: int
    overall_score: int
    previous_score: int | None
    last_executed: datetime | None
    trend: QualityTrend


def build_score_cards(session: Session) -> list[QualityScoreCard]:
    tables = (
        session.execute(
            select(DataTable)
            .where(DataTable.rules.any())
            .options(selectinload(DataTable.rules), selectinload(DataTable.source))
            .order_by(DataTable.full_name)
        )
        .scalars()
        .all()
    )
    rule_ids = [rule.id for table in tables for rule in table.rules]
    history = _load_history(session, rule_ids)

    cards = [
        _build_card(table, history)
        for table in tables
        if table.source is not None
    ]
    logger.debug("Built %d quality score cards", len(cards))
    return cards


def compute_trend(current: int | None, previous: int | None) -> QualityTrend:
    if current is None or previous is None:
        return QualityTrend.NEW
    if current > previous:
        return QualityTrend.IMPROVING
    if current < previous:
        return QualityTrend.DECLINING
    return QualityTrend.STABLE


def _load_history(session: Session, rule_ids: Iterable[UUID]) -> dict[UUID, list[DataQualityResult]]:
    rule_ids = list(rule_ids)
    history: dict[UUID, list[DataQualityResult]] = defaultdict(list)
    if not rule_ids:
        return history
    results = session.execute(
        select(DataQualityResult).where(DataQualityResult.rule_id.in_(rule_ids))
    ).scalars()
    for result in results:
        history[result.rule_id].append(result)
    for entries in history.values():
        entries.sort(key=lambda entry: (_as_utc(entry.run_at), entry.id))
    return history


def _build_card(table: DataTable, history: dict[UUID, list[DataQualityResult]]) -> QualityScoreCard:
    rules: list[DataQualityRule] = list(table.rules)
    latest = [history[rule.id][-1] for rule in rules if history.get(rule.id)]
    prior = [history[rule.id][-2] for rule in rules if len(history.get(rule.id, [])) > 1]

    current_score = mean_score(result.score for result in latest)
    previous_score = mean_score(result.score for result in prior)
    executed_at = [_as_utc(result.run_at) for rule in rules for result in history.get(rule.id, [])]

    return QualityScoreCard(
        table_id=table.id,
        table_name=table.full_name,
        source_id=table.source.id,
        source_name=table.source.name,
        rule_count=len(rules),
        passed_rules=sum(1 for result in latest if result.passed),
        failed_rules=sum(1 for result in latest if not result.passed),
        overall_score=current_score if current_score is not None else 0,
        previous_score=previous_score,
        last_executed=max(executed_at) if executed_at else None,
        trend=compute_trend(current_score, previous_score),
    )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
