from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from dqscore.config import get_settings
from dqscore.database import get_db
from dqscore.models import DataField, DataQualityResult, DataQualityRule, DataTable
from dqscore.schemas.data_quality import (
    FIELD_SCOPED_KINDS,
    BulkExecutionSummaryRead,
    DataQualityResultRead,
    DataQualityRuleCreate,
    DataQualityRuleRead,
    DataQualityRuleUpdate,
    QualityScoreCardRead,
    RuleExecutionResultRead,
    RuleKind,
)
from dqscore.services.bulk_orchestrator import BulkRuleOrchestrator
from dqscore.services.rule_executor import RuleExecutor
from dqscore.services.rule_translator import ConfigurationError, parse_rule_config
from dqscore.services.score_aggregator import build_score_cards
from dqscore.services.source_connector import SourceConnector

router = APIRouter(prefix="/data-quality", tags=["Data Quality"])

_NULLABLE_RULE_FIELDS = frozenset({"owner"})


def get_source_connector() -> SourceConnector:
    settings = get_settings()
    return SourceConnector(
        timeout_seconds=settings.source_query_timeout_seconds,
        connect_timeout_seconds=settings.source_connect_timeout_seconds,
    )


def get_bulk_orchestrator(
    connector: SourceConnector = Depends(get_source_connector),
) -> BulkRuleOrchestrator:
    settings = get_settings()
    return BulkRuleOrchestrator(connector, max_workers=settings.max_connections_per_source)


def _load_rule(rule_id: UUID, db: Session) -> DataQualityRule:
    rule = db.get(DataQualityRule, rule_id)
    if rule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rule not found")
    return rule


def _validated_config(rule_type: RuleKind | str, payload: dict) -> dict:
    try:
        config = parse_rule_config(rule_type, payload)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return config.model_dump(mode="json", exclude={"kind"})


def _validate_target(db: Session, payload: DataQualityRuleCreate) -> None:
    if db.get(DataTable, payload.table_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Table not found")
    if payload.rule_type in FIELD_SCOPED_KINDS and payload.field_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{payload.rule_type.value} rules require a field_id",
        )
    if payload.field_id is not None:
        field = db.get(DataField, payload.field_id)
        if field is None or field.table_id != payload.table_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Field does not belong to the target table",
            )


@router.get("/rules", response_model=list[DataQualityRuleRead])
def list_rules(
    table_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
) -> list[DataQualityRule]:
    statement = select(DataQualityRule).order_by(DataQualityRule.created_at, DataQualityRule.name)
    if table_id is not None:
        statement = statement.where(DataQualityRule.table_id == table_id)
    return list(db.execute(statement).scalars())


@router.post("/rules", response_model=DataQualityRuleRead, status_code=status.HTTP_201_CREATED)
def create_rule(payload: DataQualityRuleCreate, db: Session = Depends(get_db)) -> DataQualityRule:
    _validate_target(db, payload)
    rule = DataQualityRule(
        name=payload.name,
        owner=payload.owner,
        rule_type=payload.rule_type.value,
        rule_config=_validated_config(payload.rule_type, payload.rule_config),
        table_id=payload.table_id,
        field_id=payload.field_id,
        is_active=payload.is_active,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


@router.get("/rules/{rule_id}", response_model=DataQualityRuleRead)
def get_rule(rule_id: UUID, db: Session = Depends(get_db)) -> DataQualityRule:
    return _load_rule(rule_id, db)


@router.patch("/rules/{rule_id}", response_model=DataQualityRuleRead)
def update_rule(
    rule_id: UUID,
    payload: DataQualityRuleUpdate,
    db: Session = Depends(get_db),
) -> DataQualityRule:
    rule = _load_rule(rule_id, db)
    changes = payload.model_dump(exclude_unset=True)
    for key, value in changes.items():
        if value is None and key not in _NULLABLE_RULE_FIELDS:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"{key} cannot be null",
            )
    if "rule_config" in changes:
        changes["rule_config"] = _validated_config(rule.rule_type, changes["rule_config"])
    for key, value in changes.items():
        setattr(rule, key, value)
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


@router.post("/rules/{rule_id}/execute", response_model=RuleExecutionResultRead)
def execute_rule(
    rule_id: UUID,
    db: Session = Depends(get_db),
    connector: SourceConnector = Depends(get_source_connector),
) -> RuleExecutionResultRead:
    _load_rule(rule_id, db)
    result = RuleExecutor(db, connector).execute(rule_id)
    db.commit()
    return RuleExecutionResultRead.model_validate(result)


@router.post("/tables/{table_id}/execute", response_model=list[RuleExecutionResultRead])
def execute_table_rules(
    table_id: UUID,
    db: Session = Depends(get_db),
    orchestrator: BulkRuleOrchestrator = Depends(get_bulk_orchestrator),
) -> list[RuleExecutionResultRead]:
    if db.get(DataTable, table_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Table not found")
    results = orchestrator.execute_all_for_table(table_id)
    return [RuleExecutionResultRead.model_validate(result) for result in results]


@router.post("/execute-all", response_model=BulkExecutionSummaryRead)
def execute_all_rules(
    orchestrator: BulkRuleOrchestrator = Depends(get_bulk_orchestrator),
) -> BulkExecutionSummaryRead:
    return BulkExecutionSummaryRead.model_validate(orchestrator.execute_all_active())


@router.get("/score-cards", response_model=list[QualityScoreCardRead])
def list_score_cards(db: Session = Depends(get_db)) -> list[QualityScoreCardRead]:
    return [QualityScoreCardRead.model_validate(card) for card in build_score_cards(db)]


@router.get("/results", response_model=list[DataQualityResultRead])
def list_results(
    rule_id: Optional[UUID] = None,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[DataQualityResult]:
    statement = select(DataQualityResult).order_by(
        DataQualityResult.run_at.desc(), DataQualityResult.id.desc()
    )
    if rule_id is not None:
        statement = statement.where(DataQualityResult.rule_id == rule_id)
    return list(db.execute(statement.limit(limit)).scalars())
