from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from dqscore.database import get_db
from dqscore.routers.data_quality import get_source_connector
from dqscore.schemas.query_performance import (
    PerformanceStatsRead,
    QueryAnalyzeRequest,
    QueryExecutionResultRead,
    QueryMetricsRead,
)
from dqscore.services.query_analyzer import QueryAnalyzer, QueryHistory
from dqscore.services.source_connector import SourceConnector

router = APIRouter(prefix="/query", tags=["Query Studio"])


def get_query_history(request: Request) -> QueryHistory:
    return request.app.state.query_history


@router.post("/analyze", response_model=QueryExecutionResultRead)
def analyze_query(
    payload: QueryAnalyzeRequest,
    db: Session = Depends(get_db),
    connector: SourceConnector = Depends(get_source_connector),
    history: QueryHistory = Depends(get_query_history),
) -> QueryExecutionResultRead:
    analyzer = QueryAnalyzer(db, connector, history)
    result = analyzer.analyze(payload.sql, payload.source_id, explain=payload.options.explain)
    db.commit()
    return QueryExecutionResultRead.model_validate(result)


@router.get("/history/{query_id}", response_model=list[QueryMetricsRead])
def get_query_history_entries(
    query_id: str,
    history: QueryHistory = Depends(get_query_history),
) -> list[QueryMetricsRead]:
    return [QueryMetricsRead.model_validate(metrics) for metrics in history.get(query_id)]


@router.get("/performance-stats", response_model=PerformanceStatsRead)
def get_performance_stats(
    history: QueryHistory = Depends(get_query_history),
) -> PerformanceStatsRead:
    stats = history.performance_stats()
    return PerformanceStatsRead(
        total_queries=stats.total_queries,
        average_execution_time_ms=stats.average_execution_time_ms,
        slowest_queries=stats.slowest_queries,
        most_frequent_suggestions=stats.most_frequent_suggestions,
    )
