from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PerformanceGrade(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    F = "F"


class PlanNodeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    node_type: str
    operation: str
    cost: float = 0.0
    rows: int = 0
    width: int = 0
    actual_time: float = 0.0
    actual_rows: int = 0
    actual_loops: int = 1
    index_name: Optional[str] = None
    filter: Optional[str] = None
    join_type: Optional[str] = None
    children: List["PlanNodeRead"] = Field(default_factory=list)


class QueryMetricsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    query_id: str
    execution_time_ms: int
    rows_returned: int
    rows_scanned: int
    memory_usage_mb: float
    cpu_time_ms: float
    io_operations: int
    cache_hits: int
    indexes_used: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class QueryAnalyzeOptions(BaseModel):
    explain: bool = False


class QueryAnalyzeRequest(BaseModel):
    sql: str = Field(..., min_length=1)
    source_id: UUID
    options: QueryAnalyzeOptions = Field(default_factory=QueryAnalyzeOptions)


class QueryExecutionResultRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    success: bool
    query_id: str
    columns: List[str] = Field(default_factory=list)
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None
    metrics: QueryMetricsRead
    execution_plan: Optional[PlanNodeRead] = None
    performance_grade: PerformanceGrade
    optimization_suggestions: List[str] = Field(default_factory=list)


class SlowQueryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    query_id: str
    execution_time_ms: int


class SuggestionFrequency(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    suggestion: str
    count: int


class PerformanceStatsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_queries: int
    average_execution_time_ms: int
    slowest_queries: List[SlowQueryEntry] = Field(default_factory=list)
    most_frequent_suggestions: List[SuggestionFrequency] = Field(default_factory=list)
