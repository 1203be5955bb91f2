from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Annotated, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RuleKind(str, Enum):
    NON_NULL = "non_null"
    FORMAT = "format"
    RANGE = "range"
    UNIQUENESS = "uniqueness"
    CUSTOM = "custom"


FIELD_SCOPED_KINDS = frozenset({RuleKind.NON_NULL, RuleKind.FORMAT, RuleKind.RANGE, RuleKind.UNIQUENESS})


class NonNullRuleConfig(BaseModel):
    kind: Literal["non_null"] = "non_null"


class FormatRuleConfig(BaseModel):
    kind: Literal["format"] = "format"
    pattern: str = Field(..., min_length=1)
    description: Optional[str] = None


class RangeRuleConfig(BaseModel):
    kind: Literal["range"] = "range"
    min_value: Optional[Union[int, float]] = None
    max_value: Optional[Union[int, float]] = None
    include_min: bool = True
    include_max: bool = True

    @model_validator(mode="after")
    def _require_a_bound(self) -> "RangeRuleConfig":
        if self.min_value is None and self.max_value is None:
            raise ValueError("Range rule requires at least min_value or max_value")
        return self


class UniquenessRuleConfig(BaseModel):
    kind: Literal["uniqueness"] = "uniqueness"


class CustomRuleConfig(BaseModel):
    kind: Literal["custom"] = "custom"
    sql_query: str = Field(..., min_length=1)
    description: Optional[str] = None


RuleConfig = Annotated[
    Union[
        NonNullRuleConfig,
        FormatRuleConfig,
        RangeRuleConfig,
        UniquenessRuleConfig,
        CustomRuleConfig,
    ],
    Field(discriminator="kind"),
]


class DataQualityRuleBase(BaseModel):
    name: str = Field(..., max_length=200)
    owner: Optional[str] = Field(None, max_length=200)
    rule_type: RuleKind
    table_id: UUID
    field_id: Optional[UUID] = None
    rule_config: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True


class DataQualityRuleCreate(DataQualityRuleBase):
    pass


class DataQualityRuleUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=200)
    owner: Optional[str] = Field(None, max_length=200)
    rule_config: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class DataQualityRuleRead(DataQualityRuleBase):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    created_at: datetime
    updated_at: datetime


class RuleExecutionResultRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rule_id: UUID
    passed: bool
    violation_count: int = Field(..., ge=0)
    total_count: int = Field(..., ge=0)
    score: int = Field(..., ge=0, le=100)
    details: Dict[str, Any] = Field(default_factory=dict)
    execution_time_ms: int = Field(..., ge=0)
    executed_at: datetime


class DataQualityResultRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    rule_id: UUID
    passed: bool
    violation_count: int
    total_count: int
    score: int
    details: Optional[Dict[str, Any]] = None
    execution_time_ms: int
    run_at: datetime


class BulkExecutionSummaryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    executed_count: int
    errors: List[str] = Field(default_factory=list)


class QualityTrend(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"
    NEW = "new"


class QualityScoreCardRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    table_id: UUID
    table_name: str
    source_id: UUID
    source_name: str
    rule_count: int
    passed_rules: int
    failed_rules: int
    overall_score: int
    previous_score: Optional[int] = None
    last_executed: Optional[datetime] = None
    trend: QualityTrend
