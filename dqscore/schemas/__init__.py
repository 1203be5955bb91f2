from dqscore.schemas.activity import ActivityLogRead
from dqscore.schemas.data_quality import (
    FIELD_SCOPED_KINDS,
    BulkExecutionSummaryRead,
    CustomRuleConfig,
    DataQualityResultRead,
    DataQualityRuleCreate,
    DataQualityRuleRead,
    DataQualityRuleUpdate,
    FormatRuleConfig,
    NonNullRuleConfig,
    QualityScoreCardRead,
    QualityTrend,
    RangeRuleConfig,
    RuleConfig,
    RuleExecutionResultRead,
    RuleKind,
    UniquenessRuleConfig,
)
from dqscore.schemas.query_performance import (
    PerformanceGrade,
    PerformanceStatsRead,
    PlanNodeRead,
    QueryAnalyzeOptions,
    QueryAnalyzeRequest,
    QueryExecutionResultRead,
    QueryMetricsRead,
    SlowQueryEntry,
    SuggestionFrequency,
)

__all__ = [
    "ActivityLogRead",
    "BulkExecutionSummaryRead",
    "CustomRuleConfig",
    "DataQualityResultRead",
    "DataQualityRuleCreate",
    "DataQualityRuleRead",
    "DataQualityRuleUpdate",
    "FIELD_SCOPED_KINDS",
    "FormatRuleConfig",
    "NonNullRuleConfig",
    "PerformanceGrade",
    "PerformanceStatsRead",
    "PlanNodeRead",
    "QualityScoreCardRead",
    "QualityTrend",
    "QueryAnalyzeOptions",
    "QueryAnalyzeRequest",
    "QueryExecutionResultRead",
    "QueryMetricsRead",
    "RangeRuleConfig",
    "RuleConfig",
    "RuleExecutionResultRead",
    "RuleKind",
    "SlowQueryEntry",
    "SuggestionFrequency",
    "UniquenessRuleConfig",
]
