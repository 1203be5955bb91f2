from dqscore.models.data_quality import (
    RULE_KIND_VALUES,
    ActivityLog,
    DataQualityResult,
    DataQualityRule,
)
from dqscore.models.entities import DataField, DataSource, DataTable, TimestampMixin, utcnow

__all__ = [
    "RULE_KIND_VALUES",
    "ActivityLog",
    "DataField",
    "DataQualityResult",
    "DataQualityRule",
    "DataSource",
    "DataTable",
    "TimestampMixin",
    "utcnow",
]
