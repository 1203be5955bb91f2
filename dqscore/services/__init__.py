from dqscore.services.bulk_orchestrator import BulkExecutionSummary, BulkRuleOrchestrator
from dqscore.services.performance_grader import QueryMetrics, grade
from dqscore.services.query_analyzer import QueryAnalyzer, QueryHistory, QueryNotAllowedError
from dqscore.services.rule_executor import RuleExecutionResult, RuleExecutor
from dqscore.services.rule_translator import ConfigurationError, translate
from dqscore.services.score_aggregator import QualityScoreCard, build_score_cards
from dqscore.services.source_connector import (
    ConnectorError,
    ConnectorTimeoutError,
    SourceConnector,
    SourceNotFoundError,
)

__all__ = [
	"BulkExecutionSummary",
	"BulkRuleOrchestrator",
	"ConfigurationError",
	"ConnectorError",
	"ConnectorTimeoutError",
	"QualityScoreCard",
	"QueryAnalyzer",
	"QueryHistory",
	"QueryMetrics",
	"QueryNotAllowedError",
	"RuleExecutionResult",
	"RuleExecutor",
	"SourceConnector",
	"SourceNotFoundError",
	"build_score_cards",
	"grade",
	"translate",
]
