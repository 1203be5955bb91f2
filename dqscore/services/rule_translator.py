"""Turn declarative data-quality rules into SQL for a source dialect.

Field-scoped kinds become a pair of count queries (total rows considered and
violating rows). Custom rules are passed through verbatim and must return
``total_count``, ``violation_count`` and ``passed`` in their first row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Union

from pydantic import TypeAdapter, ValidationError

from dqscore.models import DataQualityRule
from dqscore.schemas.data_quality import (
    FIELD_SCOPED_KINDS,
    CustomRuleConfig,
    FormatRuleConfig,
    NonNullRuleConfig,
    RangeRuleConfig,
    RuleConfig,
    RuleKind,
    UniquenessRuleConfig,
)

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised when a rule cannot be translated because its definition is incomplete or invalid."""


@dataclass(frozen=True)
class CountQueries:
    total_query: str
    violation_query: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CombinedQuery:
    query: str


Translation = Union[CountQueries, CombinedQuery]


@dataclass(frozen=True)
class RuleTarget:
    dialect: str
    table_name: str
    table_ref: str
    field_name: str | None = None
    column_ref: str | None = None

    def require_column(self, kind: RuleKind) -> str:
        if self.column_ref is None:
            raise ConfigurationError(f"{kind.value} rule requires a target field")
        return self.column_ref


_RULE_CONFIG_ADAPTER: TypeAdapter[RuleConfig] = TypeAdapter(RuleConfig)

_IDENTIFIER_QUOTES: dict[str, tuple[str, str]] = {
    "mysql": ("`", "`"),
    "mssql": ("[", "]"),
}

_REGEX_MISMATCH_TEMPLATES: dict[str, str] = {
    "postgresql": "CAST({column} AS TEXT) !~ :pattern",
    "sqlite": "NOT ({column} REGEXP :pattern)",
    "mysql": "NOT ({column} REGEXP :pattern)",
    "snowflake": "NOT REGEXP_LIKE({column}, :pattern)",
}


def resolve_rule_kind(rule_type: str | RuleKind) -> RuleKind:
    try:
        return RuleKind(rule_type)
    except ValueError as exc:
        raise ConfigurationError(f"Unsupported rule type: {rule_type}") from exc


def parse_rule_config(rule_type: str | RuleKind, payload: Mapping[str, Any] | None) -> RuleConfig:
    """Validate a stored config payload against the typed model for the rule kind."""

    kind = resolve_rule_kind(rule_type)
    data = dict(payload or {})
    data["kind"] = kind.value
    try:
        return _RULE_CONFIG_ADAPTER.validate_python(data)
    except ValidationError as exc:
        messages = "; ".join(error["msg"] for error in exc.errors())
        raise ConfigurationError(f"Invalid {kind.value} rule configuration: {messages}") from exc


def quote_identifier(name: str, dialect: str) -> str:
    opening, closing = _IDENTIFIER_QUOTES.get(dialect, ('"', '"'))
    return f"{opening}{name.replace(closing, closing * 2)}{closing}"


def build_rule_target(rule: DataQualityRule, dialect: str) -> RuleTarget:
    table = rule.table
    if table is None:
        raise ConfigurationError(f"Rule '{rule.name}' has no target table")

    schema_name = table.schema_name
    table_name = table.name
    if not table_name and table.full_name:
        schema_name, _, table_name = table.full_name.rpartition(".")
    parts = [part for part in (schema_name, table_name) if part]
    table_ref = ".".join(quote_identifier(part, dialect) for part in parts)

    field_name = rule.field.name if rule.field is not None else None
    column_ref = quote_identifier(field_name, dialect) if field_name else None
    return RuleTarget(
        dialect=dialect,
        table_name=table.full_name or ".".join(parts),
        table_ref=table_ref,
        field_name=field_name,
        column_ref=column_ref,
    )


def translate(rule: DataQualityRule, dialect: str) -> Translation:
    kind = resolve_rule_kind(rule.rule_type)
    config = parse_rule_config(kind, rule.rule_config)
    target = build_rule_target(rule, dialect)
    if kind in FIELD_SCOPED_KINDS:
        target.require_column(kind)
    translation = _TRANSLATORS[kind](config, target)
    logger.debug("Translated %s rule '%s' for %s", kind.value, rule.name, dialect)
    return translation


def build_details(
    rule: DataQualityRule,
    target: RuleTarget,
    total_count: int,
    violation_count: int,
    row: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    kind = resolve_rule_kind(rule.rule_type)
    config = parse_rule_config(kind, rule.rule_config)
    return _DETAIL_BUILDERS[kind](config, target, total_count, violation_count, row)


def _not_null_filter(column: str) -> str:
    return f"{column} IS NOT NULL"


def _translate_non_null(config: NonNullRuleConfig, target: RuleTarget) -> CountQueries:
    column = target.require_column(RuleKind.NON_NULL)
    return CountQueries(
        total_query=f"SELECT COUNT(*) AS total FROM {target.table_ref}",
        violation_query=f"SELECT COUNT(*) AS violations FROM {target.table_ref} WHERE {column} IS NULL",
    )


def _translate_format(config: FormatRuleConfig, target: RuleTarget) -> CountQueries:
    column = target.require_column(RuleKind.FORMAT)
    template = _REGEX_MISMATCH_TEMPLATES.get(target.dialect)
    if template is None:
        raise ConfigurationError(f"Format rules are not supported for {target.dialect} sources")
    mismatch = template.format(column=column)
    return CountQueries(
        total_query=f"SELECT COUNT(*) AS total FROM {target.table_ref} WHERE {_not_null_filter(column)}",
        violation_query=(
            f"SELECT COUNT(*) AS violations FROM {target.table_ref} "
            f"WHERE {_not_null_filter(column)} AND {mismatch}"
        ),
        params={"pattern": config.pattern},
    )


def _translate_range(config: RangeRuleConfig, target: RuleTarget) -> CountQueries:
    column = target.require_column(RuleKind.RANGE)
    conditions: list[str] = []
    params: dict[str, Any] = {}
    if config.min_value is not None:
        operator = ">=" if config.include_min else ">"
        conditions.append(f"{column} {operator} :min_value")
        params["min_value"] = config.min_value
    if config.max_value is not None:
        operator = "<=" if config.include_max else "<"
        conditions.append(f"{column} {operator} :max_value")
        params["max_value"] = config.max_value
    if not conditions:
        raise ConfigurationError("Range rule requires at least min_value or max_value")

    in_range = " AND ".join(conditions)
    return CountQueries(
        total_query=f"SELECT COUNT(*) AS total FROM {target.table_ref} WHERE {_not_null_filter(column)}",
        violation_query=(
            f"SELECT COUNT(*) AS violations FROM {target.table_ref} "
            f"WHERE {_not_null_filter(column)} AND NOT ({in_range})"
        ),
        params=params,
    )


def _translate_uniqueness(config: UniquenessRuleConfig, target: RuleTarget) -> CountQueries:
    column = target.require_column(RuleKind.UNIQUENESS)
    return CountQueries(
        total_query=f"SELECT COUNT(*) AS total FROM {target.table_ref} WHERE {_not_null_filter(column)}",
        violation_query=(
            f"SELECT COUNT(*) - COUNT(DISTINCT {column}) AS violations "
            f"FROM {target.table_ref} WHERE {_not_null_filter(column)}"
        ),
    )


def _translate_custom(config: CustomRuleConfig, target: RuleTarget) -> CombinedQuery:
    return CombinedQuery(query=config.sql_query)


def _non_null_details(config, target, total, violations, row):
    return {
        "field_name": target.field_name,
        "table_name": target.table_name,
        "null_count": violations,
        "non_null_count": total - violations,
    }


def _format_details(config, target, total, violations, row):
    return {
        "field_name": target.field_name,
        "table_name": target.table_name,
        "pattern": config.pattern,
        "matching_count": total - violations,
        "violating_count": violations,
    }


def _range_details(config, target, total, violations, row):
    return {
        "field_name": target.field_name,
        "table_name": target.table_name,
        "min_value": config.min_value,
        "max_value": config.max_value,
        "include_min": config.include_min,
        "include_max": config.include_max,
        "in_range_count": total - violations,
        "out_of_range_count": violations,
    }


def _uniqueness_details(config, target, total, violations, row):
    unique_values = total - violations
    return {
        "field_name": target.field_name,
        "table_name": target.table_name,
        "unique_values": unique_values,
        "duplicate_values": violations,
        "uniqueness_ratio": unique_values / total if total > 0 else 1.0,
    }


def _custom_details(config, target, total, violations, row):
    return {
        "table_name": target.table_name,
        "custom_query": config.sql_query,
        "query_result": dict(row or {}),
    }


_TRANSLATORS: dict[RuleKind, Callable[[Any, RuleTarget], Translation]] = {
    RuleKind.NON_NULL: _translate_non_null,
    RuleKind.FORMAT: _translate_format,
    RuleKind.RANGE: _translate_range,
    RuleKind.UNIQUENESS: _translate_uniqueness,
    RuleKind.CUSTOM: _translate_custom,
}

_DETAIL_BUILDERS: dict[RuleKind, Callable[..., dict[str, Any]]] = {
    RuleKind.NON_NULL: _non_null_details,
    RuleKind.FORMAT: _format_details,
    RuleKind.RANGE: _range_details,
    RuleKind.UNIQUENESS: _uniqueness_details,
    RuleKind.CUSTOM: _custom_details,
}

_missing_kinds = (set(RuleKind) - set(_TRANSLATORS)) | (set(RuleKind) - set(_DETAIL_BUILDERS))
if _missing_kinds:
    raise RuntimeError(
        "Rule kinds without a translator: " + ", ".join(sorted(kind.value for kind in _missing_kinds))
    )
