"""Short-lived connections to registered external data sources.

Every execution opens its own engine, runs its statements on a single
connection and disposes the engine on exit. Nothing is pooled or shared
between executions.
"""

from __future__ import annotations

import json
import logging
import math
import re
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time
from decimal import Decimal
from typing import Any, Callable, Iterator, Mapping, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from dqscore.services.connection_resolver import ConnectionDescriptor

logger = logging.getLogger(__name__)

EngineFactory = Callable[..., Engine]


class SourceNotFoundError(LookupError):
    """Raised when a data source id does not resolve to a registered source."""


class ConnectorError(Exception):
    """Raised when a query against an external source fails (network, auth, SQL)."""


class ConnectorTimeoutError(ConnectorError):
    """Raised when a source query exceeds the configured time bound."""


_TIMEOUT_MARKERS = (
    "statement timeout",
    "canceling statement",
    "query timeout",
    "timeout expired",
    "max_execution_time",
    "interrupted",
    "warehouse timeout",
)


@dataclass
class PlanNode:
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
    children: list["PlanNode"] = field(default_factory=list)

    def walk(self) -> Iterator["PlanNode"]:
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass(frozen=True)
class QueryRows:
    columns: list[str]
    rows: list[dict[str, Any]]

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def first(self) -> dict[str, Any] | None:
        return self.rows[0] if self.rows else None


class SourceSession:
    """A single open connection to a source. Only valid inside ``SourceConnector.open``."""

    def __init__(self, connection: Connection, descriptor: ConnectionDescriptor) -> None:
        self._connection = connection
        self._descriptor = descriptor

    @property
    def dialect(self) -> str:
        return self._descriptor.dialect

    def query(self, sql: str, params: Mapping[str, Any] | None = None) -> QueryRows:
        try:
            result = self._connection.execute(text(sql), dict(params or {}))
            if not result.returns_rows:
                return QueryRows(columns=[], rows=[])
            columns = list(result.keys())
            rows = [
                {key: _serialize_value(value) for key, value in mapped.items()}
                for mapped in result.mappings()
            ]
        except SQLAlchemyError as exc:
            raise _translate_error(exc, self._descriptor) from exc
        return QueryRows(columns=columns, rows=rows)

    def scalar_count(self, sql: str, params: Mapping[str, Any] | None = None) -> int:
        rows = self.query(sql, params)
        first = rows.first()
        if first is None:
            raise ConnectorError("Count query returned no rows")
        value = next(iter(first.values()))
        return int(value or 0)

    def explain(self, sql: str) -> PlanNode:
        dialect = self.dialect
        if dialect == "postgresql":
            return self._explain_postgres(sql)
        if dialect == "sqlite":
            return self._explain_sqlite(sql)
        raise ConnectorError(f"Execution plans are not supported for {dialect} sources")

    def _explain_postgres(self, sql: str) -> PlanNode:
        try:
            with self._connection.begin_nested():
                raw = self._connection.execute(
                    text(f"EXPLAIN (ANALYZE, BUFFERS, FORMAT JSON) {sql}")
                ).scalar()
        except SQLAlchemyError as exc:
            raise _translate_error(exc, self._descriptor) from exc
        payload = json.loads(raw) if isinstance(raw, str) else raw
        try:
            plan = payload[0]["Plan"]
        except (IndexError, KeyError, TypeError) as exc:
            raise ConnectorError("Unexpected EXPLAIN output from source") from exc
        return parse_postgres_plan(plan)

    def _explain_sqlite(self, sql: str) -> PlanNode:
        rows = self.query(f"EXPLAIN QUERY PLAN {sql}")
        return parse_sqlite_plan(rows.rows)


class SourceConnector:
    """Open scoped connections to external sources and run read queries on them."""

    def __init__(
        self,
        *,
        timeout_seconds: float = 30.0,
        connect_timeout_seconds: int = 10,
        engine_factory: EngineFactory = create_engine,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._connect_timeout_seconds = connect_timeout_seconds
        self._engine_factory = engine_factory

    @contextmanager
    def open(self, descriptor: ConnectionDescriptor) -> Iterator[SourceSession]:
        engine = self._create_engine(descriptor)
        try:
            try:
                connection = engine.connect()
            except SQLAlchemyError as exc:
                raise _translate_error(exc, descriptor) from exc
            with connection:
                if descriptor.url.drivername.startswith("mssql+pyodbc"):
                    # The pyodbc connect timeout covers login only.
                    connection.connection.dbapi_connection.timeout = _whole_seconds(self._timeout_seconds)
                yield SourceSession(connection, descriptor)
        finally:
            engine.dispose()

    def query(
        self,
        descriptor: ConnectionDescriptor,
        sql: str,
        params: Mapping[str, Any] | None = None,
    ) -> QueryRows:
        with self.open(descriptor) as session:
            return session.query(sql, params)

    def explain(self, descriptor: ConnectionDescriptor, sql: str) -> PlanNode:
        with self.open(descriptor) as session:
            return session.explain(sql)

    def _create_engine(self, descriptor: ConnectionDescriptor) -> Engine:
        url = descriptor.url
        timeout_ms = int(self._timeout_seconds * 1000)
        connect_args: dict[str, Any] = {}
        dialect = descriptor.dialect
        if dialect == "postgresql":
            connect_args["connect_timeout"] = self._connect_timeout_seconds
            connect_args["options"] = f"-c statement_timeout={timeout_ms}"
        elif dialect == "mysql":
            connect_args["connect_timeout"] = self._connect_timeout_seconds
            connect_args["read_timeout"] = max(1, int(self._timeout_seconds))
        elif url.drivername.startswith("mssql+pyodbc"):
            connect_args["timeout"] = self._connect_timeout_seconds
        elif dialect == "snowflake":
            connect_args["login_timeout"] = self._connect_timeout_seconds
            connect_args["session_parameters"] = {
                "STATEMENT_TIMEOUT_IN_SECONDS": _whole_seconds(self._timeout_seconds),
            }
        elif dialect == "sqlite":
            connect_args["check_same_thread"] = False

        try:
            engine = self._engine_factory(url, pool_pre_ping=True, connect_args=connect_args)
        except (SQLAlchemyError, ModuleNotFoundError) as exc:
            raise ConnectorError(f"Unable to create engine for {descriptor.render()}: {exc}") from exc

        if dialect == "sqlite":
            _install_sqlite_hooks(engine, self._timeout_seconds)
        return engine


def _translate_error(exc: SQLAlchemyError, descriptor: ConnectionDescriptor) -> ConnectorError:
    message = str(getattr(exc, "orig", None) or exc)
    lowered = message.lower()
    if any(marker in lowered for marker in _TIMEOUT_MARKERS):
        logger.warning("Query against %s timed out: %s", descriptor.source_name, message)
        return ConnectorTimeoutError(f"Query against '{descriptor.source_name}' timed out: {message}")
    return ConnectorError(message)


def _whole_seconds(seconds: float) -> int:
    return max(1, math.ceil(seconds))


def _install_sqlite_hooks(engine: Engine, timeout_seconds: float) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.create_function("REGEXP", 2, _sqlite_regexp, deterministic=True)

        def _deadline_exceeded() -> int:
            deadline = connection_record.info.get("dq_deadline")
            return 1 if deadline is not None and time.monotonic() > deadline else 0

        dbapi_connection.set_progress_handler(_deadline_exceeded, 1000)

    @event.listens_for(engine, "before_cursor_execute")
    def _arm_deadline(conn, cursor, statement, parameters, context, executemany):
        conn.info["dq_deadline"] = time.monotonic() + timeout_seconds


def _sqlite_regexp(pattern: str, value: Any) -> bool | None:
    if value is None:
        return None
    return re.search(pattern, str(value)) is not None


def _serialize_value(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (datetime, date, dt_time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError:
            return value.hex()
    return value


def parse_postgres_plan(plan: Mapping[str, Any]) -> PlanNode:
    return PlanNode(
        node_type=plan.get("Node Type") or "Unknown",
        operation=plan.get("Operation") or plan.get("Node Type") or "Unknown",
        cost=float(plan.get("Total Cost") or 0),
        rows=int(plan.get("Plan Rows") or 0),
        width=int(plan.get("Plan Width") or 0),
        actual_time=float(plan.get("Actual Total Time") or 0),
        actual_rows=int(plan.get("Actual Rows") or 0),
        actual_loops=int(plan.get("Actual Loops") or 1),
        index_name=plan.get("Index Name"),
        filter=plan.get("Filter"),
        join_type=plan.get("Join Type"),
        children=[parse_postgres_plan(child) for child in plan.get("Plans") or []],
    )


_SQLITE_INDEX_PATTERN = re.compile(r"USING (?:COVERING )?INDEX (\S+)", re.IGNORECASE)


def parse_sqlite_plan(rows: list[dict[str, Any]]) -> PlanNode:
    """Build a plan tree from ``EXPLAIN QUERY PLAN`` rows (id, parent, notused, detail)."""

    root = PlanNode(node_type="Query Plan", operation="SQLite query plan")
    nodes: dict[int, PlanNode] = {}
    for row in rows:
        detail = str(row.get("detail") or "")
        node = _sqlite_plan_node(detail)
        nodes[int(row.get("id") or 0)] = node
        parent = nodes.get(int(row.get("parent") or 0), root)
        parent.children.append(node)
    return root


def _sqlite_plan_node(detail: str) -> PlanNode:
    upper = detail.upper()
    match = _SQLITE_INDEX_PATTERN.search(detail)
    index_name = match.group(1) if match else None
    if upper.startswith("SEARCH"):
        if index_name is None and "PRIMARY KEY" in upper:
            index_name = "INTEGER PRIMARY KEY"
        node_type = "Index Scan"
    elif upper.startswith("SCAN"):
        node_type = "Index Scan" if index_name else "Seq Scan"
    elif upper.startswith("USE TEMP B-TREE"):
        node_type = "Sort"
    elif "SUBQUERY" in upper:
        node_type = "Subquery Scan"
    elif upper.startswith("MATERIALIZE"):
        node_type = "Materialize"
    elif upper.startswith("COMPOUND"):
        node_type = "Append"
    else:
        node_type = "Unknown"
    return PlanNode(node_type=node_type, operation=detail, index_name=index_name)
