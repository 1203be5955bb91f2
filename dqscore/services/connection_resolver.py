from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import parse_qsl, urlparse
from uuid import UUID

from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError

from dqscore.models import DataSource


class UnsupportedConnectionError(ValueError):
    """Raised when a data source cannot be converted into an SQLAlchemy URL."""


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Everything the connector needs to open a short-lived connection to one source."""

    source_id: UUID | None
    source_name: str
    url: URL

    @property
    def dialect(self) -> str:
        return self.url.get_backend_name()

    def render(self) -> str:
        return self.url.render_as_string(hide_password=True)


_SOURCE_TYPE_DRIVERS: dict[str, str] = {
    "postgresql": "postgresql+psycopg",
    "postgres": "postgresql+psycopg",
    "mysql": "mysql+pymysql",
    "sqlserver": "mssql+pyodbc",
    "mssql": "mssql+pyodbc",
    "snowflake": "snowflake",
    "sqlite": "sqlite",
}

_SUPPORTED_JDBC_DIALECTS: dict[str, str] = {
    "postgresql": "postgresql+psycopg",
    "mysql": "mysql+pymysql",
    "sqlserver": "mssql+pyodbc",
    "mssql": "mssql+pyodbc",
    "snowflake": "snowflake",
}


def resolve_connection_descriptor(source: DataSource) -> ConnectionDescriptor:
    url = resolve_sqlalchemy_url(source.source_type, source.connection_string)
    return ConnectionDescriptor(source_id=source.id, source_name=source.name, url=url)


def resolve_sqlalchemy_url(source_type: str, connection_string: str) -> URL:
    normalized_type = (source_type or "").strip().lower()
    if normalized_type not in _SOURCE_TYPE_DRIVERS:
        raise UnsupportedConnectionError(
            f"Unsupported source type '{source_type}'. Supported types: {', '.join(sorted(_SOURCE_TYPE_DRIVERS))}."
        )

    connection_string = (connection_string or "").strip()
    if not connection_string:
        raise UnsupportedConnectionError("Data source has no connection string.")

    if connection_string.startswith("jdbc:"):
        return _convert_jdbc_to_sqlalchemy_url(connection_string)

    try:
        url = make_url(connection_string)
    except ArgumentError as exc:
        raise UnsupportedConnectionError(f"Unable to parse connection string: {exc}") from exc

    if url.drivername in {"postgres", "postgresql"}:
        url = url.set(drivername=_SOURCE_TYPE_DRIVERS["postgresql"])
    elif "+" not in url.drivername and url.drivername in _SOURCE_TYPE_DRIVERS:
        url = url.set(drivername=_SOURCE_TYPE_DRIVERS[url.drivername])
    return url


def _convert_jdbc_to_sqlalchemy_url(connection_string: str) -> URL:
    raw_url = connection_string[len("jdbc:") :]
    parsed = urlparse(raw_url)

    if not parsed.scheme:
        raise UnsupportedConnectionError("JDBC connection string is missing a database dialect.")

    dialect = parsed.scheme.lower()
    if dialect not in _SUPPORTED_JDBC_DIALECTS:
        raise UnsupportedConnectionError(
            f"Unsupported JDBC dialect '{parsed.scheme}'. Supported dialects: {', '.join(sorted(_SUPPORTED_JDBC_DIALECTS))}."
        )

    drivername = _SUPPORTED_JDBC_DIALECTS[dialect]

    if not parsed.hostname:
        raise UnsupportedConnectionError("Connection string must include a hostname.")

    database = parsed.path.lstrip("/") if parsed.path else None
    if not database:
        raise UnsupportedConnectionError("Connection string must include a database name.")

    query_pairs = parse_qsl(parsed.query, keep_blank_values=True)
    query: dict[str, str] | None = dict(query_pairs) if query_pairs else None

    if drivername.startswith("mssql+pyodbc"):
        query = query or {}
        query.setdefault("TrustServerCertificate", "yes")
        query.setdefault("driver", "ODBC Driver 18 for SQL Server")

    return URL.create(
        drivername=drivername,
        username=parsed.username,
        password=parsed.password,
        host=parsed.hostname,
        port=parsed.port,
        database=database,
        query=query or {},
    )
