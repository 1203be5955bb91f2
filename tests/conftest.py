import os
import sys
from pathlib import Path

from collections.abc import Callable, Generator
from dataclasses import dataclass, field

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import Session, sessionmaker

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

TEST_DATABASE_URL = "sqlite://"
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("RULE_RUN_CRON", "")

from dqscore.database import Base, get_db  # noqa: E402
from dqscore.main import app  # noqa: E402
from dqscore.models import DataField, DataSource, DataTable  # noqa: E402
from dqscore.services.query_analyzer import QueryHistory  # noqa: E402
from dqscore.services.source_connector import SourceConnector  # noqa: E402


def _create_testing_engine():
    return create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )


def _create_test_sessionmaker(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture(scope="session")
def engine():
    engine = _create_testing_engine()
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Session, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    connection = engine.connect()

    TestingSessionLocal = _create_test_sessionmaker(connection)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        connection.close()


@pytest.fixture()
def session_factory(engine, db_session) -> Callable[[], Session]:
    return _create_test_sessionmaker(engine)


@pytest.fixture()
def connector() -> SourceConnector:
    return SourceConnector(timeout_seconds=5.0, connect_timeout_seconds=2)


@dataclass
class SeededTable:
    source: DataSource
    table: DataTable
    fields: dict[str, DataField] = field(default_factory=dict)
    database_path: Path | None = None


@pytest.fixture()
def sqlite_source(db_session: Session, tmp_path: Path):
    """Create a SQLite source database on disk and register it with the application database."""

    created: dict[str, DataSource] = {}

    def _create(
        table_name: str,
        columns: dict[str, str],
        rows: list[dict[str, object]],
        *,
        source_name: str = "warehouse",
    ) -> SeededTable:
        database_path = tmp_path / f"{source_name}.db"
        source_engine = create_engine(f"sqlite:///{database_path}", future=True)
        column_sql = ", ".join(f'"{name}" {data_type}' for name, data_type in columns.items())
        try:
            with source_engine.begin() as conn:
                conn.execute(text(f'CREATE TABLE "{table_name}" ({column_sql})'))
                if rows:
                    names = list(columns)
                    placeholders = ", ".join(f":{name}" for name in names)
                    quoted = ", ".join(f'"{name}"' for name in names)
                    conn.execute(
                        text(f'INSERT INTO "{table_name}" ({quoted}) VALUES ({placeholders})'),
                        [{name: row.get(name) for name in names} for row in rows],
                    )
        finally:
            source_engine.dispose()

        source = created.get(source_name)
        if source is None:
            source = DataSource(
                name=source_name,
                source_type="sqlite",
                connection_string=f"sqlite:///{database_path}",
            )
            db_session.add(source)
            created[source_name] = source

        table = DataTable(source=source, name=table_name, full_name=table_name)
        db_session.add(table)
        fields = {
            name: DataField(table=table, name=name, data_type=data_type)
            for name, data_type in columns.items()
        }
        db_session.add_all(fields.values())
        db_session.commit()
        return SeededTable(source=source, table=table, fields=fields, database_path=database_path)

    return _create


class PrefixedTestClient(TestClient):
    api_prefix = "/api"

    def request(self, method: str, url: str, *args, **kwargs):  # type: ignore[override]
        if url.startswith("/"):
            url = f"{self.api_prefix}{url}"
        return super().request(method, url, *args, **kwargs)


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.state.query_history = QueryHistory(size=10)

    client = PrefixedTestClient(app)
    try:
        yield client
    finally:
        app.dependency_overrides.pop(get_db, None)
