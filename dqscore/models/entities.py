import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dqscore.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class DataSource(Base, TimestampMixin):
    """A registered external relational source. Maintained by the connection manager."""

    __tablename__ = "data_sources"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    source_type: Mapped[str] = mapped_column(String(50), nullable=False, default="postgresql")
    connection_string: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_scan_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    tables: Mapped[list["DataTable"]] = relationship(
        "DataTable",
        back_populates="source",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class DataTable(Base, TimestampMixin):
    __tablename__ = "data_tables"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    source_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("data_sources.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    schema_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    full_name: Mapped[str] = mapped_column(String(511), nullable=False)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    source: Mapped[DataSource] = relationship("DataSource", back_populates="tables")
    fields: Mapped[list["DataField"]] = relationship(
        "DataField",
        back_populates="table",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    rules: Mapped[list["DataQualityRule"]] = relationship(
        "DataQualityRule",
        back_populates="table",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class DataField(Base):
    __tablename__ = "data_fields"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    table_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("data_tables.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    data_type: Mapped[str] = mapped_column(String(100), nullable=False, default="text")
    is_nullable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    table: Mapped[DataTable] = relationship("DataTable", back_populates="fields")
