"""SQLAlchemy ORM models for PostgreSQL.

These are the single source of truth for the database schema.  Alembic reads
``Base.metadata`` to autogenerate migration scripts.

Column definitions, agent configs and HTTP request configs are stored as JSONB
in their camelCase wire shape (see ``models.sheet``); rows keep their sparse
``{column_id: value}`` map in ``data``.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# Timezone-aware timestamp type for all datetime columns.
TimestampTZ = DateTime(timezone=True)


class Base(DeclarativeBase):
    """Declarative base with naming convention for constraints."""

    pass


Base.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Vertical(Base):
    __tablename__ = "verticals"

    vertical_id: Mapped[str] = mapped_column(primary_key=True)
    name: Mapped[str]
    color: Mapped[str | None]
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now(), onupdate=func.now())

    sheets: Mapped[list[Sheet]] = relationship(
        back_populates="vertical",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Sheet.position",
    )


class Sheet(Base):
    __tablename__ = "sheets"
    __table_args__ = (Index("ix_sheets_vertical_id", "vertical_id"),)

    sheet_id: Mapped[str] = mapped_column(primary_key=True)
    vertical_id: Mapped[str] = mapped_column(
        ForeignKey("verticals.vertical_id", name="fk_sheets_vertical_id", ondelete="CASCADE"),
    )
    name: Mapped[str]
    description: Mapped[str | None] = mapped_column(Text)
    color: Mapped[str | None]
    position: Mapped[int] = mapped_column(Integer, server_default="0")
    columns: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")
    agents: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")
    http_requests: Mapped[list] = mapped_column(JSONB, nullable=False, server_default="[]")
    auto_update: Mapped[bool] = mapped_column(default=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now(), onupdate=func.now())

    vertical: Mapped[Vertical] = relationship(back_populates="sheets")


class Row(Base):
    __tablename__ = "rows"
    __table_args__ = (Index("ix_rows_sheet_id_position", "sheet_id", "position"),)

    row_id: Mapped[str] = mapped_column(primary_key=True)
    sheet_id: Mapped[str] = mapped_column(
        ForeignKey("sheets.sheet_id", name="fk_rows_sheet_id", ondelete="CASCADE"),
    )
    position: Mapped[int] = mapped_column(Integer)
    """Insertion order; deduplication's "oldest" is the lowest position."""

    data: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")
    created_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(TimestampTZ, server_default=func.now(), onupdate=func.now())
