"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "verticals",
        sa.Column("vertical_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("color", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("vertical_id", name=op.f("pk_verticals")),
    )
    op.create_table(
        "sheets",
        sa.Column("sheet_id", sa.String(), nullable=False),
        sa.Column("vertical_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("color", sa.String(), nullable=True),
        sa.Column("position", sa.Integer(), server_default="0", nullable=False),
        sa.Column("columns", postgresql.JSONB(astext_type=sa.Text()), server_default="[]", nullable=False),
        sa.Column("agents", postgresql.JSONB(astext_type=sa.Text()), server_default="[]", nullable=False),
        sa.Column("http_requests", postgresql.JSONB(astext_type=sa.Text()), server_default="[]", nullable=False),
        sa.Column("auto_update", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(
            ["vertical_id"],
            ["verticals.vertical_id"],
            name="fk_sheets_vertical_id",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("sheet_id", name=op.f("pk_sheets")),
    )
    op.create_index("ix_sheets_vertical_id", "sheets", ["vertical_id"], unique=False)
    op.create_table(
        "rows",
        sa.Column("row_id", sa.String(), nullable=False),
        sa.Column("sheet_id", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text()), server_default="{}", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(
            ["sheet_id"],
            ["sheets.sheet_id"],
            name="fk_rows_sheet_id",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("row_id", name=op.f("pk_rows")),
    )
    op.create_index("ix_rows_sheet_id_position", "rows", ["sheet_id", "position"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_rows_sheet_id_position", table_name="rows")
    op.drop_table("rows")
    op.drop_index("ix_sheets_vertical_id", table_name="sheets")
    op.drop_table("sheets")
    op.drop_table("verticals")
