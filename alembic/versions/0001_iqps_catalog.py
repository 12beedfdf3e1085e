"""iqps catalog

Revision ID: 0001_iqps_catalog
Revises:
Create Date: 2026-10-19

Creates the `iqps` paper table. On PostgreSQL also enables pg_trgm and adds
the trigram and full-text indexes used by search.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import context, op


revision = "0001_iqps_catalog"
down_revision = None
branch_labels = None
depends_on = None

FTS_DOCUMENT_SQL = "to_tsvector('english', course_code || ' ' || course_name)"


def _is_offline() -> bool:
    try:
        return bool(context.is_offline_mode())
    except Exception:
        return False


def _is_postgres() -> bool:
    return op.get_context().dialect.name == "postgresql"


def _insp():
    return sa.inspect(op.get_bind())


def _has_table(name: str) -> bool:
    return _insp().has_table(name)


def _get_indexes(table: str) -> set[str]:
    return {str(i.get("name") or "") for i in _insp().get_indexes(table)}


def _create_index(name: str, table: str, cols: list[str], **kw) -> None:
    if _is_offline():
        op.create_index(name, table, cols, **kw)
        return
    if name in _get_indexes(table):
        return
    op.create_index(name, table, cols, **kw)


def upgrade() -> None:
    if _is_postgres():
        op.execute("CREATE EXTENSION IF NOT EXISTS pg_trgm")

    if _is_offline() or not _has_table("iqps"):
        op.create_table(
            "iqps",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("course_code", sa.Text(), server_default="", nullable=False),
            sa.Column("course_name", sa.Text(), nullable=False),
            sa.Column("year", sa.Integer(), nullable=False),
            sa.Column("semester", sa.String(length=16), server_default="", nullable=False),
            sa.Column("exam", sa.String(length=16), server_default="", nullable=False),
            sa.Column("note", sa.Text(), server_default="", nullable=False),
            sa.Column("filelink", sa.Text(), nullable=False),
            sa.Column("from_library", sa.Boolean(), server_default=sa.text("false"), nullable=False),
            sa.Column("upload_timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.Column("approve_status", sa.Boolean(), server_default=sa.text("false"), nullable=False),
            sa.Column("approved_by", sa.String(length=255), nullable=True),
            sa.Column("is_deleted", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        )

    _create_index("ix_iqps_upload_timestamp", "iqps", ["upload_timestamp"])
    _create_index("ix_iqps_course_code", "iqps", ["course_code"])
    _create_index("ix_iqps_status", "iqps", ["approve_status", "is_deleted"])
    _create_index(
        "uq_iqps_live_filelink",
        "iqps",
        ["filelink"],
        unique=True,
        postgresql_where=sa.text("is_deleted = false"),
        sqlite_where=sa.text("is_deleted = 0"),
    )

    if _is_postgres():
        op.execute(
            "CREATE INDEX IF NOT EXISTS ix_iqps_course_name_trgm "
            "ON iqps USING gin (course_name gin_trgm_ops)"
        )
        op.execute(
            f"CREATE INDEX IF NOT EXISTS ix_iqps_fts_course_details ON iqps USING gin (({FTS_DOCUMENT_SQL}))"
        )


def downgrade() -> None:
    if _is_postgres():
        op.execute("DROP INDEX IF EXISTS ix_iqps_fts_course_details")
        op.execute("DROP INDEX IF EXISTS ix_iqps_course_name_trgm")
    op.drop_table("iqps")
