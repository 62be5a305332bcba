"""Initial schema: libraries, folders, files, series

Revision ID: 0001
Revises: None
Create Date: 2026-10-19 00:00:00
"""
from __future__ import annotations

from typing import Optional

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "0001"
down_revision: Optional[str] = None
branch_labels: Optional[str] = None
depends_on: Optional[str] = None

FILE_STATUS = sa.Enum("PENDING", "INDEXED", "ORPHANED", "QUARANTINED", name="filestatus")
SERIES_STATUS = sa.Enum("ACTIVE", "ARCHIVED", name="seriesstatus")


def _table_exists(name: str) -> bool:
    conn = op.get_bind()
    result = conn.execute(
        sa.text("SELECT 1 FROM sqlite_master WHERE type='table' AND name=:n"),
        {"n": name},
    )
    return result.fetchone() is not None


def upgrade() -> None:
    # Guarded so that a database created by init_db() can be upgraded too
    if not _table_exists("libraries"):
        op.create_table(
            "libraries",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("root_path", sa.String(), nullable=False),
            sa.Column("folders_backfilled", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_libraries_root_path", "libraries", ["root_path"], unique=True)

    if not _table_exists("folders"):
        op.create_table(
            "folders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("library_id", sa.Integer(), sa.ForeignKey("libraries.id"), nullable=False),
            sa.Column("path", sa.String(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("depth", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("parent_id", sa.Integer(), sa.ForeignKey("folders.id"), nullable=True),
            sa.Column("file_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_files", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("child_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_modified", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("library_id", "path", name="uq_folders_library_path"),
        )
        op.create_index("ix_folders_library_id", "folders", ["library_id"])
        op.create_index("ix_folders_path", "folders", ["path"])
        op.create_index("ix_folders_depth", "folders", ["depth"])
        op.create_index("ix_folders_parent_id", "folders", ["parent_id"])

    if not _table_exists("series"):
        op.create_table(
            "series",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("aliases", sa.String(), nullable=True),
            sa.Column("start_year", sa.Integer(), nullable=True),
            sa.Column("end_year", sa.Integer(), nullable=True),
            sa.Column("publisher", sa.String(), nullable=True),
            sa.Column("comicvine_id", sa.String(), nullable=True),
            sa.Column("metron_id", sa.String(), nullable=True),
            sa.Column("anilist_id", sa.String(), nullable=True),
            sa.Column("mal_id", sa.String(), nullable=True),
            sa.Column("primary_folder", sa.String(), nullable=True),
            sa.Column("cover_file_id", sa.Integer(), nullable=True),
            sa.Column("status", SERIES_STATUS, nullable=False, server_default="ACTIVE"),
            sa.Column("archived_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_series_name", "series", ["name"])
        op.create_index("ix_series_status", "series", ["status"])

    if not _table_exists("files"):
        op.create_table(
            "files",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("library_id", sa.Integer(), sa.ForeignKey("libraries.id"), nullable=False),
            sa.Column("path", sa.String(), nullable=False),
            sa.Column("relative_path", sa.String(), nullable=False),
            sa.Column("filename", sa.String(), nullable=False),
            sa.Column("extension", sa.String(), nullable=False),
            sa.Column("size", sa.Integer(), nullable=False),
            sa.Column("modified_at", sa.DateTime(), nullable=False),
            sa.Column("fingerprint", sa.String(), nullable=True),
            sa.Column("status", FILE_STATUS, nullable=False, server_default="PENDING"),
            sa.Column("folder_id", sa.Integer(), sa.ForeignKey("folders.id"), nullable=True),
            sa.Column("series_id", sa.Integer(), sa.ForeignKey("series.id"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("library_id", "relative_path", name="uq_files_library_path"),
        )
        for column in ("library_id", "relative_path", "fingerprint", "status", "folder_id", "series_id"):
            op.create_index(f"ix_files_{column}", "files", [column])

    if not _table_exists("file_metadata"):
        op.create_table(
            "file_metadata",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("file_id", sa.Integer(), sa.ForeignKey("files.id"), unique=True, nullable=False),
            sa.Column("series", sa.String(), nullable=True),
            sa.Column("title", sa.String(), nullable=True),
            sa.Column("issue_number", sa.String(), nullable=True),
            sa.Column("issue_sort", sa.Float(), nullable=True),
            sa.Column("volume", sa.Integer(), nullable=True),
            sa.Column("publisher", sa.String(), nullable=True),
            sa.Column("year", sa.Integer(), nullable=True),
            sa.Column("month", sa.Integer(), nullable=True),
            sa.Column("writer", sa.String(), nullable=True),
            sa.Column("penciller", sa.String(), nullable=True),
            sa.Column("summary", sa.String(), nullable=True),
            sa.Column("genre", sa.String(), nullable=True),
            sa.Column("language_iso", sa.String(), nullable=True),
            sa.Column("extracted_at", sa.DateTime(), nullable=False),
        )

    if not _table_exists("reading_progress"):
        op.create_table(
            "reading_progress",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("file_id", sa.Integer(), sa.ForeignKey("files.id"), unique=True, nullable=False),
            sa.Column("current_page", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("completed", sa.Boolean(), nullable=False, server_default="0"),
            sa.Column("last_read_at", sa.DateTime(), nullable=True),
        )

    if not _table_exists("series_progress"):
        op.create_table(
            "series_progress",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("series_id", sa.Integer(), sa.ForeignKey("series.id"), unique=True, nullable=False),
            sa.Column("total_owned", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_read", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_in_progress", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_read_file_id", sa.Integer(), nullable=True),
            sa.Column("next_unread_file_id", sa.Integer(), nullable=True),
            sa.Column("last_read_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )

    if not _table_exists("collection_items"):
        op.create_table(
            "collection_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("collection", sa.String(), nullable=False),
            sa.Column("file_id", sa.Integer(), sa.ForeignKey("files.id"), nullable=True),
            sa.Column("series_id", sa.Integer(), sa.ForeignKey("series.id"), nullable=True),
            sa.Column("is_available", sa.Boolean(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_collection_items_collection", "collection_items", ["collection"])
        op.create_index("ix_collection_items_file_id", "collection_items", ["file_id"])
        op.create_index("ix_collection_items_series_id", "collection_items", ["series_id"])


def downgrade() -> None:
    # Dependents first
    for table in (
        "collection_items",
        "series_progress",
        "reading_progress",
        "file_metadata",
        "files",
        "series",
        "folders",
        "libraries",
    ):
        op.drop_table(table)
