"""initial intake schema

Revision ID: 3c1e7a9b2d40
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "3c1e7a9b2d40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "uploads_upload_record",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("object_path", sa.String(length=1024), nullable=False),
        sa.Column("file_name", sa.String(length=128), nullable=False),
        sa.Column("content_type", sa.String(length=200), nullable=False),
        sa.Column("byte_size", sa.Integer(), nullable=False),
        sa.UniqueConstraint("object_path", name="uq_uploads_upload_record_object_path"),
    )
    op.create_index(
        "ix_uploads_upload_record_expires_at", "uploads_upload_record", ["expires_at"]
    )

    op.create_table(
        "usage_counter",
        sa.Column("scope_kind", sa.String(length=16), nullable=False),
        sa.Column("scope_id", sa.String(length=128), nullable=False),
        sa.Column("date_key", sa.String(length=10), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("scope_kind", "scope_id", "date_key"),
    )

    op.create_table(
        "usage_entitlement",
        sa.Column("user_id", sa.String(length=128), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("plan", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=True),
    )

    op.create_table(
        "sessions_processing_session",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=True),
        sa.Column("file_name", sa.String(length=128), nullable=False),
        sa.Column("file_type", sa.String(length=100), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("object_path", sa.String(length=1024), nullable=True),
        sa.Column("status", sa.String(length=12), nullable=False),
        sa.Column("extracted_data", sa.JSON(), nullable=True),
        sa.Column("ocr_text", sa.Text(), nullable=True),
        sa.Column("error_code", sa.String(length=32), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("delete_after_processing", sa.Boolean(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index(
        "ix_sessions_processing_session_expires_at",
        "sessions_processing_session",
        ["expires_at"],
    )
    op.create_index(
        "ix_sessions_processing_session_owner_id", "sessions_processing_session", ["owner_id"]
    )
    op.create_index(
        "ix_sessions_processing_session_status", "sessions_processing_session", ["status"]
    )

    op.create_table(
        "history_entry",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        *_timestamps(),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("session_id", sa.String(length=64), nullable=False),
        sa.Column("file_name", sa.String(length=128), nullable=False),
        sa.Column("file_type", sa.String(length=100), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("vendor_name", sa.String(length=256), nullable=True),
        sa.Column("document_date", sa.String(length=64), nullable=True),
        sa.Column("invoice_number", sa.String(length=128), nullable=True),
        sa.Column("total_amount", sa.Float(), nullable=True),
        sa.Column("currency", sa.String(length=8), nullable=True),
        sa.Column("extracted_data", sa.JSON(), nullable=False),
        sa.Column("fields_count", sa.Integer(), nullable=False),
        sa.Column("line_items_count", sa.Integer(), nullable=False),
    )
    op.create_index("ix_history_entry_expires_at", "history_entry", ["expires_at"])
    op.create_index("ix_history_entry_user_id", "history_entry", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_history_entry_user_id", table_name="history_entry")
    op.drop_index("ix_history_entry_expires_at", table_name="history_entry")
    op.drop_table("history_entry")
    op.drop_index("ix_sessions_processing_session_status", table_name="sessions_processing_session")
    op.drop_index(
        "ix_sessions_processing_session_owner_id", table_name="sessions_processing_session"
    )
    op.drop_index(
        "ix_sessions_processing_session_expires_at", table_name="sessions_processing_session"
    )
    op.drop_table("sessions_processing_session")
    op.drop_table("usage_entitlement")
    op.drop_table("usage_counter")
    op.drop_index("ix_uploads_upload_record_expires_at", table_name="uploads_upload_record")
    op.drop_table("uploads_upload_record")
