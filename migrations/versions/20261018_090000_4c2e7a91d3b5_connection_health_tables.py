"""connection_health_tables

Revision ID: 4c2e7a91d3b5
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "4c2e7a91d3b5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=50), server_default="client", nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "cloud_storage_tokens",
        sa.Column("id", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False, comment="Encrypted access token"),
        sa.Column("refresh_token", sa.Text(), nullable=True, comment="Encrypted refresh token"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refresh_failure_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("requires_user_intervention", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("last_refresh_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_successful_refresh_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_notification_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("proactive_refresh_scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "provider", name="uq_cloud_storage_tokens_user_provider"),
    )
    op.create_index(op.f("ix_cloud_storage_tokens_user_id"), "cloud_storage_tokens", ["user_id"], unique=False)
    op.create_table(
        "cloud_storage_health_statuses",
        sa.Column("id", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=50), server_default="healthy", nullable=False),
        sa.Column("consolidated_status", sa.String(length=50), nullable=True),
        sa.Column("consecutive_failures", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_error_type", sa.String(length=50), nullable=True),
        sa.Column("last_error_message", sa.Text(), nullable=True),
        sa.Column("last_error_context", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("requires_reconnection", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_successful_operation_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_live_validation_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("live_validation_result", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("api_connectivity_last_tested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("api_connectivity_result", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column(
            "provider_specific_data",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'{}'"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "provider", name="uq_health_statuses_user_provider"),
    )
    op.create_index(
        op.f("ix_cloud_storage_health_statuses_user_id"), "cloud_storage_health_statuses", ["user_id"], unique=False
    )
    op.create_table(
        "file_uploads",
        sa.Column("id", sa.BigInteger(), nullable=False),
        *_timestamps(),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("filename", sa.String(length=500), nullable=False),
        sa.Column("local_path", sa.String(length=1000), nullable=True),
        sa.Column("status", sa.String(length=50), server_default="pending", nullable=False),
        sa.Column("cloud_storage_error_type", sa.String(length=50), nullable=True),
        sa.Column("retry_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("recovery_attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_recovery_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_available_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_file_uploads_user_id"), "file_uploads", ["user_id"], unique=False)
    op.create_index(
        "ix_file_uploads_user_provider_status", "file_uploads", ["user_id", "provider", "status"], unique=False
    )
    op.create_table(
        "recovery_attempts",
        sa.Column("id", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("strategy", sa.String(length=50), nullable=False),
        sa.Column("error_type", sa.String(length=50), nullable=True),
        sa.Column("successful", sa.Boolean(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_recovery_attempts_user_provider_created",
        "recovery_attempts",
        ["user_id", "provider", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_recovery_attempts_user_provider_created", table_name="recovery_attempts")
    op.drop_table("recovery_attempts")
    op.drop_index("ix_file_uploads_user_provider_status", table_name="file_uploads")
    op.drop_index(op.f("ix_file_uploads_user_id"), table_name="file_uploads")
    op.drop_table("file_uploads")
    op.drop_index(op.f("ix_cloud_storage_health_statuses_user_id"), table_name="cloud_storage_health_statuses")
    op.drop_table("cloud_storage_health_statuses")
    op.drop_index(op.f("ix_cloud_storage_tokens_user_id"), table_name="cloud_storage_tokens")
    op.drop_table("cloud_storage_tokens")
    op.drop_table("users")
