"""
Initial schema: users, sessions, photos and the error log.

Revision ID: 20250901_0001
Revises:
Create Date: 2025-09-01
"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "20250901_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "Users",
        sa.Column("UserID", sa.String(length=36), primary_key=True),
        sa.Column("ExternalID", sa.String(length=255), nullable=False, unique=True),
        sa.Column("Email", sa.String(length=255), nullable=True),
        sa.Column("Username", sa.String(length=100), nullable=True),
        sa.Column("FirstName", sa.String(length=100), nullable=True),
        sa.Column("LastName", sa.String(length=100), nullable=True),
        sa.Column("AvatarUrl", sa.String(length=1024), nullable=True),
        sa.Column("Role", sa.String(length=16), nullable=False, server_default="USER"),
        sa.Column("DateCreated", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("LastUpdated", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "UserSession",
        sa.Column("SessionID", sa.Uuid(), primary_key=True),
        sa.Column("UserID", sa.String(length=36), sa.ForeignKey("Users.UserID"), nullable=False),
        sa.Column("CreatedAt", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("ExpiresAt", sa.DateTime(), nullable=True),
        sa.Column("IsActive", sa.Boolean(), server_default=sa.text("1")),
        sa.Column("LastSeen", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("IPAddress", sa.String(length=45), nullable=True),
        sa.Column("UserAgent", sa.String(length=255), nullable=True),
    )

    op.create_table(
        "Photo",
        sa.Column("PhotoID", sa.String(length=36), primary_key=True),
        sa.Column("UserID", sa.String(length=36), sa.ForeignKey("Users.UserID"), nullable=False),
        sa.Column("S3Key", sa.String(length=512), nullable=False),
        sa.Column("S3Url", sa.String(length=1024), nullable=False),
        sa.Column("Description", sa.String(length=1000), nullable=True),
        sa.Column(
            "ModerationApproved", sa.Boolean(), nullable=False, server_default=sa.text("1")
        ),
        sa.Column("ModerationLabels", sa.JSON(), nullable=True),
        sa.Column("RejectionReason", sa.Text(), nullable=True),
        sa.Column("CreatedAt", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("IX_Photo_CreatedAt_PhotoID", "Photo", ["CreatedAt", "PhotoID"])
    op.create_index("IX_Photo_UserID", "Photo", ["UserID"])

    op.create_table(
        "AppErrorLog",
        sa.Column("ErrorID", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("OccurredAt", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("RequestID", sa.String(length=64), nullable=True),
        sa.Column("Path", sa.String(length=500), nullable=True),
        sa.Column("Method", sa.String(length=16), nullable=True),
        sa.Column("StatusCode", sa.Integer(), nullable=True),
        sa.Column("ErrorType", sa.String(length=100), nullable=True),
        sa.Column("UserID", sa.String(length=36), nullable=True),
        sa.Column("ClientIP", sa.String(length=45), nullable=True),
        sa.Column("UserAgent", sa.String(length=255), nullable=True),
        sa.Column("Message", sa.Text(), nullable=True),
        sa.Column("StackTrace", sa.Text(), nullable=True),
    )
    op.create_index("IX_AppErrorLog_OccurredAt", "AppErrorLog", ["OccurredAt"])


def downgrade() -> None:
    op.drop_index("IX_AppErrorLog_OccurredAt", table_name="AppErrorLog")
    op.drop_table("AppErrorLog")
    op.drop_index("IX_Photo_UserID", table_name="Photo")
    op.drop_index("IX_Photo_CreatedAt_PhotoID", table_name="Photo")
    op.drop_table("Photo")
    op.drop_table("UserSession")
    op.drop_table("Users")
