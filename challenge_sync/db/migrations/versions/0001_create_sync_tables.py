"""create issue sync tables

Revision ID: 0001_create_sync_tables
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_create_sync_tables"
down_revision = None
branch_labels = None
depends_on = None

ISSUE_STATUSES = (
    "challenge_creation_pending",
    "challenge_creation_successful",
    "challenge_creation_failed",
    "challenge_creation_retried",
    "challenge_payment_pending",
    "challenge_payment_successful",
    "challenge_payment_failed",
    "challenge_cancelled",
)
SCHEDULED_EVENT_STATUSES = ("pending", "dispatched", "completed", "cancelled")


def upgrade() -> None:
    op.create_table(
        "issues",
        sa.Column("id", sa.String(length=36), nullable=False, primary_key=True),
        sa.Column("provider", sa.String(length=20), nullable=False),
        sa.Column("repository_id", sa.String(length=128), nullable=False),
        sa.Column("number", sa.Integer(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("prizes", sa.JSON(), nullable=False),
        sa.Column("labels", sa.JSON(), nullable=False),
        sa.Column("assignee", sa.String(length=255), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("challenge_id", sa.Integer(), nullable=True),
        sa.Column("challenge_uuid", sa.String(length=64), nullable=True),
        sa.Column("project_id", sa.String(length=64), nullable=True),
        sa.Column("repo_url", sa.String(length=512), nullable=True),
        sa.Column(
            "status", sa.Enum(*ISSUE_STATUSES, name="issue_status"), nullable=False
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "provider", "repository_id", "number", name="uq_issues_provider_repo_number"
        ),
    )
    op.create_index("ix_issues_challenge_uuid", "issues", ["challenge_uuid"])
    op.create_index("ix_issues_project_id", "issues", ["project_id"])
    op.create_index("ix_issues_status", "issues", ["status"])
    op.create_index("ix_issues_project_status", "issues", ["project_id", "status"])

    op.create_table(
        "projects",
        sa.Column("id", sa.String(length=36), nullable=False, primary_key=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("repo_url", sa.String(length=512), nullable=False),
        sa.Column("direct_project_id", sa.Integer(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("owner", sa.String(length=255), nullable=False),
        sa.Column("copilot", sa.String(length=255), nullable=True),
        sa.Column(
            "create_copilot_payments", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_projects_repo_url", "projects", ["repo_url"], unique=True)
    op.create_index("ix_projects_archived", "projects", ["archived"])

    op.create_table(
        "user_mappings",
        sa.Column("id", sa.String(length=36), nullable=False, primary_key=True),
        sa.Column("platform_handle", sa.String(length=255), nullable=False),
        sa.Column("github_user_id", sa.Integer(), nullable=True),
        sa.Column("github_username", sa.String(length=255), nullable=True),
        sa.Column("gitlab_user_id", sa.Integer(), nullable=True),
        sa.Column("gitlab_username", sa.String(length=255), nullable=True),
    )
    op.create_index(
        "ix_user_mappings_platform_handle", "user_mappings", ["platform_handle"], unique=True
    )
    for column in ("github_user_id", "github_username", "gitlab_user_id", "gitlab_username"):
        op.create_index(f"ix_user_mappings_{column}", "user_mappings", [column])

    op.create_table(
        "git_users",
        sa.Column("id", sa.String(length=36), nullable=False, primary_key=True),
        sa.Column("provider", sa.String(length=20), nullable=False),
        sa.Column("username", sa.String(length=255), nullable=False),
        sa.Column("user_provider_id", sa.Integer(), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.UniqueConstraint("provider", "username", name="uq_git_users_provider_username"),
    )

    op.create_table(
        "creation_locks",
        sa.Column("key", sa.String(length=255), nullable=False, primary_key=True),
        sa.Column("owner", sa.String(length=100), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_creation_locks_expires_at", "creation_locks", ["expires_at"])

    op.create_table(
        "scheduled_events",
        sa.Column("id", sa.String(length=36), nullable=False, primary_key=True),
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*SCHEDULED_EVENT_STATUSES, name="scheduled_event_status"),
            nullable=False,
        ),
        sa.Column("is_retry", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("claimed_by", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("dispatched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_scheduled_events_key", "scheduled_events", ["key"])
    op.create_index(
        "ix_scheduled_events_status_due", "scheduled_events", ["status", "due_at"]
    )


def downgrade() -> None:
    op.drop_table("scheduled_events")
    op.drop_table("creation_locks")
    op.drop_table("git_users")
    op.drop_table("user_mappings")
    op.drop_table("projects")
    op.drop_table("issues")
    sa.Enum(name="scheduled_event_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="issue_status").drop(op.get_bind(), checkfirst=True)
