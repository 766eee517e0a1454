"""Initial jobflow schema: users, credits, jobs, durable queue, notifications."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index("ix_users_user_id", "users", ["user_id"])
    op.create_index("ix_users_display_name", "users", ["display_name"])
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "credit_balances",
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("standard_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rollover_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_jobs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["client_id"], ["users.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("client_id"),
        sa.CheckConstraint("standard_credits >= 0", name="ck_credit_balances_standard"),
        sa.CheckConstraint("rollover_credits >= 0", name="ck_credit_balances_rollover"),
    )

    op.create_table(
        "worker_profiles",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("skills_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("pending_earnings", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index("ix_worker_profiles_is_available", "worker_profiles", ["is_available"])

    op.create_table(
        "jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("client_id", sa.String(), nullable=False),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("priority", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("credits_charged", sa.Integer(), nullable=False),
        sa.Column("worker_earnings", sa.Float(), nullable=True),
        sa.Column("worker_paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ai_analysis_json", sa.Text(), nullable=True),
        sa.Column("context_json", sa.Text(), nullable=True),
        sa.Column("analyzed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("flagged", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("flag_reason", sa.Text(), nullable=True),
        sa.Column("flagged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("flag_resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("flag_resolved_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["client_id"], ["users.user_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["worker_id"], ["users.user_id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index("ix_jobs_client_id", "jobs", ["client_id"])
    op.create_index("ix_jobs_category", "jobs", ["category"])
    op.create_index("ix_jobs_status", "jobs", ["status"])
    op.create_index("idx_jobs_client_status", "jobs", ["client_id", "status"])
    op.create_index("idx_jobs_worker_status", "jobs", ["worker_id", "status"])

    op.create_table(
        "queue_tasks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("queue_name", sa.String(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("attempts_made", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("backoff_base_seconds", sa.Float(), nullable=False, server_default="1"),
        sa.Column("run_after", sa.DateTime(timezone=True), nullable=False),
        sa.Column("stalled_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lease_token", sa.String(), nullable=True),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("failure_class", sa.String(), nullable=True),
        sa.Column("failed_reason", sa.Text(), nullable=True),
        sa.Column("enqueued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_queue_tasks_task_id", "queue_tasks", ["task_id"], unique=True)
    op.create_index("ix_queue_tasks_queue_name", "queue_tasks", ["queue_name"])
    op.create_index("ix_queue_tasks_status", "queue_tasks", ["status"])
    op.create_index("ix_queue_tasks_failure_class", "queue_tasks", ["failure_class"])
    op.create_index(
        "idx_queue_tasks_claim",
        "queue_tasks",
        ["queue_name", "status", "priority", "run_after"],
    )
    op.create_index(
        "idx_queue_tasks_lease",
        "queue_tasks",
        ["queue_name", "status", "locked_until"],
    )

    op.create_table(
        "queue_task_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["queue_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_queue_task_events_task_id", "queue_task_events", ["task_id"])
    op.create_index("ix_queue_task_events_event_type", "queue_task_events", ["event_type"])
    op.create_index(
        "idx_queue_task_events_task_time",
        "queue_task_events",
        ["task_id", "created_at"],
    )

    op.create_table(
        "notifications",
        sa.Column("notification_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("subject", sa.String(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("data_json", sa.Text(), nullable=True),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("notification_id"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_event_type", "notifications", ["event_type"])
    op.create_index("ix_notifications_expires_at", "notifications", ["expires_at"])
    op.create_index("idx_notifications_user_time", "notifications", ["user_id", "created_at"])

    op.create_table(
        "processed_webhooks",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )


def downgrade() -> None:
    op.drop_table("processed_webhooks")
    op.drop_index("idx_notifications_user_time", table_name="notifications")
    op.drop_index("ix_notifications_expires_at", table_name="notifications")
    op.drop_index("ix_notifications_event_type", table_name="notifications")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("idx_queue_task_events_task_time", table_name="queue_task_events")
    op.drop_index("ix_queue_task_events_event_type", table_name="queue_task_events")
    op.drop_index("ix_queue_task_events_task_id", table_name="queue_task_events")
    op.drop_table("queue_task_events")
    op.drop_index("idx_queue_tasks_lease", table_name="queue_tasks")
    op.drop_index("idx_queue_tasks_claim", table_name="queue_tasks")
    op.drop_index("ix_queue_tasks_failure_class", table_name="queue_tasks")
    op.drop_index("ix_queue_tasks_status", table_name="queue_tasks")
    op.drop_index("ix_queue_tasks_queue_name", table_name="queue_tasks")
    op.drop_index("ix_queue_tasks_task_id", table_name="queue_tasks")
    op.drop_table("queue_tasks")
    op.drop_index("idx_jobs_worker_status", table_name="jobs")
    op.drop_index("idx_jobs_client_status", table_name="jobs")
    op.drop_index("ix_jobs_status", table_name="jobs")
    op.drop_index("ix_jobs_category", table_name="jobs")
    op.drop_index("ix_jobs_client_id", table_name="jobs")
    op.drop_table("jobs")
    op.drop_index("ix_worker_profiles_is_available", table_name="worker_profiles")
    op.drop_table("worker_profiles")
    op.drop_table("credit_balances")
    op.drop_index("ix_users_role", table_name="users")
    op.drop_index("ix_users_display_name", table_name="users")
    op.drop_index("ix_users_user_id", table_name="users")
    op.drop_table("users")
