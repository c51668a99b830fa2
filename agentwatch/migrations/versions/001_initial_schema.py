"""Initial schema: ledger, change analyzer, alerting and report tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-12
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # If tables already exist (pre-Alembic database), skip creation.
    conn = op.get_bind()
    result = conn.execute(
        sa.text("SELECT name FROM sqlite_master WHERE type='table' AND name='agent_activities'")
    )
    if result.fetchone() is not None:
        return  # Schema already applied by the inline bootstrap

    # --- Activity ledger ---

    op.create_table(
        "agent_activities",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("agent_id", sa.Text, nullable=False),
        sa.Column("activity", sa.Text, nullable=False),
        sa.Column("metadata_json", sa.Text, server_default="{}"),
        sa.Column("timestamp", sa.Float, nullable=False),
        sa.Column("duration", sa.Float),
        sa.Column("project_path", sa.Text),
        sa.Column("tags_json", sa.Text, server_default="[]"),
    )

    op.create_table(
        "agent_metrics",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("agent_id", sa.Text, nullable=False),
        sa.Column("activity_id", sa.Text, sa.ForeignKey("agent_activities.id", ondelete="CASCADE")),
        sa.Column("metric_type", sa.Text, nullable=False),
        sa.Column("value", sa.Float, nullable=False),
        sa.Column("timestamp", sa.Float, nullable=False),
        sa.Column("context_json", sa.Text, server_default="{}"),
    )

    op.create_table(
        "task_plans",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("priority", sa.Text, nullable=False, server_default="medium"),
        sa.Column("status", sa.Text, nullable=False, server_default="pending"),
        sa.Column("assigned_agent", sa.Text),
        sa.Column("created_at", sa.Float, nullable=False),
        sa.Column("updated_at", sa.Float, nullable=False),
        sa.Column("estimated_duration", sa.Float),
        sa.Column("actual_duration", sa.Float),
        sa.Column("progress", sa.Integer, nullable=False, server_default="0"),
        sa.Column("dependencies_json", sa.Text, server_default="[]"),
        sa.Column("milestones_json", sa.Text, server_default="[]"),
        sa.Column("completed_milestones_json", sa.Text, server_default="[]"),
        sa.Column("notes", sa.Text),
    )

    # --- Change analyzer ---

    op.create_table(
        "code_changes",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("project_path", sa.Text, nullable=False),
        sa.Column("file_path", sa.Text, nullable=False),
        sa.Column("change_type", sa.Text, nullable=False),
        sa.Column("impact_level", sa.Text, nullable=False),
        sa.Column("risk_score", sa.Float, nullable=False, server_default="0.0"),
        sa.Column("agent_id", sa.Text),
        sa.Column("timestamp", sa.Float, nullable=False),
        sa.Column("file_hash", sa.Text),
        sa.Column("lines_added", sa.Integer, nullable=False, server_default="0"),
        sa.Column("lines_deleted", sa.Integer, nullable=False, server_default="0"),
        sa.Column("size_before", sa.Integer, nullable=False, server_default="0"),
        sa.Column("size_after", sa.Integer, nullable=False, server_default="0"),
        sa.Column("git_commit", sa.Text),
        sa.Column("change_reason", sa.Text),
        sa.Column("source", sa.Text, nullable=False, server_default="agent"),
        sa.Column("metadata_json", sa.Text, server_default="{}"),
    )

    op.create_table(
        "file_dependencies",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("change_id", sa.Text, sa.ForeignKey("code_changes.id", ondelete="CASCADE")),
        sa.Column("source_file", sa.Text, nullable=False),
        sa.Column("target_file", sa.Text, nullable=False),
        sa.Column("dependency_type", sa.Text, nullable=False),
        sa.Column("project_path", sa.Text, nullable=False),
        sa.Column("timestamp", sa.Float, nullable=False),
        sa.Column("superseded_at", sa.Float),
    )

    op.create_table(
        "impact_analysis",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("change_id", sa.Text, sa.ForeignKey("code_changes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("analysis_type", sa.Text, nullable=False, server_default="automated"),
        sa.Column("risk_score", sa.Float, nullable=False),
        sa.Column("affected_components_json", sa.Text, server_default="[]"),
        sa.Column("recommendations_json", sa.Text, server_default="[]"),
        sa.Column("timestamp", sa.Float, nullable=False),
    )

    op.create_table(
        "monitoring_sessions",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("project_path", sa.Text, nullable=False),
        sa.Column("watch_patterns_json", sa.Text, nullable=False),
        sa.Column("notifications_json", sa.Text, server_default="{}"),
        sa.Column("thresholds_json", sa.Text, server_default="{}"),
        sa.Column("status", sa.Text, nullable=False, server_default="active"),
        sa.Column("created_at", sa.Float, nullable=False),
        sa.Column("last_activity", sa.Float),
        sa.Column("events_processed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("events_dropped", sa.Integer, nullable=False, server_default="0"),
    )

    # --- Alerting engine ---

    op.create_table(
        "notification_channels",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("type", sa.Text, nullable=False),
        sa.Column("configuration_json", sa.Text, nullable=False, server_default="{}"),
        sa.Column("enabled", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.Float, nullable=False),
        sa.Column("last_used", sa.Float),
    )

    op.create_table(
        "notification_rules",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("conditions_json", sa.Text, nullable=False, server_default="{}"),
        sa.Column("actions_json", sa.Text, nullable=False, server_default="[]"),
        sa.Column("priority", sa.Text, nullable=False, server_default="medium"),
        sa.Column("enabled", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.Float, nullable=False),
        sa.Column("last_triggered", sa.Float),
        sa.Column("trigger_count", sa.Integer, nullable=False, server_default="0"),
    )

    op.create_table(
        "sent_notifications",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("rule_id", sa.Text, nullable=False),
        sa.Column("channel_id", sa.Text, nullable=False),
        sa.Column("event_data_json", sa.Text, nullable=False),
        sa.Column("status", sa.Text, nullable=False, server_default="sent"),
        sa.Column("sent_at", sa.Float, nullable=False),
        sa.Column("error_message", sa.Text),
    )

    op.create_table(
        "alert_templates",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("subject_template", sa.Text, nullable=False),
        sa.Column("body_template", sa.Text, nullable=False),
        sa.Column("format", sa.Text, nullable=False, server_default="text"),
        sa.Column("variables_json", sa.Text, server_default="[]"),
        sa.Column("created_at", sa.Float, nullable=False),
    )

    # --- Report compiler ---

    op.create_table(
        "generated_reports",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("report_type", sa.Text, nullable=False),
        sa.Column("project_path", sa.Text),
        sa.Column("format", sa.Text, nullable=False),
        sa.Column("window_start", sa.Float, nullable=False),
        sa.Column("window_end", sa.Float, nullable=False),
        sa.Column("storage_location", sa.Text),
        sa.Column("summary_text", sa.Text),
        sa.Column("metadata_json", sa.Text, server_default="{}"),
        sa.Column("created_at", sa.Float, nullable=False),
    )

    op.create_table(
        "report_templates",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("template_content", sa.Text, nullable=False),
        sa.Column("format", sa.Text, nullable=False, server_default="markdown"),
        sa.Column("variables_json", sa.Text, server_default="[]"),
        sa.Column("created_at", sa.Float, nullable=False),
    )

    # Indexes
    op.create_index("idx_activities_agent", "agent_activities", ["agent_id"])
    op.create_index("idx_activities_timestamp", "agent_activities", ["timestamp"])
    op.create_index("idx_activities_project", "agent_activities", ["project_path"])
    op.create_index("idx_metrics_agent_type", "agent_metrics", ["agent_id", "metric_type"])
    op.create_index("idx_metrics_timestamp", "agent_metrics", ["timestamp"])
    op.create_index("idx_tasks_status", "task_plans", ["status"])
    op.create_index("idx_changes_project_file", "code_changes", ["project_path", "file_path"])
    op.create_index("idx_changes_timestamp", "code_changes", ["timestamp"])
    op.create_index("idx_deps_target", "file_dependencies", ["project_path", "target_file"])
    op.create_index("idx_deps_source", "file_dependencies", ["project_path", "source_file"])
    op.create_index("idx_impact_change", "impact_analysis", ["change_id"])
    op.create_index("idx_sessions_status", "monitoring_sessions", ["status"])
    op.create_index("idx_sent_channel", "sent_notifications", ["channel_id"])
    op.create_index("idx_sent_rule", "sent_notifications", ["rule_id"])
    op.create_index("idx_reports_created", "generated_reports", ["created_at"])


def downgrade() -> None:
    op.drop_table("report_templates")
    op.drop_table("generated_reports")
    op.drop_table("alert_templates")
    op.drop_table("sent_notifications")
    op.drop_table("notification_rules")
    op.drop_table("notification_channels")
    op.drop_table("monitoring_sessions")
    op.drop_table("impact_analysis")
    op.drop_table("file_dependencies")
    op.drop_table("code_changes")
    op.drop_table("task_plans")
    op.drop_table("agent_metrics")
    op.drop_table("agent_activities")
