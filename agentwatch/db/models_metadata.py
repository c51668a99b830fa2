#  Agent Watch - SQLAlchemy Table Metadata
#
#  Declarative Table definitions for Alembic autogenerate.
#  These mirror the SQLite schema but are NOT used at runtime;
#  the pipeline still uses raw SQL via aiosqlite.
#
#  Depends on: (none)
#  Used by:    migrations/env.py (Alembic autogenerate)

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
)

metadata = MetaData()

# --- Activity ledger ---

agent_activities = Table(
    "agent_activities",
    metadata,
    Column("id", Text, primary_key=True),
    Column("agent_id", Text, nullable=False),
    Column("activity", Text, nullable=False),
    Column("metadata_json", Text, server_default="{}"),
    Column("timestamp", Float, nullable=False),
    Column("duration", Float),
    Column("project_path", Text),
    Column("tags_json", Text, server_default="[]"),
    Index("idx_activities_agent", "agent_id"),
    Index("idx_activities_timestamp", "timestamp"),
    Index("idx_activities_project", "project_path"),
)

agent_metrics = Table(
    "agent_metrics",
    metadata,
    Column("id", Text, primary_key=True),
    Column("agent_id", Text, nullable=False),
    Column("activity_id", Text, ForeignKey("agent_activities.id", ondelete="CASCADE")),
    Column("metric_type", Text, nullable=False),
    Column("value", Float, nullable=False),
    Column("timestamp", Float, nullable=False),
    Column("context_json", Text, server_default="{}"),
    Index("idx_metrics_agent_type", "agent_id", "metric_type"),
    Index("idx_metrics_timestamp", "timestamp"),
)

task_plans = Table(
    "task_plans",
    metadata,
    Column("id", Text, primary_key=True),
    Column("description", Text, nullable=False),
    Column("priority", Text, nullable=False, server_default="medium"),
    Column("status", Text, nullable=False, server_default="pending"),
    Column("assigned_agent", Text),
    Column("created_at", Float, nullable=False),
    Column("updated_at", Float, nullable=False),
    Column("estimated_duration", Float),
    Column("actual_duration", Float),
    Column("progress", Integer, nullable=False, server_default="0"),
    Column("dependencies_json", Text, server_default="[]"),
    Column("milestones_json", Text, server_default="[]"),
    Column("completed_milestones_json", Text, server_default="[]"),
    Column("notes", Text),
    Index("idx_tasks_status", "status"),
)

# --- Change analyzer ---

code_changes = Table(
    "code_changes",
    metadata,
    Column("id", Text, primary_key=True),
    Column("project_path", Text, nullable=False),
    Column("file_path", Text, nullable=False),
    Column("change_type", Text, nullable=False),
    Column("impact_level", Text, nullable=False),
    Column("risk_score", Float, nullable=False, server_default="0.0"),
    Column("agent_id", Text),
    Column("timestamp", Float, nullable=False),
    Column("file_hash", Text),
    Column("lines_added", Integer, nullable=False, server_default="0"),
    Column("lines_deleted", Integer, nullable=False, server_default="0"),
    Column("size_before", Integer, nullable=False, server_default="0"),
    Column("size_after", Integer, nullable=False, server_default="0"),
    Column("git_commit", Text),
    Column("change_reason", Text),
    Column("source", Text, nullable=False, server_default="agent"),
    Column("metadata_json", Text, server_default="{}"),
    Index("idx_changes_project_file", "project_path", "file_path"),
    Index("idx_changes_timestamp", "timestamp"),
)

file_dependencies = Table(
    "file_dependencies",
    metadata,
    Column("id", Text, primary_key=True),
    Column("change_id", Text, ForeignKey("code_changes.id", ondelete="CASCADE")),
    Column("source_file", Text, nullable=False),
    Column("target_file", Text, nullable=False),
    Column("dependency_type", Text, nullable=False),
    Column("project_path", Text, nullable=False),
    Column("timestamp", Float, nullable=False),
    Column("superseded_at", Float),
    Index("idx_deps_target", "project_path", "target_file"),
    Index("idx_deps_source", "project_path", "source_file"),
)

impact_analysis = Table(
    "impact_analysis",
    metadata,
    Column("id", Text, primary_key=True),
    Column("change_id", Text, ForeignKey("code_changes.id", ondelete="CASCADE"), nullable=False),
    Column("analysis_type", Text, nullable=False, server_default="automated"),
    Column("risk_score", Float, nullable=False),
    Column("affected_components_json", Text, server_default="[]"),
    Column("recommendations_json", Text, server_default="[]"),
    Column("timestamp", Float, nullable=False),
    Index("idx_impact_change", "change_id"),
)

monitoring_sessions = Table(
    "monitoring_sessions",
    metadata,
    Column("id", Text, primary_key=True),
    Column("project_path", Text, nullable=False),
    Column("watch_patterns_json", Text, nullable=False),
    Column("notifications_json", Text, server_default="{}"),
    Column("thresholds_json", Text, server_default="{}"),
    Column("status", Text, nullable=False, server_default="active"),
    Column("created_at", Float, nullable=False),
    Column("last_activity", Float),
    Column("events_processed", Integer, nullable=False, server_default="0"),
    Column("events_dropped", Integer, nullable=False, server_default="0"),
    Index("idx_sessions_status", "status"),
)

# --- Alerting engine ---

notification_channels = Table(
    "notification_channels",
    metadata,
    Column("id", Text, primary_key=True),
    Column("name", Text, nullable=False),
    Column("type", Text, nullable=False),
    Column("configuration_json", Text, nullable=False, server_default="{}"),
    Column("enabled", Integer, nullable=False, server_default="1"),
    Column("created_at", Float, nullable=False),
    Column("last_used", Float),
)

notification_rules = Table(
    "notification_rules",
    metadata,
    Column("id", Text, primary_key=True),
    Column("name", Text, nullable=False),
    Column("description", Text, server_default=""),
    Column("conditions_json", Text, nullable=False, server_default="{}"),
    Column("actions_json", Text, nullable=False, server_default="[]"),
    Column("priority", Text, nullable=False, server_default="medium"),
    Column("enabled", Integer, nullable=False, server_default="1"),
    Column("created_at", Float, nullable=False),
    Column("last_triggered", Float),
    Column("trigger_count", Integer, nullable=False, server_default="0"),
)

sent_notifications = Table(
    "sent_notifications",
    metadata,
    Column("id", Text, primary_key=True),
    Column("rule_id", Text, nullable=False),
    Column("channel_id", Text, nullable=False),
    Column("event_data_json", Text, nullable=False),
    Column("status", Text, nullable=False, server_default="sent"),
    Column("sent_at", Float, nullable=False),
    Column("error_message", Text),
    Index("idx_sent_channel", "channel_id"),
    Index("idx_sent_rule", "rule_id"),
)

alert_templates = Table(
    "alert_templates",
    metadata,
    Column("id", Text, primary_key=True),
    Column("name", Text, nullable=False),
    Column("subject_template", Text, nullable=False),
    Column("body_template", Text, nullable=False),
    Column("format", Text, nullable=False, server_default="text"),
    Column("variables_json", Text, server_default="[]"),
    Column("created_at", Float, nullable=False),
)

# --- Report compiler ---

generated_reports = Table(
    "generated_reports",
    metadata,
    Column("id", Text, primary_key=True),
    Column("report_type", Text, nullable=False),
    Column("project_path", Text),
    Column("format", Text, nullable=False),
    Column("window_start", Float, nullable=False),
    Column("window_end", Float, nullable=False),
    Column("storage_location", Text),
    Column("summary_text", Text),
    Column("metadata_json", Text, server_default="{}"),
    Column("created_at", Float, nullable=False),
    Index("idx_reports_created", "created_at"),
)

report_templates = Table(
    "report_templates",
    metadata,
    Column("id", Text, primary_key=True),
    Column("name", Text, nullable=False),
    Column("description", Text, server_default=""),
    Column("template_content", Text, nullable=False),
    Column("format", Text, nullable=False, server_default="markdown"),
    Column("variables_json", Text, server_default="[]"),
    Column("created_at", Float, nullable=False),
)
