#  Agent Watch - Enums
#
#  Status and type enumerations used across the pipeline.
#
#  Depends on: (none)
#  Used by:    models/schemas.py, services/*, routes/*

from enum import Enum


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Numeric rank for ordering (higher is more urgent)
PRIORITY_RANK = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.CRITICAL: 4,
}


class TaskStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_TASK_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})
ACTIVE_TASK_STATUSES = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED)


class MetricType(str, Enum):
    PRODUCTIVITY = "productivity"
    EFFICIENCY = "efficiency"
    ACCURACY = "accuracy"
    COLLABORATION = "collaboration"


class Timeframe(str, Enum):
    LAST_HOUR = "last_hour"
    LAST_DAY = "last_day"
    LAST_WEEK = "last_week"
    LAST_MONTH = "last_month"
    CUSTOM = "custom"


TIMEFRAME_SECONDS = {
    Timeframe.LAST_HOUR: 3600,
    Timeframe.LAST_DAY: 86400,
    Timeframe.LAST_WEEK: 7 * 86400,
    Timeframe.LAST_MONTH: 30 * 86400,
}


class ChangeType(str, Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    REFACTOR = "refactor"


class ImpactLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


IMPACT_RANK = {
    ImpactLevel.LOW: 1,
    ImpactLevel.MEDIUM: 2,
    ImpactLevel.HIGH: 3,
    ImpactLevel.CRITICAL: 4,
}


class ChangeSource(str, Enum):
    AGENT = "agent"
    WATCHER = "watcher"


class DependencyKind(str, Enum):
    IMPORT = "import"
    CSS_IMPORT = "css-import"


class AnalysisType(str, Enum):
    RISK = "risk"
    COMPLEXITY = "complexity"
    DEPENDENCIES = "dependencies"
    SECURITY = "security"
    PERFORMANCE = "performance"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    STOPPED = "stopped"
    STALE = "stale"          # Active in the store but no live watcher (after restart)


class ChannelType(str, Enum):
    CONSOLE = "console"
    WEBHOOK = "webhook"
    SLACK = "slack"
    EMAIL = "email"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    ERROR = "error"


class ReportFormat(str, Enum):
    JSON = "json"
    MARKDOWN = "markdown"
    HTML = "html"
    PDF = "pdf"


REPORT_EXTENSIONS = {
    ReportFormat.JSON: "json",
    ReportFormat.MARKDOWN: "md",
    ReportFormat.HTML: "html",
    ReportFormat.PDF: "pdf.html",
}


class ChangeStatsGroup(str, Enum):
    TYPE = "type"
    AGENT = "agent"
    PATH = "path"


def parse_enum(enum_cls, value, field: str):
    """Coerce a raw value into enum_cls or raise InvalidStateError."""
    from agentwatch.exceptions import InvalidStateError

    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidStateError(f"Invalid {field} '{value}' (expected one of: {allowed})") from None
