#  Agent Watch - Pydantic Schemas
#
#  Request/response models for the REST API.
#  Enum-valued request fields are plain strings: the services validate them
#  and raise InvalidStateError, so HTTP and in-process callers see one error.
#
#  Depends on: models/enums.py
#  Used by:    routes/*

from pydantic import BaseModel, Field

from agentwatch.models.enums import (
    ChangeSource,
    DeliveryStatus,
    ReportFormat,
    SessionStatus,
    TaskStatus,
)


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------

class ActivityCreate(BaseModel):
    agent_id: str = Field(..., min_length=1, max_length=200)
    activity: str = Field(..., min_length=1, max_length=10_000)
    metadata: dict = Field(default_factory=dict)
    timestamp: float | None = None
    duration: float | None = Field(default=None, ge=0)
    project_path: str | None = None
    tags: list[str] = Field(default_factory=list)


class ActivityOut(BaseModel):
    id: str
    agent_id: str
    activity: str
    metadata: dict = Field(default_factory=dict)
    timestamp: float
    duration: float | None = None
    project_path: str | None = None
    tags: list[str] = Field(default_factory=list)
    metrics: list[dict] = Field(default_factory=list)


class ActiveAgentOut(BaseModel):
    agent_id: str
    last_activity: float
    activity_count: int
    is_active: bool


class MetricAggregateOut(BaseModel):
    agent_id: str
    metric_type: str
    average: float
    minimum: float
    maximum: float
    count: int


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

class TaskCreate(BaseModel):
    description: str = Field(..., min_length=1, max_length=10_000)
    priority: str = "medium"
    estimated_duration: float | None = Field(default=None, ge=0)
    dependencies: list[str] = Field(default_factory=list)
    assigned_agent: str | None = None
    milestones: list[str] = Field(default_factory=list)


class TaskStatusUpdate(BaseModel):
    status: str
    progress: int | None = Field(default=None, ge=0, le=100)
    notes: str | None = None
    blockers: list[str] = Field(default_factory=list)
    completed_milestones: list[str] = Field(default_factory=list)


class TaskOut(BaseModel):
    id: str
    description: str
    priority: str
    status: TaskStatus
    assigned_agent: str | None = None
    created_at: float
    updated_at: float
    estimated_duration: float | None = None
    actual_duration: float | None = None
    progress: int = 0
    dependencies: list[str] = Field(default_factory=list)
    milestones: list[str] = Field(default_factory=list)
    completed_milestones: list[str] = Field(default_factory=list)
    notes: str | None = None


# ---------------------------------------------------------------------------
# Changes
# ---------------------------------------------------------------------------

class ChangeBatch(BaseModel):
    project_path: str = Field(..., min_length=1)
    change_type: str
    files: list[str] = Field(..., min_length=1)
    impact: str | None = None
    agent_id: str | None = None
    git_commit: str | None = None
    reason: str | None = None


class ChangeOut(BaseModel):
    id: str
    project_path: str
    file_path: str
    change_type: str
    impact_level: str
    risk_score: float
    agent_id: str | None = None
    timestamp: float
    file_hash: str | None = None
    lines_added: int = 0
    lines_deleted: int = 0
    size_before: int = 0
    size_after: int = 0
    git_commit: str | None = None
    change_reason: str | None = None
    source: ChangeSource = ChangeSource.AGENT
    metadata: dict = Field(default_factory=dict)
    dependencies: list[dict] = Field(default_factory=list)
    impact_analysis: dict | None = None


class AnalyzeRequest(BaseModel):
    project_path: str = Field(..., min_length=1)
    analysis_type: str = "risk"
    changes: list[dict] = Field(..., min_length=1)  # [{file, changeType, linesAdded?, linesDeleted?}]


class MonitoringCreate(BaseModel):
    project_path: str = Field(..., min_length=1)
    watch_patterns: list[str] = Field(..., min_length=1)
    notifications: dict = Field(default_factory=dict)
    thresholds: dict = Field(default_factory=dict)


class MonitoringSessionOut(BaseModel):
    id: str
    project_path: str
    watch_patterns: list[str]
    notifications: dict = Field(default_factory=dict)
    thresholds: dict = Field(default_factory=dict)
    status: SessionStatus
    created_at: float
    last_activity: float | None = None
    events_processed: int = 0
    events_dropped: int = 0
    is_watching: bool = False


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class ChannelCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    type: str
    configuration: dict = Field(default_factory=dict)
    enabled: bool = True


class ChannelUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    configuration: dict | None = None
    enabled: bool | None = None


class ChannelOut(BaseModel):
    id: str
    name: str
    type: str
    configuration: dict = Field(default_factory=dict)
    enabled: bool
    created_at: float
    last_used: float | None = None


class RuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    conditions: dict = Field(default_factory=dict)
    actions: list[dict] = Field(..., min_length=1)
    priority: str = "medium"
    enabled: bool = True


class RuleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    conditions: dict | None = None
    actions: list[dict] | None = None
    priority: str | None = None
    enabled: bool | None = None


class RuleOut(BaseModel):
    id: str
    name: str
    description: str = ""
    conditions: dict = Field(default_factory=dict)
    actions: list[dict] = Field(default_factory=list)
    priority: str
    enabled: bool
    created_at: float
    last_triggered: float | None = None
    trigger_count: int = 0


class AlertTemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    subject_template: str = Field(..., min_length=1)
    body_template: str = Field(..., min_length=1)
    format: str = "text"
    variables: list[str] = Field(default_factory=list)


class AlertTemplateOut(BaseModel):
    id: str
    name: str
    subject_template: str
    body_template: str
    format: str
    variables: list[str] = Field(default_factory=list)
    created_at: float


class AlertCreate(BaseModel):
    type: str = Field(..., min_length=1)
    project_path: str | None = None
    agent_id: str | None = None
    message: str = ""
    metadata: dict = Field(default_factory=dict)
    priority: str = "medium"


class ActionResultOut(BaseModel):
    rule_id: str
    channel_id: str | None = None
    notification_id: str | None = None
    status: DeliveryStatus
    error: str | None = None


class DispatchResultOut(BaseModel):
    event: dict
    matched_rules: list[str] = Field(default_factory=list)
    results: list[ActionResultOut] = Field(default_factory=list)


class SentNotificationOut(BaseModel):
    id: str
    rule_id: str
    rule_name: str | None = None
    channel_id: str
    channel_name: str | None = None
    channel_type: str | None = None
    event_data: dict = Field(default_factory=dict)
    status: DeliveryStatus
    sent_at: float
    error_message: str | None = None


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

class ReportCreate(BaseModel):
    project_path: str | None = None
    timeframe: str = "last_day"
    format: str = "json"
    include_metrics: bool = True
    report_type: str = "comprehensive"
    window_start: float | None = None
    window_end: float | None = None


class ReportOut(BaseModel):
    id: str
    report_type: str
    project_path: str | None = None
    format: ReportFormat
    window_start: float
    window_end: float
    storage_location: str | None = None
    summary_text: str | None = None
    metadata: dict = Field(default_factory=dict)
    created_at: float
    content: str | None = None


class ReportTemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    template_content: str = Field(..., min_length=1)
    format: str = "markdown"
    variables: list[str] = Field(default_factory=list)


class ReportTemplateOut(BaseModel):
    id: str
    name: str
    description: str = ""
    template_content: str
    format: str
    variables: list[str] = Field(default_factory=list)
    created_at: float


class TemplateRenderRequest(BaseModel):
    data: dict = Field(default_factory=dict)
    variables: dict = Field(default_factory=dict)


class RenderedContentOut(BaseModel):
    template_id: str
    name: str | None = None
    format: str | None = None
    content: str
