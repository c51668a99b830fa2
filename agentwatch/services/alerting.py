#  Agent Watch - Alerting Engine
#
#  Rule evaluation and channel dispatch. Every pipeline event is matched
#  against enabled rules (highest priority first); each action of each
#  matching rule renders its template, sends through its channel and is
#  recorded as a sent_notifications row, success or not.
#  Actions run concurrently under a semaphore; one failing action never
#  stops the others.
#
#  Depends on: db/connection.py, services/channels.py, services/templates.py,
#              models/enums.py, config.py
#  Used by:    container.py, app.py (event bus handler), routes/notifications.py

import asyncio
import json
import logging
import re
import time
import uuid
from datetime import datetime, timezone

from agentwatch.config import MAX_CONCURRENT_DISPATCH
from agentwatch.exceptions import (
    AgentWatchError,
    ChannelDispatchError,
    ChannelNotFoundError,
    NotFoundError,
    ValidationError,
)
from agentwatch.models.enums import (
    PRIORITY_RANK,
    ChannelType,
    DeliveryStatus,
    Priority,
    parse_enum,
)
from agentwatch.services.channels import SendResult, build_sender, validate_channel_config
from agentwatch.services.templates import TemplateRenderer

logger = logging.getLogger("agentwatch.alerting")

MANUAL_RULE_ID = "manual"
DEFAULT_CONSOLE_CHANNEL_ID = "console"


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _loads(raw, default):
    return json.loads(raw) if raw else default


# ---------------------------------------------------------------------------
# Rule matching
# ---------------------------------------------------------------------------

def _wildcard_regex(pattern: str) -> re.Pattern:
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")))


def matches_conditions(event: dict, conditions: dict) -> bool:
    """Conjunctive match of rule conditions against an event view.

    A condition on a field the event does not carry is skipped. A list
    means membership, a string containing "*" is an anchored wildcard,
    anything else must be equal.
    """
    for key, expected in conditions.items():
        if key not in event or event[key] is None:
            continue
        actual = event[key]
        if isinstance(expected, list):
            if actual not in expected:
                return False
        elif isinstance(expected, str) and "*" in expected:
            if not _wildcard_regex(expected).fullmatch(str(actual)):
                return False
        elif actual != expected:
            return False
    return True


def event_view(event_type: str, project_path=None, agent_id=None, priority="medium",
               metadata: dict | None = None) -> dict:
    """Flat view rules are matched against."""
    return {
        **(metadata or {}),
        "event": event_type,
        "type": event_type,
        "projectPath": project_path,
        "agentId": agent_id,
        "priority": priority,
    }


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------

def _channel_row_to_dict(row) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "type": row["type"],
        "configuration": _loads(row["configuration_json"], {}),
        "enabled": bool(row["enabled"]),
        "created_at": row["created_at"],
        "last_used": row["last_used"],
    }


def _rule_row_to_dict(row) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "description": row["description"] or "",
        "conditions": _loads(row["conditions_json"], {}),
        "actions": _loads(row["actions_json"], []),
        "priority": row["priority"],
        "enabled": bool(row["enabled"]),
        "created_at": row["created_at"],
        "last_triggered": row["last_triggered"],
        "trigger_count": row["trigger_count"],
    }


def _template_row_to_dict(row) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "subject_template": row["subject_template"],
        "body_template": row["body_template"],
        "format": row["format"],
        "variables": _loads(row["variables_json"], []),
        "created_at": row["created_at"],
    }


def _validate_actions(actions: list[dict]):
    if not actions:
        raise ValidationError("A rule needs at least one action")
    for action in actions:
        if not isinstance(action, dict) or not (action.get("channel") or action.get("channelId")):
            raise ValidationError("Every rule action needs a 'channel'")


class AlertingEngine:
    """Owns notification_channels, notification_rules, sent_notifications, alert_templates."""

    def __init__(self, db, renderer: TemplateRenderer | None = None, http_client=None,
                 sender_factory=build_sender, max_concurrency: int = MAX_CONCURRENT_DISPATCH,
                 clock=time.time):
        self._db = db
        self._renderer = renderer or TemplateRenderer(clock=clock)
        self._http = http_client
        self._sender_factory = sender_factory
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._clock = clock

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    async def add_channel(self, name: str, channel_type: str, configuration: dict | None = None,
                          enabled: bool = True, channel_id: str | None = None) -> str:
        if not name:
            raise ValidationError("Channel name is required")
        channel_type = parse_enum(ChannelType, channel_type, "channel type")
        configuration = dict(configuration or {})
        validate_channel_config(channel_type, configuration)

        channel_id = channel_id or _new_id()
        await self._db.execute_write(
            "INSERT INTO notification_channels (id, name, type, configuration_json, enabled, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (channel_id, name, channel_type.value, json.dumps(configuration), int(enabled), self._clock()),
        )
        logger.info("Notification channel added: %s (%s)", name, channel_type.value)
        return channel_id

    async def get_channel(self, channel_id: str) -> dict:
        row = await self._db.fetchone("SELECT * FROM notification_channels WHERE id = ?", (channel_id,))
        if not row:
            raise NotFoundError(f"Channel {channel_id} not found")
        return _channel_row_to_dict(row)

    async def update_channel(self, channel_id: str, name: str | None = None,
                             configuration: dict | None = None, enabled: bool | None = None) -> dict:
        channel = await self.get_channel(channel_id)
        if configuration is not None:
            validate_channel_config(ChannelType(channel["type"]), configuration)
        await self._db.execute_write(
            "UPDATE notification_channels SET name = ?, configuration_json = ?, enabled = ? WHERE id = ?",
            (name or channel["name"],
             json.dumps(configuration if configuration is not None else channel["configuration"]),
             int(enabled if enabled is not None else channel["enabled"]),
             channel_id),
        )
        return await self.get_channel(channel_id)

    async def list_channels(self) -> list[dict]:
        rows = await self._db.fetchall("SELECT * FROM notification_channels ORDER BY created_at")
        return [_channel_row_to_dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    async def add_rule(self, name: str, description: str = "", conditions: dict | None = None,
                       actions: list[dict] | None = None, priority: str = "medium",
                       enabled: bool = True) -> str:
        if not name:
            raise ValidationError("Rule name is required")
        priority = parse_enum(Priority, priority, "priority")
        actions = list(actions or [])
        _validate_actions(actions)

        rule_id = _new_id()
        await self._db.execute_write(
            "INSERT INTO notification_rules (id, name, description, conditions_json, actions_json, "
            "priority, enabled, created_at, trigger_count) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0)",
            (rule_id, name, description or "", json.dumps(conditions or {}), json.dumps(actions),
             priority.value, int(enabled), self._clock()),
        )
        logger.info("Notification rule added: %s (%s)", name, priority.value)
        return rule_id

    async def get_rule(self, rule_id: str) -> dict:
        row = await self._db.fetchone("SELECT * FROM notification_rules WHERE id = ?", (rule_id,))
        if not row:
            raise NotFoundError(f"Rule {rule_id} not found")
        return _rule_row_to_dict(row)

    async def update_rule(self, rule_id: str, **changes) -> dict:
        rule = await self.get_rule(rule_id)
        if changes.get("priority") is not None:
            rule["priority"] = parse_enum(Priority, changes["priority"], "priority").value
        if changes.get("actions") is not None:
            _validate_actions(changes["actions"])
            rule["actions"] = changes["actions"]
        for key in ("name", "description", "conditions", "enabled"):
            if changes.get(key) is not None:
                rule[key] = changes[key]

        await self._db.execute_write(
            "UPDATE notification_rules SET name = ?, description = ?, conditions_json = ?, "
            "actions_json = ?, priority = ?, enabled = ? WHERE id = ?",
            (rule["name"], rule["description"], json.dumps(rule["conditions"]),
             json.dumps(rule["actions"]), rule["priority"], int(rule["enabled"]), rule_id),
        )
        return await self.get_rule(rule_id)

    async def delete_rule(self, rule_id: str):
        await self.get_rule(rule_id)
        await self._db.execute_write("DELETE FROM notification_rules WHERE id = ?", (rule_id,))
        logger.info("Notification rule %s deleted", rule_id)

    async def list_rules(self, enabled_only: bool = False) -> list[dict]:
        sql = "SELECT * FROM notification_rules"
        if enabled_only:
            sql += " WHERE enabled = 1"
        rows = await self._db.fetchall(sql)
        rules = [_rule_row_to_dict(r) for r in rows]
        rules.sort(key=lambda r: (-PRIORITY_RANK.get(Priority(r["priority"]), 0), r["created_at"]))
        return rules

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    async def create_template(self, name: str, subject_template: str, body_template: str,
                              format: str = "text", variables: list[str] | None = None) -> str:
        if not name:
            raise ValidationError("Template name is required")
        if format not in ("text", "html"):
            raise ValidationError(f"Alert template format must be 'text' or 'html', got '{format}'")
        html = format == "html"
        self._renderer.validate(subject_template)
        self._renderer.validate(body_template, html=html)

        template_id = _new_id()
        await self._db.execute_write(
            "INSERT INTO alert_templates (id, name, subject_template, body_template, format, "
            "variables_json, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (template_id, name, subject_template, body_template, format,
             json.dumps(variables or []), self._clock()),
        )
        return template_id

    async def get_template(self, template_id: str) -> dict:
        row = await self._db.fetchone("SELECT * FROM alert_templates WHERE id = ?", (template_id,))
        if not row:
            raise NotFoundError(f"Template {template_id} not found")
        return _template_row_to_dict(row)

    async def list_templates(self) -> list[dict]:
        rows = await self._db.fetchall("SELECT * FROM alert_templates ORDER BY created_at")
        return [_template_row_to_dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def send_alert(self, event_type: str, project_path: str | None = None,
                         agent_id: str | None = None, message: str = "",
                         metadata: dict | None = None, priority: str = "medium") -> dict:
        """Evaluate every enabled rule against an event and run matching actions.

        Returns the event data, the matched rule ids (priority order) and one
        result per executed action.
        """
        priority = parse_enum(Priority, priority, "priority").value
        metadata = dict(metadata or {})
        view = event_view(event_type, project_path, agent_id, priority, metadata)

        matched = [r for r in await self.list_rules(enabled_only=True)
                   if matches_conditions(view, r["conditions"])]

        event_data = {
            "type": event_type,
            "message": message,
            "metadata": metadata,
            "agentId": agent_id,
            "projectPath": project_path,
            "priority": priority,
            "timestamp": datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat(),
        }

        jobs = []
        for rule in matched:
            rule_data = {**event_data, "rule": rule["name"]}
            for action in rule["actions"]:
                jobs.append(self._run_action(rule["id"], action, rule_data))
        results = await asyncio.gather(*jobs)

        now = self._clock()
        for rule in matched:
            await self._db.execute_write(
                "UPDATE notification_rules SET last_triggered = ?, trigger_count = trigger_count + 1 "
                "WHERE id = ?",
                (now, rule["id"]),
            )

        failed = sum(1 for r in results if r["status"] == DeliveryStatus.ERROR.value)
        if matched:
            logger.info("Alert %s: %d rule(s), %d action(s), %d failed",
                        event_type, len(matched), len(results), failed)
        return {
            "event": event_data,
            "matched_rules": [r["id"] for r in matched],
            "results": list(results),
        }

    async def handle_event(self, event: dict) -> dict:
        """Event bus entry point."""
        return await self.send_alert(
            event["type"],
            project_path=event.get("projectPath"),
            agent_id=event.get("agentId"),
            message=event.get("message", ""),
            metadata=event.get("metadata") or {},
            priority=event.get("priority") or "medium",
        )

    async def test_channel(self, channel_id: str) -> dict:
        await self.get_channel(channel_id)
        event_data = {
            "type": "test",
            "message": "This is a test notification from Agent Watch",
            "metadata": {},
            "agentId": "test-agent",
            "projectPath": "test-project",
            "priority": Priority.LOW.value,
            "timestamp": datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat(),
        }
        return await self._run_action(MANUAL_RULE_ID, {"channel": channel_id}, event_data)

    async def _run_action(self, rule_id: str, action: dict, event_data: dict) -> dict:
        channel_id = action.get("channel") or action.get("channelId")
        async with self._semaphore:
            try:
                result = await self._execute_action(channel_id, action, event_data)
            except AgentWatchError as e:
                result = SendResult.failed(str(e), errorType=type(e).__name__)
            except Exception as e:
                # Isolation boundary: a broken sender must not take down the dispatch
                logger.exception("Action on channel %s failed", channel_id)
                err = ChannelDispatchError(channel_id, e)
                result = SendResult.failed(str(err), errorType=type(err).__name__)

        if result.status == DeliveryStatus.ERROR:
            logger.warning("Notification via %s failed: %s", channel_id, result.error)

        notification_id = _new_id()
        await self._db.execute_write(
            "INSERT INTO sent_notifications (id, rule_id, channel_id, event_data_json, status, "
            "sent_at, error_message) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (notification_id, rule_id, channel_id or "", json.dumps(event_data, default=str),
             result.status.value, self._clock(), result.error),
        )
        return {
            "rule_id": rule_id,
            "channel_id": channel_id,
            "notification_id": notification_id,
            "status": result.status.value,
            "error": result.error,
        }

    async def _execute_action(self, channel_id: str | None, action: dict, event_data: dict) -> SendResult:
        if not channel_id:
            raise ValidationError("Action has no channel")
        row = await self._db.fetchone(
            "SELECT * FROM notification_channels WHERE id = ? AND enabled = 1", (channel_id,)
        )
        if not row:
            raise ChannelNotFoundError(channel_id)
        channel = _channel_row_to_dict(row)

        subject = f"Alert: {event_data['type']}"
        body = event_data.get("message") or ""
        template_id = action.get("template") or action.get("templateId")
        if template_id:
            template_row = await self._db.fetchone(
                "SELECT * FROM alert_templates WHERE id = ?", (template_id,)
            )
            if template_row:
                context = {**event_data.get("metadata", {}), **event_data}
                subject = self._renderer.render(template_row["subject_template"], context)
                body = self._renderer.render(
                    template_row["body_template"], context, html=template_row["format"] == "html",
                )
            else:
                logger.warning("Template %s not found, using default subject/body", template_id)

        sender = self._sender_factory(channel["type"], channel["configuration"], self._http)
        result = await sender.send(subject, body, event_data)
        if result.status == DeliveryStatus.ERROR:
            result.error = str(ChannelDispatchError(channel_id, result.error))
        else:
            await self._db.execute_write(
                "UPDATE notification_channels SET last_used = ? WHERE id = ?",
                (self._clock(), channel_id),
            )
        return result

    # ------------------------------------------------------------------
    # History & setup
    # ------------------------------------------------------------------

    async def get_notification_history(self, limit: int = 50, channel_id: str | None = None) -> list[dict]:
        sql = (
            "SELECT sn.*, nr.name AS rule_name, nc.name AS channel_name, nc.type AS channel_type "
            "FROM sent_notifications sn "
            "LEFT JOIN notification_rules nr ON sn.rule_id = nr.id "
            "LEFT JOIN notification_channels nc ON sn.channel_id = nc.id"
        )
        params: list = []
        if channel_id:
            sql += " WHERE sn.channel_id = ?"
            params.append(channel_id)
        sql += " ORDER BY sn.sent_at DESC LIMIT ?"
        params.append(limit)
        rows = await self._db.fetchall(sql, params)
        return [
            {
                "id": r["id"],
                "rule_id": r["rule_id"],
                "rule_name": r["rule_name"],
                "channel_id": r["channel_id"],
                "channel_name": r["channel_name"],
                "channel_type": r["channel_type"],
                "event_data": _loads(r["event_data_json"], {}),
                "status": r["status"],
                "sent_at": r["sent_at"],
                "error_message": r["error_message"],
            }
            for r in rows
        ]

    async def get_channel_stats(self) -> list[dict]:
        rows = await self._db.fetchall(
            "SELECT nc.id, nc.name, nc.type, nc.enabled, COUNT(sn.id) AS total, "
            "SUM(CASE WHEN sn.status = 'error' THEN 1 ELSE 0 END) AS failed, "
            "MAX(sn.sent_at) AS last_notification "
            "FROM notification_channels nc LEFT JOIN sent_notifications sn ON nc.id = sn.channel_id "
            "GROUP BY nc.id ORDER BY total DESC"
        )
        return [
            {
                "id": r["id"],
                "name": r["name"],
                "type": r["type"],
                "enabled": bool(r["enabled"]),
                "total_notifications": r["total"],
                "failed_notifications": r["failed"] or 0,
                "last_notification": r["last_notification"],
            }
            for r in rows
        ]

    async def setup_defaults(self) -> dict:
        """Create the console channel and the default rules if missing."""
        created = {"channel": None, "rules": []}
        existing = await self._db.fetchone(
            "SELECT id FROM notification_channels WHERE id = ?", (DEFAULT_CONSOLE_CHANNEL_ID,)
        )
        if not existing:
            created["channel"] = await self.add_channel(
                "Console", ChannelType.CONSOLE, {}, channel_id=DEFAULT_CONSOLE_CHANNEL_ID,
            )

        names = {r["name"] for r in await self.list_rules()}
        console = [{"channel": DEFAULT_CONSOLE_CHANNEL_ID}]
        defaults = [
            ("High Impact Changes", "Alert on high and critical impact code changes",
             {"event": "high_impact_change", "impact": ["high", "critical"]}, "high"),
            ("Task Failures", "Alert when tasks are blocked or fail",
             {"event": "task_status_changed", "status": ["blocked", "failed"]}, "medium"),
            ("Agent Errors", "Alert on agent errors",
             {"event": "*error*"}, "critical"),
        ]
        for name, description, conditions, priority in defaults:
            if name in names:
                continue
            created["rules"].append(
                await self.add_rule(name, description, conditions, console, priority)
            )
        if created["channel"] or created["rules"]:
            logger.info("Default alerting setup: %d rule(s) created", len(created["rules"]))
        return created
