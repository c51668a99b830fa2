#  Agent Watch - Notification Channels
#
#  Interchangeable senders behind one capability:
#  send(subject, body, event_data) -> SendResult.
#  Console logs, webhook and Slack POST via httpx, email goes through
#  smtplib on a worker thread.
#
#  Depends on: config.py, exceptions.py, models/enums.py
#  Used by:    services/alerting.py

import asyncio
import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage

import httpx

from agentwatch.config import (
    SMTP_FROM,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USE_TLS,
    SMTP_USERNAME,
    WEBHOOK_TIMEOUT,
)
from agentwatch.exceptions import ValidationError
from agentwatch.models.enums import ChannelType, DeliveryStatus

logger = logging.getLogger("agentwatch.alerting")
console_logger = logging.getLogger("agentwatch.alerts")

SLACK_COLORS = {
    "critical": "danger",
    "high": "warning",
    "medium": "good",
    "low": "#36a64f",
}

_CONSOLE_LEVELS = {
    "critical": logging.ERROR,
    "high": logging.WARNING,
}

# Required configuration keys per channel type
_REQUIRED_KEYS = {
    ChannelType.CONSOLE: (),
    ChannelType.WEBHOOK: ("url",),
    ChannelType.SLACK: ("webhook_url",),
    ChannelType.EMAIL: ("to",),
}


@dataclass
class SendResult:
    status: DeliveryStatus
    error: str | None = None
    details: dict = field(default_factory=dict)

    @classmethod
    def sent(cls, **details) -> "SendResult":
        return cls(DeliveryStatus.SENT, None, details)

    @classmethod
    def failed(cls, error: str, **details) -> "SendResult":
        return cls(DeliveryStatus.ERROR, error, details)


def validate_channel_config(channel_type: ChannelType, configuration: dict):
    missing = [k for k in _REQUIRED_KEYS[channel_type] if not configuration.get(k)]
    if missing:
        raise ValidationError(
            f"{channel_type.value} channel requires configuration key(s): {', '.join(missing)}"
        )


class ConsoleSender:
    def __init__(self, configuration: dict):
        self._config = configuration

    async def send(self, subject: str, body: str, event_data: dict) -> SendResult:
        priority = event_data.get("priority") or "medium"
        console_logger.log(
            _CONSOLE_LEVELS.get(priority, logging.INFO),
            "[%s] %s | %s | agent=%s project=%s",
            priority.upper(), subject, body,
            event_data.get("agentId") or "N/A", event_data.get("projectPath") or "N/A",
        )
        return SendResult.sent(method="console")


class WebhookSender:
    def __init__(self, configuration: dict, http_client: httpx.AsyncClient | None = None):
        self._config = configuration
        self._http = http_client

    async def _post(self, url: str, payload: dict) -> httpx.Response:
        client = self._http or httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT)
        try:
            return await client.post(
                url, json=payload, headers=self._config.get("headers") or {}, timeout=WEBHOOK_TIMEOUT,
            )
        finally:
            if not self._http:
                await client.aclose()

    def payload(self, subject: str, body: str, event_data: dict) -> dict:
        return {**event_data, "subject": subject, "message": body}

    async def send(self, subject: str, body: str, event_data: dict) -> SendResult:
        url = self._config.get("url")
        try:
            resp = await self._post(url, self.payload(subject, body, event_data))
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Webhook delivery to %s failed: %s", url, e)
            return SendResult.failed(f"{type(e).__name__}: {e}", method="webhook", url=url)
        return SendResult.sent(method="webhook", url=url, status_code=resp.status_code)


class SlackSender(WebhookSender):
    def payload(self, subject: str, body: str, event_data: dict) -> dict:
        payload = {
            "text": subject,
            "attachments": [{
                "color": SLACK_COLORS.get(event_data.get("priority"), "good"),
                "title": subject,
                "text": body,
                "fields": [
                    {"title": "Agent", "value": event_data.get("agentId") or "N/A", "short": True},
                    {"title": "Project", "value": event_data.get("projectPath") or "N/A", "short": True},
                    {"title": "Timestamp", "value": str(event_data.get("timestamp", "")), "short": True},
                ],
            }],
        }
        if self._config.get("channel"):
            payload["channel"] = self._config["channel"]
        return payload

    async def send(self, subject: str, body: str, event_data: dict) -> SendResult:
        url = self._config.get("webhook_url")
        try:
            resp = await self._post(url, self.payload(subject, body, event_data))
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Slack delivery failed: %s", e)
            return SendResult.failed(f"{type(e).__name__}: {e}", method="slack")
        return SendResult.sent(method="slack", channel=self._config.get("channel", "#alerts"))


class EmailSender:
    def __init__(self, configuration: dict):
        self._config = configuration

    def _recipients(self) -> list[str]:
        to = self._config.get("to") or []
        return [to] if isinstance(to, str) else list(to)

    def _deliver(self, message: EmailMessage):
        host = self._config.get("smtp_host", SMTP_HOST)
        port = self._config.get("smtp_port", SMTP_PORT)
        with smtplib.SMTP(host, port, timeout=WEBHOOK_TIMEOUT) as smtp:
            if self._config.get("use_tls", SMTP_USE_TLS):
                smtp.starttls()
            if SMTP_USERNAME:
                smtp.login(SMTP_USERNAME, SMTP_PASSWORD)
            smtp.send_message(message)

    async def send(self, subject: str, body: str, event_data: dict) -> SendResult:
        recipients = self._recipients()
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self._config.get("from", SMTP_FROM)
        message["To"] = ", ".join(recipients)
        message.set_content(body)
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("Email delivery to %s failed: %s", recipients, e)
            return SendResult.failed(f"{type(e).__name__}: {e}", method="email")
        return SendResult.sent(method="email", recipients=recipients)


def build_sender(channel_type: str, configuration: dict, http_client: httpx.AsyncClient | None = None):
    channel_type = ChannelType(channel_type)
    if channel_type == ChannelType.CONSOLE:
        return ConsoleSender(configuration)
    if channel_type == ChannelType.WEBHOOK:
        return WebhookSender(configuration, http_client)
    if channel_type == ChannelType.SLACK:
        return SlackSender(configuration, http_client)
    return EmailSender(configuration)
