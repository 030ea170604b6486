"""Lifecycle event notifications.

Delivery is fire-and-forget: a channel failure is logged and never changes
the outcome of the deployment that produced the event.
"""

import smtplib
from email.mime.text import MIMEText
from typing import TYPE_CHECKING, Any, Protocol

import httpx
from jinja2 import BaseLoader, Environment, TemplateError

from agentctl.config import EmailConfig, WebhookConfig
from agentctl.core.exceptions import NotificationError
from agentctl.core.logging import get_logger
from agentctl.core.timing import utcnow
from agentctl.deploy.models import Deployment
from agentctl.deploy.schema import DeploymentConfig, DeploymentEvent, NotificationRule

if TYPE_CHECKING:
    from agentctl.clients.slack import SlackClient
    from agentctl.config import ProfileConfig

logger = get_logger(__name__)

DEFAULT_TEMPLATE = (
    "Deployment {{ deployment_id }} ({{ version }}) {{ event }} "
    "in {{ environment }}: {{ message }}"
)


def build_event(
    deployment: Deployment,
    event: DeploymentEvent,
    message: str,
) -> dict[str, Any]:
    """Event record delivered to every channel."""
    return {
        "deployment_id": deployment.id,
        "event": event.value,
        "environment": deployment.environment,
        "timestamp": utcnow().isoformat(),
        "version": deployment.version,
        "message": message,
    }


class NotificationChannel(Protocol):
    """A delivery mechanism for one rule type."""

    def send(self, rule: NotificationRule, record: dict[str, Any], text: str) -> None: ...


class SlackChannel:
    """Posts events to every recipient channel."""

    def __init__(self, client: "SlackClient"):
        self._client = client

    def send(self, rule: NotificationRule, record: dict[str, Any], text: str) -> None:
        for channel in rule.recipients:
            self._client.send_deployment_notification(
                channel,
                text,
                deployment_id=record["deployment_id"],
                version=record["version"],
                environment=record["environment"],
                event=record["event"],
            )


class WebhookChannel:
    """POSTs the event record as JSON to every recipient URL."""

    def __init__(self, config: WebhookConfig):
        self._config = config

    def send(self, rule: NotificationRule, record: dict[str, Any], text: str) -> None:
        payload = {**record, "text": text}
        for url in rule.recipients:
            response = httpx.post(
                url,
                json=payload,
                headers=self._config.headers,
                timeout=self._config.timeout,
            )
            response.raise_for_status()


class EmailChannel:
    """Sends one plain-text email to all recipients."""

    def __init__(self, config: EmailConfig):
        self._config = config

    def send(self, rule: NotificationRule, record: dict[str, Any], text: str) -> None:
        if not self._config.smtp_host:
            raise NotificationError("SMTP host not configured", channel="email")

        msg = MIMEText(text, "plain")
        msg["From"] = self._config.sender
        msg["To"] = ", ".join(rule.recipients)
        msg["Subject"] = (
            f"[{record['environment']}] Deployment {record['deployment_id']} {record['event']}"
        )

        with smtplib.SMTP(
            self._config.smtp_host,
            self._config.smtp_port,
            timeout=self._config.timeout,
        ) as server:
            if self._config.use_tls:
                server.starttls()
            password = self._config.get_password()
            if self._config.username and password:
                server.login(self._config.username, password)
            server.send_message(msg)


class NotificationDispatcher:
    """Routes lifecycle events to the channels named by matching rules."""

    def __init__(self, channels: dict[str, NotificationChannel] | None = None):
        self._channels: dict[str, NotificationChannel] = dict(channels or {})
        self._jinja = Environment(loader=BaseLoader())

    @classmethod
    def from_profile(cls, profile: "ProfileConfig") -> "NotificationDispatcher":
        """Dispatcher with Slack, webhook and email channels from a profile."""
        from agentctl.clients.slack import SlackClient

        return cls(
            {
                "slack": SlackChannel(SlackClient(profile.slack)),
                "webhook": WebhookChannel(profile.webhook),
                "email": EmailChannel(profile.email),
            }
        )

    def register(self, rule_type: str, channel: NotificationChannel) -> None:
        self._channels[rule_type] = channel

    def render(self, rule: NotificationRule, record: dict[str, Any]) -> str:
        """Render a rule's template, or the default one, against the event."""
        template = self._jinja.from_string(rule.template or DEFAULT_TEMPLATE)
        return template.render(**record)

    def notify(
        self,
        config: DeploymentConfig,
        deployment: Deployment,
        event: DeploymentEvent,
        message: str,
    ) -> list[str]:
        """Deliver ``event`` to every rule subscribed to it.

        Returns:
            Rule types that were delivered successfully
        """
        rules = config.rules_for(event)
        if not rules:
            return []

        record = build_event(deployment, event, message)
        delivered: list[str] = []

        for rule in rules:
            channel = self._channels.get(rule.type)
            if channel is None:
                logger.warning("No notification channel configured", type=rule.type, event=event.value)
                continue

            try:
                text = self.render(rule, record)
                channel.send(rule, record, text)
            except TemplateError as e:
                logger.warning("Invalid notification template", type=rule.type, error=str(e))
                continue
            except Exception as e:
                logger.warning(
                    "Notification failed",
                    type=rule.type,
                    deployment_id=deployment.id,
                    event=event.value,
                    error=str(e),
                )
                continue

            delivered.append(rule.type)
            logger.debug("Notification sent", type=rule.type, event=event.value)

        return delivered
