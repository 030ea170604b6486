"""Tests for lifecycle notifications."""

from unittest.mock import MagicMock, patch

import pytest

from agentctl.config import EmailConfig, WebhookConfig
from agentctl.core.exceptions import NotificationError
from agentctl.deploy.models import Deployment
from agentctl.deploy.notifications import (
    EmailChannel,
    NotificationDispatcher,
    SlackChannel,
    WebhookChannel,
    build_event,
)
from agentctl.deploy.schema import DeploymentConfig, DeploymentEvent, NotificationRule


@pytest.fixture
def deployment() -> Deployment:
    return Deployment(id="d41c02aa", version="1.4.0", environment="production")


def config_with(*rules: NotificationRule) -> DeploymentConfig:
    return DeploymentConfig(name="bot", environment="production", notifications=list(rules))


class TestBuildEvent:
    """Tests for build_event."""

    def test_fields(self, deployment):
        record = build_event(deployment, DeploymentEvent.COMPLETED, "done")

        assert record["deployment_id"] == "d41c02aa"
        assert record["event"] == "completed"
        assert record["environment"] == "production"
        assert record["version"] == "1.4.0"
        assert record["message"] == "done"
        assert "timestamp" in record


class TestNotificationDispatcher:
    """Tests for NotificationDispatcher."""

    def test_filters_by_event(self, deployment):
        slack = MagicMock()
        dispatcher = NotificationDispatcher({"slack": slack})
        config = config_with(NotificationRule(type="slack", recipients=["#ops"], events=["failed"]))

        assert dispatcher.notify(config, deployment, DeploymentEvent.COMPLETED, "done") == []
        slack.send.assert_not_called()

        assert dispatcher.notify(config, deployment, DeploymentEvent.FAILED, "boom") == ["slack"]
        slack.send.assert_called_once()

    def test_default_template(self, deployment):
        slack = MagicMock()
        dispatcher = NotificationDispatcher({"slack": slack})
        config = config_with(NotificationRule(type="slack", recipients=["#ops"], events=["completed"]))

        dispatcher.notify(config, deployment, DeploymentEvent.COMPLETED, "all checks passed")

        text = slack.send.call_args[0][2]
        assert text == "Deployment d41c02aa (1.4.0) completed in production: all checks passed"

    def test_custom_template(self, deployment):
        slack = MagicMock()
        dispatcher = NotificationDispatcher({"slack": slack})
        rule = NotificationRule(
            type="slack",
            recipients=["#ops"],
            events=["rolled_back"],
            template="{{ version }} was rolled back ({{ message | upper }})",
        )

        dispatcher.notify(config_with(rule), deployment, DeploymentEvent.ROLLED_BACK, "smoke failed")

        assert slack.send.call_args[0][2] == "1.4.0 was rolled back (SMOKE FAILED)"

    def test_channel_failure_is_swallowed(self, deployment):
        failing = MagicMock()
        failing.send.side_effect = NotificationError("smtp down", channel="email")
        webhook = MagicMock()
        dispatcher = NotificationDispatcher({"email": failing, "webhook": webhook})
        config = config_with(
            NotificationRule(type="email", recipients=["ops@example.com"], events=["failed"]),
            NotificationRule(type="webhook", recipients=["https://hooks.test/x"], events=["failed"]),
        )

        assert dispatcher.notify(config, deployment, DeploymentEvent.FAILED, "boom") == ["webhook"]

    def test_invalid_template_is_swallowed(self, deployment):
        slack = MagicMock()
        dispatcher = NotificationDispatcher({"slack": slack})
        rule = NotificationRule(type="slack", recipients=["#ops"], events=["failed"], template="{{ broken")

        assert dispatcher.notify(config_with(rule), deployment, DeploymentEvent.FAILED, "boom") == []
        slack.send.assert_not_called()

    def test_missing_channel(self, deployment):
        dispatcher = NotificationDispatcher()
        config = config_with(NotificationRule(type="email", recipients=["ops@example.com"], events=["failed"]))

        assert dispatcher.notify(config, deployment, DeploymentEvent.FAILED, "boom") == []

    def test_register(self, deployment):
        dispatcher = NotificationDispatcher()
        email = MagicMock()
        dispatcher.register("email", email)
        config = config_with(NotificationRule(type="email", recipients=["ops@example.com"], events=["failed"]))

        assert dispatcher.notify(config, deployment, DeploymentEvent.FAILED, "boom") == ["email"]


class TestChannels:
    """Tests for the delivery channels."""

    def test_slack_channel_posts_per_recipient(self, deployment):
        client = MagicMock()
        channel = SlackChannel(client)
        rule = NotificationRule(type="slack", recipients=["#ops", "#bots"], events=["completed"])
        record = build_event(deployment, DeploymentEvent.COMPLETED, "done")

        channel.send(rule, record, "text")

        assert client.send_deployment_notification.call_count == 2
        first = client.send_deployment_notification.call_args_list[0]
        assert first.args == ("#ops", "text")
        assert first.kwargs["event"] == "completed"

    def test_webhook_channel_posts_json(self, deployment):
        channel = WebhookChannel(WebhookConfig(headers={"X-Token": "abc"}))
        rule = NotificationRule(type="webhook", recipients=["https://hooks.test/x"], events=["failed"])
        record = build_event(deployment, DeploymentEvent.FAILED, "boom")

        with patch("httpx.post") as mock_post:
            channel.send(rule, record, "text")

        mock_post.assert_called_once()
        assert mock_post.call_args.args == ("https://hooks.test/x",)
        assert mock_post.call_args.kwargs["json"]["deployment_id"] == "d41c02aa"
        assert mock_post.call_args.kwargs["json"]["text"] == "text"
        assert mock_post.call_args.kwargs["headers"] == {"X-Token": "abc"}
        mock_post.return_value.raise_for_status.assert_called_once()

    def test_email_channel_sends(self, deployment):
        channel = EmailChannel(EmailConfig(smtp_host="smtp.test", username="bot", password="secret"))
        rule = NotificationRule(type="email", recipients=["a@example.com", "b@example.com"], events=["failed"])
        record = build_event(deployment, DeploymentEvent.FAILED, "boom")

        with patch("smtplib.SMTP") as mock_smtp:
            channel.send(rule, record, "body")

        server = mock_smtp.return_value.__enter__.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("bot", "secret")
        msg = server.send_message.call_args.args[0]
        assert msg["To"] == "a@example.com, b@example.com"
        assert msg["Subject"] == "[production] Deployment d41c02aa failed"

    def test_email_channel_requires_host(self, deployment):
        channel = EmailChannel(EmailConfig())
        rule = NotificationRule(type="email", recipients=["a@example.com"], events=["failed"])

        with pytest.raises(NotificationError):
            channel.send(rule, build_event(deployment, DeploymentEvent.FAILED, "boom"), "body")
