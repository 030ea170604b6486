"""Slack Web API client."""

from typing import Any

import httpx

from agentctl.clients.base import ServiceClient
from agentctl.config import SlackConfig
from agentctl.core.exceptions import SlackError

BASE_URL = "https://slack.com/api"

EVENT_EMOJI = {
    "started": ":rocket:",
    "approved": ":thumbsup:",
    "rejected": ":no_entry:",
    "completed": ":white_check_mark:",
    "failed": ":x:",
    "rolled_back": ":rewind:",
}


class SlackClient(ServiceClient):
    """Client for the Slack Web API, authenticated with a bot token."""

    service_name = "Slack"
    error_class = SlackError
    content_type = "application/json; charset=utf-8"

    def __init__(self, config: SlackConfig):
        super().__init__(config.timeout)
        self._config = config

    def _base_url(self) -> str | None:
        return BASE_URL

    def _token(self) -> str | None:
        return self._config.get_token()

    def _parse(self, response: httpx.Response) -> Any:
        # Slack answers 200 with ok=false for API-level errors
        data = response.json()
        if not data.get("ok", False):
            error_code = data.get("error", "unknown_error")
            raise SlackError(f"Slack API error: {error_code}", error_code=error_code)
        return data

    def _http_error(self, response: httpx.Response) -> SlackError:
        status_code = response.status_code
        return SlackError(
            f"HTTP {status_code}: {response.text}",
            error_code=str(status_code),
            status_code=status_code,
        )

    def post(self, endpoint: str, **kwargs: Any) -> Any:
        return self._request("POST", endpoint, **kwargs)

    def post_message(
        self,
        channel: str,
        text: str,
        blocks: list[dict[str, Any]] | None = None,
        username: str | None = None,
        icon_emoji: str | None = None,
    ) -> dict[str, Any]:
        """Post a message to a channel, using the configured bot identity by default."""
        payload: dict[str, Any] = {
            "channel": channel,
            "text": text,
            "username": username or self._config.username,
            "icon_emoji": icon_emoji or self._config.icon_emoji,
        }
        if blocks:
            payload["blocks"] = blocks

        result = self.post("chat.postMessage", json=payload)
        return result.get("message", {})

    def send_deployment_notification(
        self,
        channel: str,
        text: str,
        deployment_id: str,
        version: str,
        environment: str,
        event: str,
    ) -> dict[str, Any]:
        """Post a deployment lifecycle event with a summary block."""
        emoji = EVENT_EMOJI.get(event, ":information_source:")
        title = event.replace("_", " ").title()
        fields = {
            "Deployment": deployment_id,
            "Version": version,
            "Environment": environment,
            "Event": event,
        }

        blocks = [
            {"type": "header", "text": {"type": "plain_text", "text": f"Deployment {title}"}},
            {"type": "section", "text": {"type": "mrkdwn", "text": f"{emoji} {text}"}},
            {
                "type": "section",
                "fields": [{"type": "mrkdwn", "text": f"*{label}:*\n{value}"} for label, value in fields.items()],
            },
        ]

        return self.post_message(channel, f"{emoji} {text}", blocks=blocks)
