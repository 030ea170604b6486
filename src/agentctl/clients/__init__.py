"""API clients for the services the engine talks to."""

from agentctl.clients.backup import BackupClient
from agentctl.clients.base import ServiceClient
from agentctl.clients.checks import CheckServiceClient, RunStatus
from agentctl.clients.slack import SlackClient

__all__ = ["BackupClient", "CheckServiceClient", "RunStatus", "ServiceClient", "SlackClient"]
