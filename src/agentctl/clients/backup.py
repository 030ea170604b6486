"""Backup Service API client."""

from typing import Any

from agentctl.clients.base import ServiceClient
from agentctl.config import BackupServiceConfig
from agentctl.core.exceptions import BackupServiceError


class BackupClient(ServiceClient):
    """Client for the Backup Service REST API.

    Snapshots are taken in two steps: a snapshot config describes what to
    capture, and a snapshot is one capture of that config.
    """

    service_name = "Backup Service"
    error_class = BackupServiceError

    def __init__(self, config: BackupServiceConfig):
        super().__init__(config.timeout)
        self._config = config

    def _base_url(self) -> str | None:
        return self._config.get_url()

    def _token(self) -> str | None:
        return self._config.get_token()

    def create_snapshot_config(
        self,
        name: str,
        targets: list[dict[str, Any]],
        description: str = "",
    ) -> str:
        """Register a manual snapshot config and return its id."""
        payload = {
            "name": name,
            "description": description,
            "schedule": {"frequency": "manual"},
            "targets": targets,
            "enabled": True,
        }
        data = self._request("POST", "/snapshot-configs", json=payload)
        return data["id"]

    def create_snapshot(self, config_id: str) -> str:
        """Capture a snapshot for a config and return the snapshot id."""
        data = self._request("POST", f"/snapshot-configs/{config_id}/snapshots")
        return data["id"]

    def restore_snapshot(self, snapshot_id: str) -> None:
        """Restore everything captured in a snapshot, overwriting live state."""
        self._request("POST", f"/snapshots/{snapshot_id}/restore", json={"overwrite": True})
