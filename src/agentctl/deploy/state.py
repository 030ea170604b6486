"""Deployment state management."""

import json
import os
import threading
from collections.abc import Callable
from pathlib import Path

from agentctl.core.exceptions import ConcurrentModification, DeploymentError, DeploymentNotFound
from agentctl.core.logging import get_logger, mirror_audit_entry
from agentctl.deploy.models import Deployment, DeploymentStatus, LogEntry

logger = get_logger(__name__)


class DeploymentState:
    """Manage deployment state persistence.

    Each deployment is stored as ``<id>.json`` with its audit log kept next to
    it in ``<id>.log.jsonl``. The JSON document is rewritten on every save and
    carries a ``revision`` counter; the log file is only ever appended to.
    """

    def __init__(self, state_dir: str | Path | None = None):
        """Initialize deployment state manager.

        Args:
            state_dir: Directory to store deployment state
        """
        if state_dir:
            self._state_dir = Path(state_dir)
        else:
            self._state_dir = Path.home() / ".agentctl" / "deployments"
        self._state_dir.mkdir(parents=True, exist_ok=True)

        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    def _state_file(self, deployment_id: str) -> Path:
        return self._state_dir / f"{deployment_id}.json"

    def _log_file(self, deployment_id: str) -> Path:
        return self._state_dir / f"{deployment_id}.log.jsonl"

    def lock(self, deployment_id: str) -> threading.RLock:
        """Get the lock serializing writes to one deployment."""
        with self._locks_guard:
            if deployment_id not in self._locks:
                self._locks[deployment_id] = threading.RLock()
            return self._locks[deployment_id]

    def exists(self, deployment_id: str) -> bool:
        return self._state_file(deployment_id).exists()

    def create(self, deployment: Deployment) -> Deployment:
        """Persist a new deployment record.

        Raises:
            DeploymentError: If a record with the same id already exists
        """
        with self.lock(deployment.id):
            if self.exists(deployment.id):
                raise DeploymentError(
                    f"Deployment already exists: {deployment.id}",
                    deployment_id=deployment.id,
                )
            deployment.revision = 0
            self._write(deployment)
        return deployment

    def save(self, deployment: Deployment) -> None:
        """Save deployment state.

        Args:
            deployment: Deployment to save

        Raises:
            ConcurrentModification: If the record changed since it was loaded
        """
        with self.lock(deployment.id):
            current = self._read_revision(deployment.id)
            if current is not None and current != deployment.revision:
                raise ConcurrentModification(
                    f"Deployment {deployment.id} was modified concurrently "
                    f"(revision {deployment.revision}, stored {current})",
                    deployment_id=deployment.id,
                )
            self._write(deployment)

    def update(self, deployment_id: str, mutate: Callable[[Deployment], None]) -> Deployment:
        """Apply ``mutate`` to the stored deployment and save it.

        The read-modify-write happens under the deployment's lock, so
        concurrent updates to the same record are serialized.

        Returns:
            The updated Deployment
        """
        with self.lock(deployment_id):
            deployment = self.load(deployment_id)
            mutate(deployment)
            self.save(deployment)
            return deployment

    def load(self, deployment_id: str) -> Deployment:
        """Load deployment state.

        Args:
            deployment_id: Deployment ID

        Returns:
            Loaded Deployment

        Raises:
            DeploymentNotFound: If no record exists
        """
        state_file = self._state_file(deployment_id)

        if not state_file.exists():
            raise DeploymentNotFound(deployment_id)

        try:
            with open(state_file) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise DeploymentError(
                f"Failed to load deployment state: {e}",
                deployment_id=deployment_id,
            )

        deployment = Deployment.from_dict(data)
        deployment.logs = self.read_logs(deployment_id)
        return deployment

    def read_logs(self, deployment_id: str) -> list[LogEntry]:
        """Read the audit log of a deployment in append order."""
        log_file = self._log_file(deployment_id)
        if not log_file.exists():
            return []

        entries: list[LogEntry] = []
        with open(log_file) as f:
            for line in f:
                line = line.strip()
                if line:
                    entries.append(LogEntry.from_dict(json.loads(line)))
        return entries

    def list(
        self,
        environment: str | None = None,
        status: DeploymentStatus | None = None,
        limit: int = 50,
    ) -> list[Deployment]:
        """List deployments, newest first.

        Args:
            environment: Filter by environment
            status: Filter by status
            limit: Maximum deployments to return

        Returns:
            List of Deployments
        """
        deployments: list[Deployment] = []

        for state_file in self._state_dir.glob("*.json"):
            try:
                with open(state_file) as f:
                    data = json.load(f)
                deployment = Deployment.from_dict(data)
            except (OSError, ValueError, KeyError) as e:
                logger.warning("Failed to load deployment", path=str(state_file), error=str(e))
                continue

            if environment and deployment.environment != environment:
                continue
            if status and deployment.status != status:
                continue

            deployments.append(deployment)

        deployments.sort(key=lambda d: d.start_time, reverse=True)

        return deployments[:limit]

    def _read_revision(self, deployment_id: str) -> int | None:
        state_file = self._state_file(deployment_id)
        if not state_file.exists():
            return None
        with open(state_file) as f:
            return json.load(f).get("revision", 0)

    def _write(self, deployment: Deployment) -> None:
        """Write the record and append any new log entries."""
        deployment.revision += 1
        state_file = self._state_file(deployment.id)
        tmp_file = state_file.with_suffix(".json.tmp")

        try:
            with open(tmp_file, "w") as f:
                json.dump(deployment.to_dict(include_logs=False), f, indent=2)
            os.replace(tmp_file, state_file)

            self._append_logs(deployment)
        except OSError as e:
            deployment.revision -= 1
            raise DeploymentError(
                f"Failed to save deployment state: {e}",
                deployment_id=deployment.id,
            )

        logger.debug("Saved deployment state", id=deployment.id, revision=deployment.revision)

    def _append_logs(self, deployment: Deployment) -> None:
        log_file = self._log_file(deployment.id)
        persisted = 0
        if log_file.exists():
            with open(log_file) as f:
                persisted = sum(1 for line in f if line.strip())

        new_entries = deployment.logs[persisted:]
        if not new_entries:
            return

        with open(log_file, "a") as f:
            for entry in new_entries:
                f.write(json.dumps(entry.to_dict(), default=str) + "\n")

        for entry in new_entries:
            mirror_audit_entry(deployment.id, entry.level.value, entry.message, entry.component)
