"""Rollback of deployments that failed post-deployment validation."""

import concurrent.futures
from typing import Any, Protocol

from agentctl.core.exceptions import InvalidTransition, RollbackFailure
from agentctl.core.logging import get_logger
from agentctl.core.timing import Clock, Deadline, call_with_timeout, utcnow
from agentctl.deploy.models import Deployment, DeploymentStatus, LogLevel, RollbackRecord
from agentctl.deploy.state import DeploymentState
from agentctl.deploy.strategies.base import RolloutTarget

logger = get_logger(__name__)

COMPONENT = "rollback-controller"


class BackupService(Protocol):
    """Backup Service operations used for snapshots and restores."""

    def create_snapshot_config(
        self,
        name: str,
        targets: list[dict[str, Any]],
        description: str = "",
    ) -> str: ...

    def create_snapshot(self, config_id: str) -> str: ...

    def restore_snapshot(self, snapshot_id: str) -> None: ...


class RollbackController:
    """Reverts a deployment to its pre-deployment state.

    The revert restores the pre-deployment snapshot, when one was taken, and
    routes traffic back through the rollout target. A failed revert is
    recorded on the deployment rather than raised; the deployment still ends
    in ``rolled_back``.
    """

    def __init__(
        self,
        state: DeploymentState,
        target: RolloutTarget,
        clock: Clock,
        backup: BackupService | None = None,
    ):
        self._state = state
        self._target = target
        self._clock = clock
        self._backup = backup

    def rollback(
        self,
        deployment_id: str,
        reason: str,
        triggered_by: str = "system",
        max_rollback_time: float = 10,
        manual_approval_required: bool = False,
    ) -> RollbackRecord:
        """Roll a deployment back.

        Args:
            deployment_id: Deployment to roll back
            reason: Why the rollback happened
            triggered_by: ``system`` or the operator who asked for it
            max_rollback_time: Minutes the revert may take
            manual_approval_required: Policy flag, recorded in the log

        Returns:
            The immutable rollback record

        Raises:
            InvalidTransition: If the deployment cannot roll back from its
                current state or was already rolled back
        """
        log = logger.bind(deployment_id=deployment_id)

        def begin(deployment: Deployment) -> None:
            if deployment.rollback is not None:
                raise InvalidTransition(
                    "Rollback already recorded for this deployment",
                    deployment_id=deployment.id,
                    current=deployment.status.value,
                )
            deployment.transition_to(DeploymentStatus.ROLLING_BACK, reason=reason)
            deployment.add_log(
                LogLevel.WARN,
                f"Initiating rollback: {reason}",
                component=COMPONENT,
                details={"triggered_by": triggered_by},
            )
            if manual_approval_required:
                deployment.add_log(
                    LogLevel.WARN,
                    "Rollback policy requests manual approval; rolling back automatically",
                    component=COMPONENT,
                )

        deployment = self._state.update(deployment_id, begin)
        log.warning("Rolling back deployment", reason=reason, triggered_by=triggered_by)

        started = self._clock.monotonic()
        deadline = Deadline(self._clock, max_rollback_time * 60)
        error: str | None = None

        try:
            self._revert(deployment, deadline)
        except Exception as e:
            error = str(e)
            log.error("Rollback revert failed", error=error)

        record = RollbackRecord(
            triggered_by=triggered_by,
            reason=reason,
            timestamp=utcnow(),
            previous_version=deployment.previous_version,
            rollback_duration=self._clock.monotonic() - started,
            success=error is None,
            error=error,
        )

        def finish(d: Deployment) -> None:
            d.set_rollback(record)
            if record.success:
                d.add_log(
                    LogLevel.INFO,
                    f"Rollback completed in {record.rollback_duration:.1f}s",
                    component=COMPONENT,
                    details={"previous_version": record.previous_version},
                )
            else:
                d.add_log(
                    LogLevel.ERROR,
                    f"Rollback failed: {error}",
                    component=COMPONENT,
                )
            d.transition_to(DeploymentStatus.ROLLED_BACK, reason=reason)

        self._state.update(deployment_id, finish)
        log.info("Deployment rolled back", success=record.success, duration=record.rollback_duration)
        return record

    def _revert(self, deployment: Deployment, deadline: Deadline) -> None:
        """Restore the snapshot, then route traffic back.

        Raises:
            RollbackFailure: If the restore fails or outlives the deadline
        """
        if deployment.snapshot_id and self._backup is not None:
            snapshot_id = deployment.snapshot_id
            self._log(deployment.id, LogLevel.INFO, f"Restoring snapshot {snapshot_id}")
            try:
                call_with_timeout(
                    lambda: self._backup.restore_snapshot(snapshot_id),
                    deadline.remaining() or 0.0,
                )
            except concurrent.futures.TimeoutError:
                raise RollbackFailure(
                    f"Restore exceeded maximum rollback time of {deadline.seconds:.0f}s",
                    deployment_id=deployment.id,
                )
            except Exception as e:
                raise RollbackFailure(f"Snapshot restore failed: {e}", deployment_id=deployment.id)
        else:
            self._log(
                deployment.id,
                LogLevel.WARN,
                "No pre-deployment snapshot; reverting traffic only",
            )

        if deadline.expired():
            raise RollbackFailure(
                f"Rollback exceeded maximum rollback time of {deadline.seconds:.0f}s",
                deployment_id=deployment.id,
            )
        self._target.revert(deployment)

    def _log(self, deployment_id: str, level: LogLevel, message: str) -> None:
        self._state.update(
            deployment_id,
            lambda d: d.add_log(level, message, component=COMPONENT),
        )
