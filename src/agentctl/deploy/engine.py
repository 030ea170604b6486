"""Deployment orchestration engine.

The engine owns the deployment state machine::

    pending_approval -> approved | rejected
    approved         -> deploying | failed
    deploying        -> testing | failed
    testing          -> completed | rolling_back | failed
    rolling_back     -> rolled_back

Execution of a deployment runs synchronously in the caller's thread:
best-effort snapshot, pre-deployment checks, strategy rollout, a
stabilization delay and post-deployment checks, followed by completion,
failure or rollback.
"""

import threading
from dataclasses import dataclass
from pathlib import Path

from agentctl.config import EngineConfig, ProfileConfig
from agentctl.core.exceptions import Cancelled, DeploymentNotFound, InvalidTransition
from agentctl.core.logging import get_logger
from agentctl.core.timing import Clock, Deadline, SystemClock, cancel_on_interrupt, utcnow
from agentctl.deploy.approvals import ApprovalGate, create_approval_slots
from agentctl.deploy.checks import CheckRunner, CheckService, ProbeRegistry
from agentctl.deploy.configs import DeploymentConfigStore
from agentctl.deploy.models import (
    CheckPhase,
    CheckResult,
    CheckStatus,
    Deployment,
    DeploymentArtifact,
    DeploymentMetrics,
    DeploymentStatus,
    LogEntry,
    LogLevel,
    RollbackRecord,
    StatusChange,
)
from agentctl.deploy.notifications import NotificationDispatcher
from agentctl.deploy.rollback import BackupService, RollbackController
from agentctl.deploy.schema import DeploymentConfig, DeploymentEvent
from agentctl.deploy.state import DeploymentState
from agentctl.deploy.strategies import SimulatedRolloutTarget, StrategyExecutor
from agentctl.deploy.strategies.base import RolloutTarget

logger = get_logger(__name__)

COMPONENT = "deploy-engine"

PRE_DEPLOY_FAILED = "Pre-deployment checks failed"
POST_DEPLOY_FAILED = "Post-deployment checks failed"
WATCHDOG_EXPIRED = "Deployment exceeded maximum duration"
STABILIZATION_LOG = "Waiting for system stabilization"
CANCELLED = "Deployment cancelled"


class WatchdogExpired(Exception):
    """Raised between pipeline steps once the deployment deadline passes."""


@dataclass
class EngineSettings:
    """Tunables of the execution pipeline."""

    stabilization_delay: float = 30.0  # seconds
    default_max_deployment_duration: float | None = None  # minutes

    @classmethod
    def from_config(cls, config: EngineConfig) -> "EngineSettings":
        return cls(
            stabilization_delay=config.stabilization_delay,
            default_max_deployment_duration=config.default_max_deployment_duration,
        )


class DeploymentEngine:
    """Runs deployments from config to a terminal state."""

    def __init__(
        self,
        configs: DeploymentConfigStore,
        state: DeploymentState,
        checks: CheckRunner,
        executor: StrategyExecutor,
        rollback: RollbackController,
        notifier: NotificationDispatcher,
        clock: Clock,
        backup: BackupService | None = None,
        settings: EngineSettings | None = None,
        approvals: ApprovalGate | None = None,
        target: RolloutTarget | None = None,
    ):
        self._configs = configs
        self._state = state
        self._checks = checks
        self._executor = executor
        self._rollback = rollback
        self._notifier = notifier
        self._clock = clock
        self._backup = backup
        self._settings = settings or EngineSettings()
        self._approvals = approvals or ApprovalGate(state, configs, notifier)
        self._target = target

        self._active: set[str] = set()
        self._active_lock = threading.Lock()

    @property
    def configs(self) -> DeploymentConfigStore:
        return self._configs

    @property
    def approvals(self) -> ApprovalGate:
        return self._approvals

    # Configs

    def create_config(self, config: DeploymentConfig) -> DeploymentConfig:
        """Store a new deployment config and return it with its id."""
        return self._configs.create(config)

    # Lifecycle

    def start_deployment(
        self,
        config_id: str,
        version: str,
        deployed_by: str,
        artifacts: list[DeploymentArtifact] | None = None,
    ) -> Deployment:
        """Create a deployment from a config.

        Without approval policies the deployment starts in ``deploying`` and
        is executed before this call returns. Otherwise it waits in
        ``pending_approval`` for the approval gate.

        Raises:
            ConfigNotFound: If the config does not exist
        """
        config = self._configs.get(config_id)

        initial = (
            DeploymentStatus.PENDING_APPROVAL if config.requires_approval else DeploymentStatus.DEPLOYING
        )
        deployment = Deployment(
            config_id=config_id,
            version=version,
            environment=config.environment.value,
            strategy=config.strategy.value,
            deployed_by=deployed_by,
            status=initial,
            approvals=create_approval_slots(config),
            checks=self._create_check_slots(config),
            artifacts=list(artifacts or []),
            previous_version=self._previous_version(config.environment.value),
        )
        deployment.status_history.append(
            StatusChange(status=initial, timestamp=deployment.start_time, reason="Deployment created")
        )
        deployment.add_log(
            LogLevel.INFO,
            f"Deployment started by {deployed_by}",
            component=COMPONENT,
            details={"version": version, "config_id": config_id, "strategy": config.strategy.value},
        )
        self._state.create(deployment)

        logger.info(
            "Deployment started",
            deployment_id=deployment.id,
            version=version,
            environment=deployment.environment,
            status=initial.value,
        )
        self._notify(config, deployment, DeploymentEvent.STARTED, f"Deployment of {version} started by {deployed_by}")

        if initial == DeploymentStatus.DEPLOYING:
            self.execute(deployment.id)

        return self._state.load(deployment.id)

    def approve_deployment(
        self,
        deployment_id: str,
        approver_id: str,
        approved: bool,
        comments: str | None = None,
    ) -> Deployment:
        """Record an approval decision, executing the deployment once approved.

        Raises:
            InvalidTransition: If the decision cannot be recorded
        """
        deployment = self._approvals.record_decision(deployment_id, approver_id, approved, comments)
        if deployment.status == DeploymentStatus.APPROVED:
            self.execute(deployment_id)
        return self._state.load(deployment_id)

    def expire_approvals(self, deployment_id: str) -> bool:
        """Reject a deployment whose approval window elapsed."""
        return self._approvals.expire_overdue(deployment_id)

    def execute(self, deployment_id: str) -> Deployment:
        """Run the execution pipeline of an approved deployment.

        Raises:
            InvalidTransition: If the deployment is not ready to execute or is
                already executing
        """
        with self._active_lock:
            if deployment_id in self._active:
                raise InvalidTransition(
                    "Deployment is already executing",
                    deployment_id=deployment_id,
                )
            self._active.add(deployment_id)

        try:
            self._begin(deployment_id)
            with cancel_on_interrupt(self._clock):
                self._run_pipeline(deployment_id)
        finally:
            with self._active_lock:
                self._active.discard(deployment_id)

        deployment = self._state.load(deployment_id)
        if self._target is not None and deployment.is_terminal:
            self._target.release(deployment)
        return deployment

    def rollback_deployment(
        self,
        deployment_id: str,
        reason: str,
        triggered_by: str,
    ) -> RollbackRecord:
        """Roll back a deployment on operator request.

        Only deployments in ``testing`` can be rolled back.

        Raises:
            InvalidTransition: If the deployment is in any other state
        """
        deployment = self._state.load(deployment_id)
        if deployment.status != DeploymentStatus.TESTING:
            raise InvalidTransition(
                f"Cannot roll back deployment in status {deployment.status.value}",
                deployment_id=deployment_id,
                current=deployment.status.value,
                target=DeploymentStatus.ROLLING_BACK.value,
            )
        config = self._configs.get(deployment.config_id)
        return self._do_rollback(config, deployment_id, reason, triggered_by)

    # Queries

    def get_deployment(self, deployment_id: str) -> Deployment:
        return self._state.load(deployment_id)

    def get_history(self, environment: str | None = None, limit: int = 50) -> list[Deployment]:
        """Deployments, newest first."""
        return self._state.list(environment=environment, limit=limit)

    def get_logs(self, deployment_id: str) -> list[LogEntry]:
        if not self._state.exists(deployment_id):
            raise DeploymentNotFound(deployment_id)
        return self._state.read_logs(deployment_id)

    def get_metrics(self, deployment_id: str) -> DeploymentMetrics | None:
        """Summary metrics, or None while the deployment is still running."""
        deployment = self._state.load(deployment_id)
        if deployment.end_time is None:
            return None

        total = len(deployment.checks)
        passed = sum(1 for c in deployment.checks if c.status == CheckStatus.PASSED)
        success_rate = passed / total if total else 1.0

        return DeploymentMetrics(
            deployment_duration=deployment.duration_seconds or 0.0,
            test_execution_time=sum(c.duration_seconds for c in deployment.checks),
            error_rate=1.0 - success_rate,
            success_rate=success_rate,
        )

    # Pipeline

    def _begin(self, deployment_id: str) -> None:
        def enter_deploying(deployment: Deployment) -> None:
            if deployment.status == DeploymentStatus.APPROVED:
                deployment.transition_to(DeploymentStatus.DEPLOYING, reason="Approved")
            elif deployment.status != DeploymentStatus.DEPLOYING or deployment.visited(DeploymentStatus.TESTING):
                raise InvalidTransition(
                    f"Deployment cannot execute from status {deployment.status.value}",
                    deployment_id=deployment.id,
                    current=deployment.status.value,
                    target=DeploymentStatus.DEPLOYING.value,
                )
            if any(c.status != CheckStatus.PENDING for c in deployment.checks):
                raise InvalidTransition(
                    "Deployment has already been executed",
                    deployment_id=deployment.id,
                    current=deployment.status.value,
                )
            deployment.add_log(LogLevel.INFO, "Starting deployment execution", component=COMPONENT)

        self._state.update(deployment_id, enter_deploying)

    def _run_pipeline(self, deployment_id: str) -> None:
        deployment = self._state.load(deployment_id)
        config = self._configs.get(deployment.config_id)
        deadline = self._watchdog(config)
        log = logger.bind(deployment_id=deployment_id)

        try:
            self._snapshot(deployment_id)
            if not self._checkpoint(deployment_id, deadline):
                return

            self._log(deployment_id, LogLevel.INFO, "Running pre-deployment checks")
            passed = self._checks.run_checks(deployment_id, config.pre_deploy_checks, CheckPhase.PRE_DEPLOY, deadline)
            if not self._checkpoint(deployment_id, deadline):
                return
            if not passed:
                self.fail_deployment(deployment_id, PRE_DEPLOY_FAILED, config)
                return

            self._transition(deployment_id, DeploymentStatus.TESTING, "Pre-deployment checks passed")
            self._log(deployment_id, LogLevel.INFO, f"Executing {config.strategy.value} deployment strategy")
            self._executor.execute(
                deployment_id,
                config.strategy,
                timeout=config.strategy_timeout,
                options=config.strategy_options,
                deadline=deadline,
            )
            if not self._checkpoint(deployment_id, deadline):
                return

            self._log(deployment_id, LogLevel.INFO, STABILIZATION_LOG)
            deadline.sleep(self._settings.stabilization_delay)
            if not self._checkpoint(deployment_id, deadline):
                return

            self._log(deployment_id, LogLevel.INFO, "Running post-deployment checks")
            passed = self._checks.run_checks(deployment_id, config.post_deploy_checks, CheckPhase.POST_DEPLOY, deadline)
            if not self._checkpoint(deployment_id, deadline):
                return

            if passed:
                self._complete(config, deployment_id)
            elif config.rollback_policy.enabled:
                self._do_rollback(config, deployment_id, POST_DEPLOY_FAILED, "system")
            else:
                self.fail_deployment(deployment_id, POST_DEPLOY_FAILED, config)

        except WatchdogExpired:
            log.error("Deployment watchdog expired", limit=deadline.seconds)
            self.fail_deployment(deployment_id, WATCHDOG_EXPIRED, config)
        except (Cancelled, KeyboardInterrupt):
            log.warning("Deployment interrupted")
            self.fail_deployment(deployment_id, CANCELLED, config)
            raise
        except Exception as e:
            reason = WATCHDOG_EXPIRED if deadline.expired() else f"Deployment execution failed: {e}"
            log.error("Deployment execution failed", error=str(e))
            self.fail_deployment(deployment_id, reason, config)

    def fail_deployment(
        self,
        deployment_id: str,
        reason: str,
        config: DeploymentConfig | None = None,
    ) -> Deployment:
        """Move a running deployment to ``failed``.

        A deployment that has already reached a terminal state, or is being
        rolled back, is left untouched.
        """
        failed = False

        def mark_failed(deployment: Deployment) -> None:
            nonlocal failed
            if deployment.is_settled:
                deployment.add_log(
                    LogLevel.WARN,
                    f"Ignoring failure in status {deployment.status.value}: {reason}",
                    component=COMPONENT,
                )
                return
            deployment.transition_to(DeploymentStatus.FAILED, reason=reason)
            deployment.add_log(LogLevel.ERROR, f"Deployment failed: {reason}", component=COMPONENT)
            failed = True

        deployment = self._state.update(deployment_id, mark_failed)
        if failed:
            logger.error("Deployment failed", deployment_id=deployment_id, reason=reason)
            config = config or self._configs.get(deployment.config_id)
            self._notify(config, deployment, DeploymentEvent.FAILED, reason)
        return deployment

    def _complete(self, config: DeploymentConfig, deployment_id: str) -> None:
        def mark_completed(deployment: Deployment) -> None:
            deployment.transition_to(DeploymentStatus.COMPLETED, reason="Post-deployment checks passed")
            deployment.add_log(LogLevel.INFO, "Deployment completed successfully", component=COMPONENT)

        deployment = self._state.update(deployment_id, mark_completed)
        logger.info("Deployment completed", deployment_id=deployment_id, duration=deployment.duration_seconds)
        self._notify(
            config,
            deployment,
            DeploymentEvent.COMPLETED,
            f"Deployment of {deployment.version} completed successfully",
        )

    def _do_rollback(
        self,
        config: DeploymentConfig,
        deployment_id: str,
        reason: str,
        triggered_by: str,
    ) -> RollbackRecord:
        policy = config.rollback_policy
        record = self._rollback.rollback(
            deployment_id,
            reason,
            triggered_by=triggered_by,
            max_rollback_time=policy.max_rollback_time,
            manual_approval_required=policy.manual_approval_required,
        )
        deployment = self._state.load(deployment_id)
        message = f"Deployment rolled back: {reason}"
        if not record.success:
            message = f"{message} (revert failed: {record.error})"
        self._notify(config, deployment, DeploymentEvent.ROLLED_BACK, message)
        return record

    def _snapshot(self, deployment_id: str) -> None:
        """Take the pre-deployment snapshot. Failures are only logged."""
        self._log(deployment_id, LogLevel.INFO, "Creating pre-deployment backup")
        if self._backup is None:
            self._log(deployment_id, LogLevel.WARN, "Backup failed: Backup Service not configured")
            return

        try:
            snapshot_config_id = self._backup.create_snapshot_config(
                f"pre-deploy-{deployment_id}",
                [{"type": "all"}],
                description=f"Backup before deployment {deployment_id}",
            )
            snapshot_id = self._backup.create_snapshot(snapshot_config_id)
        except Exception as e:
            logger.warning("Pre-deployment backup failed", deployment_id=deployment_id, error=str(e))
            self._log(deployment_id, LogLevel.WARN, f"Backup failed: {e}")
            return

        def record_snapshot(deployment: Deployment) -> None:
            deployment.snapshot_id = snapshot_id
            deployment.add_log(
                LogLevel.INFO,
                "Pre-deployment backup completed",
                component=COMPONENT,
                details={"snapshot_id": snapshot_id},
            )

        self._state.update(deployment_id, record_snapshot)

    # Helpers

    def _watchdog(self, config: DeploymentConfig) -> Deadline:
        minutes = config.max_deployment_duration or self._settings.default_max_deployment_duration
        return Deadline(self._clock, minutes * 60 if minutes else None)

    def _checkpoint(self, deployment_id: str, deadline: Deadline) -> bool:
        """Whether the pipeline may go on to its next step.

        A deployment rolled back or finished elsewhere in the meantime stops
        the pipeline without touching the record again.

        Raises:
            Cancelled: If the clock was cancelled
            WatchdogExpired: If the deployment deadline passed
        """
        deployment = self._state.load(deployment_id)
        if deployment.is_settled:
            logger.info(
                "Pipeline stopped, deployment settled elsewhere",
                deployment_id=deployment_id,
                status=deployment.status.value,
            )
            return False
        if getattr(self._clock, "cancelled", False):
            raise Cancelled("Deployment cancelled")
        if deadline.expired():
            raise WatchdogExpired()
        return True

    def _transition(self, deployment_id: str, target: DeploymentStatus, reason: str) -> None:
        def move(deployment: Deployment) -> None:
            deployment.transition_to(target, reason=reason)
            deployment.add_log(
                LogLevel.INFO,
                f"Status changed to {target.value}",
                component=COMPONENT,
                details={"reason": reason},
            )

        self._state.update(deployment_id, move)

    def _log(self, deployment_id: str, level: LogLevel, message: str) -> None:
        self._state.update(deployment_id, lambda d: d.add_log(level, message, component=COMPONENT))

    def _notify(
        self,
        config: DeploymentConfig,
        deployment: Deployment,
        event: DeploymentEvent,
        message: str,
    ) -> None:
        self._notifier.notify(config, deployment, event, message)

    def _previous_version(self, environment: str) -> str | None:
        completed = self._state.list(environment=environment, status=DeploymentStatus.COMPLETED, limit=1)
        return completed[0].version if completed else None

    @staticmethod
    def _create_check_slots(config: DeploymentConfig) -> list[CheckResult]:
        slots = [
            CheckResult(check_id=c.id, name=c.name, phase=CheckPhase.PRE_DEPLOY, required=c.required)
            for c in config.pre_deploy_checks
        ]
        slots.extend(
            CheckResult(check_id=c.id, name=c.name, phase=CheckPhase.POST_DEPLOY, required=c.required)
            for c in config.post_deploy_checks
        )
        return slots


def build_engine(
    profile: ProfileConfig,
    clock: Clock | None = None,
    target: RolloutTarget | None = None,
    probes: ProbeRegistry | None = None,
    notifier: NotificationDispatcher | None = None,
) -> DeploymentEngine:
    """Wire an engine from profile settings.

    External services are only attached when their URL is configured.
    """
    clock = clock or SystemClock()
    state_dir = Path(profile.engine.get_state_dir())

    configs = DeploymentConfigStore(state_dir / "configs")
    state = DeploymentState(state_dir / "deployments")
    target = target or SimulatedRolloutTarget(clock)

    backup: BackupService | None = None
    if profile.backup.get_url():
        from agentctl.clients.backup import BackupClient

        backup = BackupClient(profile.backup)

    check_service: CheckService | None = None
    if profile.checks.get_url():
        from agentctl.clients.checks import CheckServiceClient

        check_service = CheckServiceClient(profile.checks)

    checks = CheckRunner(
        state,
        probes or ProbeRegistry.defaults(),
        clock,
        check_service=check_service,
        poll_interval=profile.checks.poll_interval,
        min_success_rate=profile.checks.min_success_rate,
    )
    executor = StrategyExecutor.defaults(state, target, clock, timeouts=profile.engine.strategy_timeouts)
    rollback = RollbackController(state, target, clock, backup=backup)

    return DeploymentEngine(
        configs=configs,
        state=state,
        checks=checks,
        executor=executor,
        rollback=rollback,
        notifier=notifier or NotificationDispatcher.from_profile(profile),
        clock=clock,
        backup=backup,
        settings=EngineSettings.from_config(profile.engine),
        target=target,
    )
