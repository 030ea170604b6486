"""Pytest fixtures for agentctl tests."""

import os
from pathlib import Path
from typing import Any, Callable, Generator

import pytest
from click.testing import CliRunner

from agentctl.clients.checks import RunStatus
from agentctl.config import AgentCtlConfig, EngineConfig, ProfileConfig
from agentctl.core.exceptions import BackupServiceError, NotificationError
from agentctl.deploy.checks import CheckRunner, ProbeRegistry, ProbeResult
from agentctl.deploy.configs import DeploymentConfigStore
from agentctl.deploy.engine import DeploymentEngine, EngineSettings
from agentctl.deploy.models import Deployment
from agentctl.deploy.notifications import NotificationDispatcher
from agentctl.deploy.rollback import RollbackController
from agentctl.deploy.schema import (
    CheckSpec,
    CheckType,
    DeploymentConfig,
    DeploymentEvent,
    NotificationRule,
)
from agentctl.deploy.state import DeploymentState
from agentctl.deploy.strategies import SimulatedRolloutTarget, StrategyExecutor

ALL_EVENTS = list(DeploymentEvent)


class FakeClock:
    """Clock whose sleeps advance time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []
        self.cancelled = False

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            return
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def cancel(self) -> None:
        self.cancelled = True


class StubBackup:
    """In-memory Backup Service."""

    def __init__(self, fail_snapshot: bool = False, fail_restore: bool = False):
        self.fail_snapshot = fail_snapshot
        self.fail_restore = fail_restore
        self.snapshot_configs: list[str] = []
        self.snapshots: list[str] = []
        self.restored: list[str] = []

    def create_snapshot_config(self, name: str, targets: list[dict[str, Any]], description: str = "") -> str:
        if self.fail_snapshot:
            raise BackupServiceError("backup service unavailable", status_code=503)
        self.snapshot_configs.append(name)
        return f"cfg-{len(self.snapshot_configs)}"

    def create_snapshot(self, config_id: str) -> str:
        self.snapshots.append(config_id)
        return f"snap-{len(self.snapshots)}"

    def restore_snapshot(self, snapshot_id: str) -> None:
        if self.fail_restore:
            raise BackupServiceError("restore rejected", status_code=500)
        self.restored.append(snapshot_id)


class StubCheckService:
    """Check Execution Service replaying a list of run statuses.

    The last status is repeated once the list is exhausted.
    """

    def __init__(self, statuses: list[RunStatus] | None = None):
        self.statuses = list(statuses or [RunStatus("completed", 1.0)])
        self.started: list[str] = []
        self.polls = 0

    def start_suite(self, suite_id: str) -> str:
        self.started.append(suite_id)
        return f"run-{len(self.started)}"

    def get_run_status(self, run_id: str) -> RunStatus:
        self.polls += 1
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]


class StubProbe:
    """Probe whose outcome is set per check id. Checks pass by default."""

    def __init__(self):
        self.results: dict[str, bool] = {}
        self.calls: list[str] = []

    def __call__(self, check: CheckSpec) -> ProbeResult:
        self.calls.append(check.id)
        passed = self.results.get(check.id, True)
        if passed:
            return ProbeResult(True, output=f"{check.id} ok")
        return ProbeResult(False, errors=[f"{check.id} unhealthy"])


class RecordingChannel:
    """Notification channel that keeps what it was asked to send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[NotificationRule, dict[str, Any], str]] = []

    def send(self, rule: NotificationRule, record: dict[str, Any], text: str) -> None:
        if self.fail:
            raise NotificationError("channel down", channel=rule.type)
        self.sent.append((rule, record, text))

    @property
    def events(self) -> list[str]:
        return [record["event"] for _, record, _ in self.sent]


class SpyTarget(SimulatedRolloutTarget):
    """Simulated rollout target that records traffic changes."""

    def __init__(self, clock: FakeClock, never_stable: bool = False, fail_revert: bool = False):
        super().__init__(clock)
        self.never_stable = never_stable
        self.fail_revert = fail_revert
        self.applied: list[tuple[str, int]] = []
        self.reverted: list[str] = []

    def apply(self, deployment: Deployment, weight: int) -> None:
        self.applied.append((deployment.id, weight))
        super().apply(deployment, weight)

    def is_stable(self, deployment: Deployment) -> bool:
        if self.never_stable:
            return False
        return super().is_stable(deployment)

    def revert(self, deployment: Deployment) -> None:
        if self.fail_revert:
            raise RuntimeError("platform unreachable")
        self.reverted.append(deployment.id)
        super().revert(deployment)


def health_check(check_id: str = "health", **overrides: Any) -> CheckSpec:
    """A required health check with a one minute timeout."""
    fields: dict[str, Any] = {
        "id": check_id,
        "name": check_id.replace("-", " ").title(),
        "type": CheckType.HEALTH_CHECK,
        "timeout": 1,
    }
    fields.update(overrides)
    return CheckSpec(**fields)


class EngineHarness:
    """A fully wired engine with stubbed collaborators."""

    def __init__(self, root: Path, clock: FakeClock):
        self.clock = clock
        self.target = SpyTarget(clock)
        self.probe = StubProbe()
        self.backup = StubBackup()
        self.check_service = StubCheckService()
        self.slack = RecordingChannel()
        self.webhook = RecordingChannel()
        self.email = RecordingChannel()

        self.configs = DeploymentConfigStore(root / "configs")
        self.state = DeploymentState(root / "deployments")
        self.probes = ProbeRegistry(
            {
                CheckType.HEALTH_CHECK: self.probe,
                CheckType.PERFORMANCE_TEST: self.probe,
                CheckType.SECURITY_SCAN: self.probe,
                CheckType.CUSTOM_SCRIPT: self.probe,
            }
        )
        self.checks = CheckRunner(self.state, self.probes, clock, check_service=self.check_service)
        self.executor = StrategyExecutor.defaults(self.state, self.target, clock)
        self.rollback = RollbackController(self.state, self.target, clock, backup=self.backup)
        self.notifier = NotificationDispatcher(
            {"slack": self.slack, "webhook": self.webhook, "email": self.email}
        )
        self.engine = DeploymentEngine(
            configs=self.configs,
            state=self.state,
            checks=self.checks,
            executor=self.executor,
            rollback=self.rollback,
            notifier=self.notifier,
            clock=clock,
            backup=self.backup,
            settings=EngineSettings(),
            target=self.target,
        )

    def store(self, **overrides: Any) -> DeploymentConfig:
        """Build a config with sensible defaults and store it."""
        fields: dict[str, Any] = {
            "name": "support-bot",
            "environment": "staging",
            "strategy": "direct",
            "pre_deploy_checks": [health_check()],
            "notifications": [NotificationRule(type="slack", recipients=["#deploys"], events=ALL_EVENTS)],
        }
        fields.update(overrides)
        return self.configs.create(DeploymentConfig(**fields))


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Click CLI runner."""
    return CliRunner()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def state(tmp_path: Path) -> DeploymentState:
    return DeploymentState(tmp_path / "deployments")


@pytest.fixture
def harness(tmp_path: Path, clock: FakeClock) -> EngineHarness:
    """Engine wired against stub services and a fake clock."""
    return EngineHarness(tmp_path, clock)


@pytest.fixture
def make_check() -> Callable[..., CheckSpec]:
    return health_check


@pytest.fixture
def mock_config(tmp_path: Path) -> AgentCtlConfig:
    """Configuration whose state lives in a temporary directory."""
    return AgentCtlConfig(
        profiles={
            "default": ProfileConfig(
                engine=EngineConfig(state_dir=str(tmp_path / "state"), stabilization_delay=0),
            )
        }
    )


@pytest.fixture(autouse=True)
def clean_env() -> Generator[None, None, None]:
    """Clean environment variables before each test."""
    env_vars = [
        "AGENTCTL_PROFILE",
        "AGENTCTL_CONFIG",
        "AGENTCTL_STATE_DIR",
        "AGENTCTL_BACKUP_URL",
        "AGENTCTL_BACKUP_TOKEN",
        "AGENTCTL_CHECKS_URL",
        "AGENTCTL_CHECKS_TOKEN",
        "AGENTCTL_SLACK_TOKEN",
        "AGENTCTL_SMTP_PASSWORD",
        "SLACK_BOT_TOKEN",
    ]

    original = {k: os.environ.get(k) for k in env_vars}

    for k in env_vars:
        os.environ.pop(k, None)

    yield

    for k, v in original.items():
        if v is not None:
            os.environ[k] = v
        else:
            os.environ.pop(k, None)


@pytest.fixture
def temp_config_file(tmp_path: Path) -> str:
    """Create a temporary config file."""
    config_content = f"""
version: "1"
global:
  output_format: table
  confirm_destructive: false
profiles:
  default:
    engine:
      state_dir: {tmp_path / "state"}
      stabilization_delay: 0
"""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(config_content)
    return str(config_file)
