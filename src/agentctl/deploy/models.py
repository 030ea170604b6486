"""Deployment run records."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
import uuid

from agentctl.core.exceptions import InvalidTransition
from agentctl.core.timing import utcnow


class DeploymentStatus(str, Enum):
    """Deployment status."""

    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    DEPLOYING = "deploying"
    TESTING = "testing"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        DeploymentStatus.REJECTED,
        DeploymentStatus.COMPLETED,
        DeploymentStatus.FAILED,
        DeploymentStatus.ROLLED_BACK,
    }
)

# Allowed status edges. Anything not listed raises InvalidTransition.
TRANSITIONS: dict[DeploymentStatus, frozenset[DeploymentStatus]] = {
    DeploymentStatus.PENDING_APPROVAL: frozenset({DeploymentStatus.APPROVED, DeploymentStatus.REJECTED}),
    DeploymentStatus.APPROVED: frozenset({DeploymentStatus.DEPLOYING, DeploymentStatus.FAILED}),
    DeploymentStatus.DEPLOYING: frozenset({DeploymentStatus.TESTING, DeploymentStatus.FAILED}),
    DeploymentStatus.TESTING: frozenset(
        {DeploymentStatus.COMPLETED, DeploymentStatus.ROLLING_BACK, DeploymentStatus.FAILED}
    ),
    DeploymentStatus.ROLLING_BACK: frozenset({DeploymentStatus.ROLLED_BACK}),
    DeploymentStatus.REJECTED: frozenset(),
    DeploymentStatus.COMPLETED: frozenset(),
    DeploymentStatus.FAILED: frozenset(),
    DeploymentStatus.ROLLED_BACK: frozenset(),
}


def can_transition(current: DeploymentStatus, target: DeploymentStatus) -> bool:
    """Check whether ``current -> target`` is a legal edge."""
    return target in TRANSITIONS[current]


class ApprovalStatus(str, Enum):
    """Per-approver decision."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CheckStatus(str, Enum):
    """Per-check status."""

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class CheckPhase(str, Enum):
    """When a check runs relative to the rollout."""

    PRE_DEPLOY = "pre-deploy"
    POST_DEPLOY = "post-deploy"


class LogLevel(str, Enum):
    """Deployment log entry level."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class ApprovalDecision:
    """One approver slot."""

    approver_id: str
    policy_index: int = 0
    status: ApprovalStatus = ApprovalStatus.PENDING
    timestamp: datetime | None = None
    comments: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "approver_id": self.approver_id,
            "policy_index": self.policy_index,
            "status": self.status.value,
            "timestamp": _iso(self.timestamp),
            "comments": self.comments,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ApprovalDecision":
        return cls(
            approver_id=data["approver_id"],
            policy_index=data.get("policy_index", 0),
            status=ApprovalStatus(data.get("status", "pending")),
            timestamp=_parse(data.get("timestamp")),
            comments=data.get("comments"),
        )


@dataclass
class CheckResult:
    """Outcome slot for one declared check."""

    check_id: str
    name: str
    phase: CheckPhase
    required: bool = True
    status: CheckStatus = CheckStatus.PENDING
    start_time: datetime | None = None
    end_time: datetime | None = None
    output: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "check_id": self.check_id,
            "name": self.name,
            "phase": self.phase.value,
            "required": self.required,
            "status": self.status.value,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "output": self.output,
            "errors": list(self.errors),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CheckResult":
        return cls(
            check_id=data["check_id"],
            name=data.get("name", data["check_id"]),
            phase=CheckPhase(data.get("phase", "pre-deploy")),
            required=data.get("required", True),
            status=CheckStatus(data.get("status", "pending")),
            start_time=_parse(data.get("start_time")),
            end_time=_parse(data.get("end_time")),
            output=data.get("output"),
            errors=list(data.get("errors", [])),
        )


@dataclass(frozen=True)
class RollbackRecord:
    """Outcome of the single rollback a deployment may have."""

    triggered_by: str
    reason: str
    timestamp: datetime
    previous_version: str | None
    rollback_duration: float  # seconds
    success: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "triggered_by": self.triggered_by,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
            "previous_version": self.previous_version,
            "rollback_duration": self.rollback_duration,
            "success": self.success,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RollbackRecord":
        return cls(
            triggered_by=data["triggered_by"],
            reason=data["reason"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            previous_version=data.get("previous_version"),
            rollback_duration=data.get("rollback_duration", 0.0),
            success=data.get("success", False),
            error=data.get("error"),
        )


@dataclass
class LogEntry:
    """Deployment audit log entry."""

    timestamp: datetime
    level: LogLevel
    message: str
    component: str = "deploy-engine"
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "message": self.message,
            "component": self.component,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LogEntry":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            level=LogLevel(data.get("level", "info")),
            message=data.get("message", ""),
            component=data.get("component", "deploy-engine"),
            details=data.get("details") or {},
        )


@dataclass
class DeploymentArtifact:
    """A versioned piece of agent configuration shipped by a deployment."""

    type: str  # intents, entities, flows, config, functions
    name: str
    version: str
    checksum: str = ""
    size: int = 0
    path: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "version": self.version,
            "checksum": self.checksum,
            "size": self.size,
            "path": self.path,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeploymentArtifact":
        return cls(
            type=data["type"],
            name=data["name"],
            version=data.get("version", ""),
            checksum=data.get("checksum", ""),
            size=data.get("size", 0),
            path=data.get("path", ""),
        )


@dataclass
class StatusChange:
    """One entry in a deployment's status history."""

    status: DeploymentStatus
    timestamp: datetime
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatusChange":
        return cls(
            status=DeploymentStatus(data["status"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            reason=data.get("reason"),
        )


@dataclass
class DeploymentMetrics:
    """Summary metrics for a finished deployment."""

    deployment_duration: float  # seconds
    test_execution_time: float  # seconds
    error_rate: float
    success_rate: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "deployment_duration": self.deployment_duration,
            "test_execution_time": self.test_execution_time,
            "error_rate": self.error_rate,
            "success_rate": self.success_rate,
        }


@dataclass
class Deployment:
    """Deployment run instance."""

    # Identity
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    config_id: str = ""
    version: str = ""
    environment: str = ""
    strategy: str = ""
    deployed_by: str = ""

    # Status
    status: DeploymentStatus = DeploymentStatus.PENDING_APPROVAL
    start_time: datetime = field(default_factory=utcnow)
    end_time: datetime | None = None

    # Slots
    approvals: list[ApprovalDecision] = field(default_factory=list)
    checks: list[CheckResult] = field(default_factory=list)
    artifacts: list[DeploymentArtifact] = field(default_factory=list)
    rollback: RollbackRecord | None = None

    # Rollback sources
    snapshot_id: str | None = None
    previous_version: str | None = None

    # History
    logs: list[LogEntry] = field(default_factory=list)
    status_history: list[StatusChange] = field(default_factory=list)

    # Optimistic concurrency
    revision: int = 0

    def transition_to(self, target: DeploymentStatus, reason: str | None = None) -> StatusChange:
        """Move to ``target`` along a legal edge.

        Raises:
            InvalidTransition: If the edge is not allowed
        """
        if not can_transition(self.status, target):
            raise InvalidTransition(
                f"Cannot move deployment from {self.status.value} to {target.value}",
                deployment_id=self.id,
                current=self.status.value,
                target=target.value,
            )
        self.status = target
        change = StatusChange(status=target, timestamp=utcnow(), reason=reason)
        self.status_history.append(change)
        if target.is_terminal:
            self.end_time = change.timestamp
        return change

    def add_log(
        self,
        level: LogLevel,
        message: str,
        component: str = "deploy-engine",
        details: dict[str, Any] | None = None,
    ) -> LogEntry:
        """Append a log entry."""
        entry = LogEntry(
            timestamp=utcnow(),
            level=level,
            message=message,
            component=component,
            details=details or {},
        )
        self.logs.append(entry)
        return entry

    def set_rollback(self, record: RollbackRecord) -> None:
        """Attach the rollback record. It can only be set once."""
        if self.rollback is not None:
            raise InvalidTransition(
                "Rollback already recorded for this deployment",
                deployment_id=self.id,
                current=self.status.value,
            )
        self.rollback = record

    def get_check(self, check_id: str) -> CheckResult | None:
        for check in self.checks:
            if check.check_id == check_id:
                return check
        return None

    def pending_slot(self, approver_id: str) -> ApprovalDecision | None:
        """First undecided slot for an approver."""
        for slot in self.approvals:
            if slot.approver_id == approver_id and slot.is_pending:
                return slot
        return None

    def visited(self, status: DeploymentStatus) -> bool:
        """Whether the deployment ever entered ``status``."""
        return any(change.status == status for change in self.status_history)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_settled(self) -> bool:
        """Terminal, or handed over to the rollback controller."""
        return self.is_terminal or self.status == DeploymentStatus.ROLLING_BACK

    @property
    def all_approved(self) -> bool:
        return all(slot.status == ApprovalStatus.APPROVED for slot in self.approvals)

    @property
    def any_rejected(self) -> bool:
        return any(slot.status == ApprovalStatus.REJECTED for slot in self.approvals)

    @property
    def duration_seconds(self) -> float | None:
        """Deployment duration in seconds, once finished."""
        if self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None

    def to_dict(self, include_logs: bool = True) -> dict[str, Any]:
        """Convert to dictionary."""
        data = {
            "id": self.id,
            "config_id": self.config_id,
            "version": self.version,
            "environment": self.environment,
            "strategy": self.strategy,
            "deployed_by": self.deployed_by,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": _iso(self.end_time),
            "duration_seconds": self.duration_seconds,
            "approvals": [a.to_dict() for a in self.approvals],
            "checks": [c.to_dict() for c in self.checks],
            "artifacts": [a.to_dict() for a in self.artifacts],
            "rollback": self.rollback.to_dict() if self.rollback else None,
            "snapshot_id": self.snapshot_id,
            "previous_version": self.previous_version,
            "status_history": [s.to_dict() for s in self.status_history],
            "revision": self.revision,
        }
        if include_logs:
            data["logs"] = [entry.to_dict() for entry in self.logs]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Deployment":
        """Create from dictionary."""
        deployment = cls(
            id=data["id"],
            config_id=data.get("config_id", ""),
            version=data.get("version", ""),
            environment=data.get("environment", ""),
            strategy=data.get("strategy", ""),
            deployed_by=data.get("deployed_by", ""),
            status=DeploymentStatus(data.get("status", "pending_approval")),
            approvals=[ApprovalDecision.from_dict(a) for a in data.get("approvals", [])],
            checks=[CheckResult.from_dict(c) for c in data.get("checks", [])],
            artifacts=[DeploymentArtifact.from_dict(a) for a in data.get("artifacts", [])],
            rollback=RollbackRecord.from_dict(data["rollback"]) if data.get("rollback") else None,
            snapshot_id=data.get("snapshot_id"),
            previous_version=data.get("previous_version"),
            logs=[LogEntry.from_dict(e) for e in data.get("logs", [])],
            status_history=[StatusChange.from_dict(s) for s in data.get("status_history", [])],
            revision=data.get("revision", 0),
        )

        if data.get("start_time"):
            deployment.start_time = datetime.fromisoformat(data["start_time"])
        deployment.end_time = _parse(data.get("end_time"))

        return deployment
