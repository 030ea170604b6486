"""Deployment config schema validation.

Configs are immutable templates. Field names are snake_case; the camelCase
names used by exported agent-console configs (``preDeployChecks``,
``requiredApprovers`` ...) are accepted as aliases.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class Environment(str, Enum):
    """Target environments."""

    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class DeploymentStrategy(str, Enum):
    """Rollout strategies."""

    DIRECT = "direct"
    BLUE_GREEN = "blue_green"
    CANARY = "canary"
    ROLLING = "rolling"


class CheckType(str, Enum):
    """Kinds of validation checks."""

    TEST_SUITE = "test_suite"
    PERFORMANCE_TEST = "performance_test"
    SECURITY_SCAN = "security_scan"
    HEALTH_CHECK = "health_check"
    CUSTOM_SCRIPT = "custom_script"


class DeploymentEvent(str, Enum):
    """Lifecycle events delivered to notification rules."""

    STARTED = "started"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


_FROZEN = {"frozen": True, "populate_by_name": True}


class ApprovalCondition(BaseModel):
    """Condition attached to an approval policy."""

    model_config = _FROZEN

    type: Literal["test_success", "performance_threshold", "security_scan", "manual_review"]
    parameters: dict[str, Any] = Field(default_factory=dict)


class ApprovalPolicy(BaseModel):
    """A set of approvers that must all sign off."""

    model_config = _FROZEN

    type: Literal["manual", "automatic"] = "manual"
    required_approvers: list[str] = Field(alias="requiredApprovers", min_length=1)
    conditions: list[ApprovalCondition] = Field(default_factory=list)
    timeout: float | None = Field(default=None, gt=0)  # minutes


class CheckSpec(BaseModel):
    """A single validation step run before or after rollout."""

    model_config = _FROZEN

    id: str
    name: str
    type: CheckType
    parameters: dict[str, Any] = Field(default_factory=dict)
    timeout: float = Field(default=5, gt=0)  # minutes
    required: bool = True
    retry_count: int = Field(default=0, ge=0, alias="retryCount")

    @property
    def timeout_seconds(self) -> float:
        return self.timeout * 60


class RollbackTrigger(BaseModel):
    """Condition that initiates automatic rollback."""

    model_config = _FROZEN

    type: Literal["error_rate", "response_time", "test_failure", "manual"]
    threshold: float = 0.0
    time_window: float = Field(default=5, alias="timeWindow")  # minutes


class RollbackPolicy(BaseModel):
    """Whether and how a failed deployment is reverted."""

    model_config = _FROZEN

    enabled: bool = False
    automatic_triggers: list[RollbackTrigger] = Field(default_factory=list, alias="automaticTriggers")
    manual_approval_required: bool = Field(default=False, alias="manualApprovalRequired")
    max_rollback_time: float = Field(default=10, gt=0, alias="maxRollbackTime")  # minutes


class NotificationRule(BaseModel):
    """Delivers selected lifecycle events to one channel."""

    model_config = _FROZEN

    type: Literal["email", "slack", "webhook"]
    recipients: list[str] = Field(default_factory=list)
    events: list[DeploymentEvent] = Field(default_factory=list)
    template: str | None = None

    def matches(self, event: DeploymentEvent) -> bool:
        return event in self.events


DEFAULT_CANARY_STEPS = (10, 50, 100)
DEFAULT_ROLLING_BATCHES = 4


def canary_steps(options: dict[str, Any]) -> list[int]:
    """Canary traffic weights from strategy options, always ending at 100.

    Raises:
        ValueError: If the steps are empty, out of range or not increasing
    """
    steps = [int(w) for w in options.get("canary_steps", DEFAULT_CANARY_STEPS)]
    if not steps or any(w <= 0 or w > 100 for w in steps):
        raise ValueError(f"Canary steps must be within 1-100: {steps}")
    if steps != sorted(steps):
        raise ValueError(f"Canary steps must increase: {steps}")
    if steps[-1] != 100:
        steps.append(100)
    return steps


def rolling_batches(options: dict[str, Any]) -> int:
    """Number of rolling batches from strategy options."""
    batches = int(options.get("batches", DEFAULT_ROLLING_BATCHES))
    if batches < 1:
        raise ValueError(f"Rolling batches must be at least 1: {batches}")
    return batches


class DeploymentConfig(BaseModel):
    """Immutable deployment template."""

    model_config = _FROZEN

    id: str | None = None
    name: str
    description: str = ""
    environment: Environment
    strategy: DeploymentStrategy = DeploymentStrategy.DIRECT
    approvals: list[ApprovalPolicy] = Field(default_factory=list)
    pre_deploy_checks: list[CheckSpec] = Field(default_factory=list, alias="preDeployChecks")
    post_deploy_checks: list[CheckSpec] = Field(default_factory=list, alias="postDeployChecks")
    rollback_policy: RollbackPolicy = Field(default_factory=RollbackPolicy, alias="rollbackPolicy")
    notifications: list[NotificationRule] = Field(default_factory=list)

    # Watchdog for the whole run, in minutes
    max_deployment_duration: float | None = Field(default=None, gt=0, alias="maxDeploymentDuration")
    # Overrides the strategy's default stabilization timeout, in seconds
    strategy_timeout: float | None = Field(default=None, gt=0, alias="strategyTimeout")
    strategy_options: dict[str, Any] = Field(default_factory=dict, alias="strategyOptions")
    created_at: datetime | None = Field(default=None, alias="createdAt")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be empty")
        return v

    @model_validator(mode="after")
    def validate_unique_check_ids(self) -> "DeploymentConfig":
        """Check ids identify result slots, so they must not collide."""
        seen: set[str] = set()
        for check in [*self.pre_deploy_checks, *self.post_deploy_checks]:
            if check.id in seen:
                raise ValueError(f"duplicate check id '{check.id}'")
            seen.add(check.id)
        return self

    @model_validator(mode="after")
    def validate_strategy_options(self) -> "DeploymentConfig":
        try:
            if self.strategy == DeploymentStrategy.CANARY:
                canary_steps(self.strategy_options)
            elif self.strategy == DeploymentStrategy.ROLLING:
                rolling_batches(self.strategy_options)
        except (TypeError, ValueError) as e:
            raise ValueError(f"invalid strategy_options: {e}")
        return self

    @property
    def required_approver_count(self) -> int:
        return sum(len(p.required_approvers) for p in self.approvals)

    @property
    def requires_approval(self) -> bool:
        return len(self.approvals) > 0

    def rules_for(self, event: DeploymentEvent) -> list[NotificationRule]:
        """Notification rules subscribed to ``event``."""
        return [rule for rule in self.notifications if rule.matches(event)]


def validate_config(config_dict: dict[str, Any]) -> DeploymentConfig:
    """Validate a config dictionary against the schema.

    Args:
        config_dict: Dictionary representation of a deployment config

    Returns:
        Validated DeploymentConfig

    Raises:
        pydantic.ValidationError: If validation fails
    """
    return DeploymentConfig.model_validate(config_dict)
