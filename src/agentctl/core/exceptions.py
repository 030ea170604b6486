"""Custom exceptions for agentctl."""

from typing import Any


class AgentCtlError(Exception):
    """Base exception for all agentctl errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class ConfigError(AgentCtlError):
    """Configuration-related errors."""

    pass


class ValidationError(AgentCtlError):
    """Input validation errors."""

    pass


class AuthenticationError(AgentCtlError):
    """Authentication/authorization errors."""

    pass


class DeploymentError(AgentCtlError):
    """Deployment orchestration errors."""

    def __init__(
        self,
        message: str,
        deployment_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.deployment_id = deployment_id


class ConfigNotFound(DeploymentError):
    """Deployment config does not exist in the store."""

    def __init__(self, config_id: str):
        super().__init__(f"Deployment config not found: {config_id}")
        self.config_id = config_id


class DeploymentNotFound(DeploymentError):
    """Deployment record does not exist."""

    def __init__(self, deployment_id: str):
        super().__init__(f"Deployment not found: {deployment_id}", deployment_id=deployment_id)


class InvalidTransition(DeploymentError):
    """Out-of-order state change or approval resubmission."""

    def __init__(
        self,
        message: str,
        deployment_id: str | None = None,
        current: str | None = None,
        target: str | None = None,
    ):
        details = {}
        if current:
            details["current"] = current
        if target:
            details["target"] = target
        super().__init__(message, deployment_id=deployment_id, details=details)
        self.current = current
        self.target = target


class ConcurrentModification(DeploymentError):
    """A deployment record was written with a stale revision."""

    pass


class CheckTimeout(DeploymentError):
    """A check did not finish within its timeout."""

    def __init__(self, check_id: str, timeout_seconds: float):
        super().__init__(f"Check '{check_id}' timed out after {timeout_seconds:.0f}s")
        self.check_id = check_id
        self.timeout_seconds = timeout_seconds


class CheckFailed(DeploymentError):
    """A check reported failure."""

    def __init__(self, check_id: str, reason: str):
        super().__init__(f"Check '{check_id}' failed: {reason}")
        self.check_id = check_id
        self.reason = reason


class StrategyExecutionError(DeploymentError):
    """Rollout strategy failed or did not stabilize in time."""

    def __init__(
        self,
        message: str,
        strategy: str | None = None,
        deployment_id: str | None = None,
    ):
        super().__init__(message, deployment_id=deployment_id)
        self.strategy = strategy


class RollbackFailure(DeploymentError):
    """Reverting a deployment failed."""

    pass


class Cancelled(AgentCtlError):
    """A wait was interrupted by cancellation."""

    pass


class ServiceError(AgentCtlError):
    """Errors talking to an external HTTP service."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code


class BackupServiceError(ServiceError):
    """Backup Service API errors."""

    pass


class CheckServiceError(ServiceError):
    """Check Execution Service API errors."""

    pass


class SlackError(ServiceError):
    """Slack API errors. ``error_code`` is Slack's own code, e.g. ``channel_not_found``."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, status_code, details)
        self.error_code = error_code


class NotificationError(AgentCtlError):
    """Notification delivery errors."""

    def __init__(
        self,
        message: str,
        channel: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.channel = channel
