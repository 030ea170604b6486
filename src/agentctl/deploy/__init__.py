"""Deployment orchestration module."""

from agentctl.deploy.models import (
    Deployment,
    DeploymentArtifact,
    DeploymentMetrics,
    DeploymentStatus,
    RollbackRecord,
)
from agentctl.deploy.schema import DeploymentConfig, DeploymentEvent, DeploymentStrategy
from agentctl.deploy.state import DeploymentState

__all__ = [
    "Deployment",
    "DeploymentArtifact",
    "DeploymentConfig",
    "DeploymentEvent",
    "DeploymentMetrics",
    "DeploymentState",
    "DeploymentStatus",
    "DeploymentStrategy",
    "RollbackRecord",
]
