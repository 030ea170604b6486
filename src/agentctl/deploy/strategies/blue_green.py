"""Blue-green deployment strategy."""

from collections.abc import Iterable
from typing import Any

from agentctl.deploy.models import Deployment
from agentctl.deploy.strategies.base import LogFn, StrategyRoutine


class BlueGreenStrategy(StrategyRoutine):
    """Stages the new version on the idle slot, then switches traffic.

    The first step applies weight 0, which stands the version up on the idle
    slot without routing traffic to it. Once it is stable the second step
    routes all traffic over.
    """

    default_timeout = 300.0

    @property
    def strategy_name(self) -> str:
        return "blue_green"

    def prepare(self, deployment: Deployment, log: LogFn) -> None:
        super().prepare(deployment, log)
        previous = deployment.previous_version or "current"
        log(f"Active slot serves {previous}; staging {deployment.version} on idle slot")

    def steps(self, options: dict[str, Any]) -> Iterable[int]:
        return [0, 100]

    def describe_step(self, weight: int) -> str:
        if weight == 0:
            return "Deploying to idle slot"
        return "Switching traffic to idle slot"
