"""Dispatches a deployment to its strategy routine."""

from typing import Any

from agentctl.core.exceptions import StrategyExecutionError
from agentctl.core.logging import get_logger
from agentctl.core.timing import Clock, Deadline
from agentctl.deploy.models import Deployment, LogLevel
from agentctl.deploy.schema import DeploymentStrategy
from agentctl.deploy.state import DeploymentState
from agentctl.deploy.strategies.base import RolloutTarget, StrategyRoutine
from agentctl.deploy.strategies.blue_green import BlueGreenStrategy
from agentctl.deploy.strategies.canary import CanaryStrategy
from agentctl.deploy.strategies.direct import DirectStrategy
from agentctl.deploy.strategies.rolling import RollingStrategy

logger = get_logger(__name__)

COMPONENT = "strategy-executor"

ROUTINES: dict[DeploymentStrategy, type[StrategyRoutine]] = {
    DeploymentStrategy.DIRECT: DirectStrategy,
    DeploymentStrategy.BLUE_GREEN: BlueGreenStrategy,
    DeploymentStrategy.CANARY: CanaryStrategy,
    DeploymentStrategy.ROLLING: RollingStrategy,
}


class StrategyExecutor:
    """Runs the routine registered for a deployment's strategy."""

    def __init__(
        self,
        state: DeploymentState,
        routines: dict[DeploymentStrategy, StrategyRoutine],
        timeouts: dict[str, float] | None = None,
    ):
        self._state = state
        self._routines = dict(routines)
        self._timeouts = dict(timeouts or {})

    @classmethod
    def defaults(
        cls,
        state: DeploymentState,
        target: RolloutTarget,
        clock: Clock,
        timeouts: dict[str, float] | None = None,
        poll_interval: float = 1.0,
    ) -> "StrategyExecutor":
        """Executor with the four built-in routines sharing one target."""
        routines = {
            strategy: routine_cls(target, clock, poll_interval=poll_interval)
            for strategy, routine_cls in ROUTINES.items()
        }
        return cls(state, routines, timeouts)

    def execute(
        self,
        deployment_id: str,
        strategy: DeploymentStrategy | str,
        timeout: float | None = None,
        options: dict[str, Any] | None = None,
        deadline: Deadline | None = None,
    ) -> None:
        """Roll out a deployment.

        Args:
            deployment_id: Deployment to roll out
            strategy: Strategy name
            timeout: Override of the routine's timeout, in seconds
            options: Strategy options from the config
            deadline: Outer deadline the routine must not outlive

        Raises:
            StrategyExecutionError: If the strategy is unknown or the routine fails
        """
        try:
            strategy = DeploymentStrategy(strategy)
        except ValueError:
            raise StrategyExecutionError(
                f"Unknown deployment strategy: {strategy}",
                strategy=str(strategy),
                deployment_id=deployment_id,
            )

        routine = self._routines.get(strategy)
        if routine is None:
            raise StrategyExecutionError(
                f"No routine registered for strategy: {strategy.value}",
                strategy=strategy.value,
                deployment_id=deployment_id,
            )

        if timeout is None:
            timeout = self._timeouts.get(strategy.value, routine.default_timeout)
        if deadline is not None:
            timeout = deadline.cap(timeout)

        deployment = self._state.load(deployment_id)

        def log(message: str, level: LogLevel = LogLevel.INFO, details: dict[str, Any] | None = None) -> None:
            def append(d: Deployment) -> None:
                if not d.is_settled:
                    d.add_log(level, message, component=COMPONENT, details=details)

            self._state.update(deployment_id, append)

        def proceed() -> bool:
            return not self._state.load(deployment_id).is_settled

        logger.info("Executing strategy", deployment_id=deployment_id, strategy=strategy.value, timeout=timeout)
        routine.execute(deployment, log, timeout=timeout, options=options, proceed=proceed)

    def routine(self, strategy: DeploymentStrategy) -> StrategyRoutine | None:
        return self._routines.get(strategy)

