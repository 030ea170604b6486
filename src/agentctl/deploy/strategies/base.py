"""Base rollout strategy routine."""

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from agentctl.core.exceptions import StrategyExecutionError
from agentctl.core.logging import get_logger
from agentctl.core.timing import Clock, Deadline
from agentctl.deploy.models import Deployment

logger = get_logger(__name__)

LogFn = Callable[..., None]

# Seconds the simulated platform needs to settle after a traffic change
SETTLE_TIMES = {
    "direct": 5.0,
    "blue_green": 10.0,
    "canary": 15.0,
    "rolling": 20.0,
}


class RolloutTarget(Protocol):
    """Hosting platform hooks used by strategy routines."""

    def apply(self, deployment: Deployment, weight: int) -> None:
        """Route ``weight`` percent of traffic to the new version."""
        ...

    def is_stable(self, deployment: Deployment) -> bool:
        """Whether the platform has settled after the last change."""
        ...

    def revert(self, deployment: Deployment) -> None:
        """Route all traffic back to the previous version."""
        ...

    def release(self, deployment: Deployment) -> None:
        """Forget whatever is kept for a deployment that has finished."""
        ...


class SimulatedRolloutTarget:
    """Rollout target without a platform behind it.

    Every traffic change becomes stable after the strategy's settle time.
    """

    def __init__(self, clock: Clock, settle_times: dict[str, float] | None = None):
        self._clock = clock
        self._settle_times = {**SETTLE_TIMES, **(settle_times or {})}
        self._applied_at: dict[str, float] = {}
        self._weights: dict[str, int] = {}

    def apply(self, deployment: Deployment, weight: int) -> None:
        self._applied_at[deployment.id] = self._clock.monotonic()
        self._weights[deployment.id] = weight

    def is_stable(self, deployment: Deployment) -> bool:
        applied_at = self._applied_at.get(deployment.id)
        if applied_at is None:
            return True
        settle = self._settle_times.get(deployment.strategy, 0.0)
        return self._clock.monotonic() - applied_at >= settle

    def revert(self, deployment: Deployment) -> None:
        self.release(deployment)

    def release(self, deployment: Deployment) -> None:
        self._weights.pop(deployment.id, None)
        self._applied_at.pop(deployment.id, None)

    def weight(self, deployment_id: str) -> int:
        """Current traffic weight of the new version."""
        return self._weights.get(deployment_id, 0)


class StrategyRoutine(ABC):
    """Abstract base class for rollout strategy routines.

    A routine prepares the rollout, then walks through its traffic steps,
    waiting for the target to stabilize after each one. The whole routine is
    bounded by its timeout.
    """

    default_timeout: float = 60.0

    def __init__(
        self,
        target: RolloutTarget,
        clock: Clock,
        poll_interval: float = 1.0,
    ):
        self._target = target
        self._clock = clock
        self._poll_interval = poll_interval

    @property
    @abstractmethod
    def strategy_name(self) -> str:
        """Get strategy name."""
        pass

    @abstractmethod
    def steps(self, options: dict[str, Any]) -> Iterable[int]:
        """Traffic weights to apply, in order."""
        pass

    def prepare(self, deployment: Deployment, log: LogFn) -> None:
        """Hook run before the first traffic step."""
        log(f"Executing {self.strategy_name.replace('_', '-')} deployment")

    def describe_step(self, weight: int) -> str:
        return f"Routing {weight}% of traffic to new version"

    def execute(
        self,
        deployment: Deployment,
        log: LogFn,
        timeout: float | None = None,
        options: dict[str, Any] | None = None,
        proceed: Callable[[], bool] | None = None,
    ) -> None:
        """Run the routine.

        Args:
            deployment: Deployment being rolled out
            log: Callback appending to the deployment log
            timeout: Seconds before the routine gives up
            options: Strategy options from the config
            proceed: Asked before each traffic step; the routine stops
                quietly once it returns False

        Raises:
            StrategyExecutionError: If the target does not stabilize in time
        """
        timeout = self.default_timeout if timeout is None else timeout
        deadline = Deadline(self._clock, timeout)

        self.prepare(deployment, log)

        for weight in self.steps(options or {}):
            if proceed is not None and not proceed():
                logger.info("Rollout stopped", deployment_id=deployment.id, strategy=self.strategy_name)
                return
            log(self.describe_step(weight), details={"weight": weight})
            self._target.apply(deployment, weight)
            self.wait_until_stable(deployment, deadline, proceed)

        if proceed is not None and not proceed():
            return

        log(f"{self.strategy_name.replace('_', '-').capitalize()} rollout complete")

    def wait_until_stable(
        self,
        deployment: Deployment,
        deadline: Deadline,
        proceed: Callable[[], bool] | None = None,
    ) -> None:
        """Poll the target until it reports stable or the deadline passes."""
        while not self._target.is_stable(deployment):
            if proceed is not None and not proceed():
                return
            if deadline.expired():
                logger.error(
                    "Rollout did not stabilize",
                    deployment_id=deployment.id,
                    strategy=self.strategy_name,
                    timeout=deadline.seconds,
                )
                raise StrategyExecutionError(
                    f"Strategy '{self.strategy_name}' did not stabilize within {deadline.seconds:.0f}s",
                    strategy=self.strategy_name,
                    deployment_id=deployment.id,
                )
            deadline.sleep(self._poll_interval)

