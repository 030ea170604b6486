"""Rolling deployment strategy."""

from collections.abc import Iterable
from typing import Any

from agentctl.core.exceptions import ValidationError
from agentctl.deploy.schema import rolling_batches
from agentctl.deploy.strategies.base import StrategyRoutine


class RollingStrategy(StrategyRoutine):
    """Moves traffic over in equal batches."""

    default_timeout = 900.0

    @property
    def strategy_name(self) -> str:
        return "rolling"

    def steps(self, options: dict[str, Any]) -> Iterable[int]:
        try:
            batches = rolling_batches(options)
        except (TypeError, ValueError) as e:
            raise ValidationError(str(e))
        return [round(100 * i / batches) for i in range(1, batches + 1)]

    def describe_step(self, weight: int) -> str:
        return f"Rolling batch: {weight}% of instances updated"
