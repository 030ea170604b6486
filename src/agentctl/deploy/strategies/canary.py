"""Canary deployment strategy with gradual traffic shifting."""

from collections.abc import Iterable
from typing import Any

from agentctl.core.exceptions import ValidationError
from agentctl.deploy.schema import canary_steps
from agentctl.deploy.strategies.base import StrategyRoutine


class CanaryStrategy(StrategyRoutine):
    """Shifts traffic in increasing steps, stabilizing after each.

    Steps come from the ``canary_steps`` option and must increase up to 100.
    """

    default_timeout = 600.0

    @property
    def strategy_name(self) -> str:
        return "canary"

    def steps(self, options: dict[str, Any]) -> Iterable[int]:
        try:
            return canary_steps(options)
        except (TypeError, ValueError) as e:
            raise ValidationError(str(e))

    def describe_step(self, weight: int) -> str:
        if weight == 100:
            return "Promoting canary to 100% of traffic"
        return f"Canary step: {weight}% of traffic"
