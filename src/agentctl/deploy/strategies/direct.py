"""Direct cutover strategy."""

from collections.abc import Iterable
from typing import Any

from agentctl.deploy.strategies.base import StrategyRoutine


class DirectStrategy(StrategyRoutine):
    """Switches all traffic to the new version in one step."""

    default_timeout = 60.0

    @property
    def strategy_name(self) -> str:
        return "direct"

    def steps(self, options: dict[str, Any]) -> Iterable[int]:
        return [100]
