"""Rollout strategies."""

from agentctl.deploy.strategies.base import RolloutTarget, SimulatedRolloutTarget, StrategyRoutine
from agentctl.deploy.strategies.blue_green import BlueGreenStrategy
from agentctl.deploy.strategies.canary import CanaryStrategy
from agentctl.deploy.strategies.direct import DirectStrategy
from agentctl.deploy.strategies.executor import StrategyExecutor
from agentctl.deploy.strategies.rolling import RollingStrategy

__all__ = [
    "BlueGreenStrategy",
    "CanaryStrategy",
    "DirectStrategy",
    "RollingStrategy",
    "RolloutTarget",
    "SimulatedRolloutTarget",
    "StrategyExecutor",
    "StrategyRoutine",
]
