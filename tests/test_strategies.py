"""Tests for rollout strategy routines and the executor."""

import pytest

from agentctl.core.exceptions import StrategyExecutionError, ValidationError
from agentctl.core.timing import Deadline
from agentctl.deploy.models import Deployment, DeploymentStatus
from agentctl.deploy.schema import DeploymentStrategy
from agentctl.deploy.strategies import (
    BlueGreenStrategy,
    CanaryStrategy,
    DirectStrategy,
    RollingStrategy,
    SimulatedRolloutTarget,
    StrategyExecutor,
)


@pytest.fixture
def deployment(state) -> Deployment:
    return state.create(
        Deployment(
            config_id="cfg",
            version="2.0.0",
            strategy="canary",
            status=DeploymentStatus.TESTING,
            previous_version="1.9.0",
        )
    )


class TestSteps:
    """Traffic steps per strategy."""

    def test_direct(self):
        assert list(DirectStrategy(None, None).steps({})) == [100]

    def test_blue_green(self):
        assert list(BlueGreenStrategy(None, None).steps({})) == [0, 100]

    def test_canary_default(self):
        assert list(CanaryStrategy(None, None).steps({})) == [10, 50, 100]

    def test_canary_custom_steps_end_at_full_traffic(self):
        assert list(CanaryStrategy(None, None).steps({"canary_steps": [5, 25]})) == [5, 25, 100]

    @pytest.mark.parametrize("steps", [[50, 10], [0, 100], [10, 150], []])
    def test_canary_invalid_steps(self, steps):
        with pytest.raises(ValidationError):
            CanaryStrategy(None, None).steps({"canary_steps": steps})

    def test_rolling_batches(self):
        assert list(RollingStrategy(None, None).steps({"batches": 2})) == [50, 100]

    def test_rolling_invalid_batches(self):
        with pytest.raises(ValidationError):
            RollingStrategy(None, None).steps({"batches": 0})

    def test_default_timeouts(self):
        assert DirectStrategy.default_timeout < BlueGreenStrategy.default_timeout
        assert BlueGreenStrategy.default_timeout < CanaryStrategy.default_timeout
        assert CanaryStrategy.default_timeout < RollingStrategy.default_timeout


class TestSimulatedRolloutTarget:
    """Tests for SimulatedRolloutTarget."""

    def test_stable_after_settle_time(self, clock, deployment):
        target = SimulatedRolloutTarget(clock, settle_times={"canary": 3})
        target.apply(deployment, 10)

        assert not target.is_stable(deployment)
        clock.advance(3)
        assert target.is_stable(deployment)
        assert target.weight(deployment.id) == 10

    def test_revert(self, clock, deployment):
        target = SimulatedRolloutTarget(clock)
        target.apply(deployment, 100)
        target.revert(deployment)

        assert target.weight(deployment.id) == 0
        assert target.is_stable(deployment)

    def test_release_forgets_deployment(self, clock, deployment):
        target = SimulatedRolloutTarget(clock)
        target.apply(deployment, 100)
        target.release(deployment)

        assert target._weights == {}
        assert target._applied_at == {}


class TestRoutineExecution:
    """Tests for StrategyRoutine.execute."""

    def test_logs_each_step(self, clock, deployment):
        messages = []
        routine = CanaryStrategy(SimulatedRolloutTarget(clock), clock)

        routine.execute(deployment, lambda msg, **kwargs: messages.append(msg))

        assert messages == [
            "Executing canary deployment",
            "Canary step: 10% of traffic",
            "Canary step: 50% of traffic",
            "Promoting canary to 100% of traffic",
            "Canary rollout complete",
        ]

    def test_blue_green_names_slots(self, clock, deployment):
        messages = []
        routine = BlueGreenStrategy(SimulatedRolloutTarget(clock), clock)

        routine.execute(deployment, lambda msg, **kwargs: messages.append(msg))

        assert "Active slot serves 1.9.0; staging 2.0.0 on idle slot" in messages
        assert "Switching traffic to idle slot" in messages

    def test_waits_for_settle_time(self, clock, deployment):
        routine = DirectStrategy(SimulatedRolloutTarget(clock, settle_times={"canary": 4}), clock)
        start = clock.monotonic()

        routine.execute(deployment, lambda msg, **kwargs: None)

        assert clock.monotonic() - start == 4

    def test_timeout_raises(self, clock, deployment):
        routine = CanaryStrategy(SimulatedRolloutTarget(clock), clock)

        with pytest.raises(StrategyExecutionError) as exc:
            routine.execute(deployment, lambda msg, **kwargs: None, timeout=20)

        assert exc.value.strategy == "canary"
        assert "did not stabilize within 20s" in str(exc.value)

    def test_stops_when_proceed_declines(self, clock, deployment):
        target = SimulatedRolloutTarget(clock)
        routine = CanaryStrategy(target, clock)
        messages = []
        answers = iter([True])

        routine.execute(
            deployment,
            lambda msg, **kwargs: messages.append(msg),
            proceed=lambda: next(answers, False),
        )

        assert messages == ["Executing canary deployment", "Canary step: 10% of traffic"]
        assert target.weight(deployment.id) == 10


class TestStrategyExecutor:
    """Tests for StrategyExecutor."""

    def test_writes_to_deployment_log(self, state, clock, deployment):
        executor = StrategyExecutor.defaults(state, SimulatedRolloutTarget(clock), clock)

        executor.execute(deployment.id, "direct")

        logs = state.read_logs(deployment.id)
        assert logs[0].message == "Executing direct deployment"
        assert logs[1].details == {"weight": 100}
        assert {entry.component for entry in logs} == {"strategy-executor"}

    def test_settled_deployment_not_rolled_out(self, state, clock, deployment):
        target = SimulatedRolloutTarget(clock)
        executor = StrategyExecutor.defaults(state, target, clock)
        state.update(
            deployment.id,
            lambda d: d.transition_to(DeploymentStatus.ROLLING_BACK, reason="error spike"),
        )

        executor.execute(deployment.id, "canary")

        assert target.weight(deployment.id) == 0
        assert state.read_logs(deployment.id) == []

    def test_unknown_strategy(self, state, clock, deployment):
        executor = StrategyExecutor.defaults(state, SimulatedRolloutTarget(clock), clock)

        with pytest.raises(StrategyExecutionError):
            executor.execute(deployment.id, "big_bang")

    def test_unregistered_strategy(self, state, clock, deployment):
        executor = StrategyExecutor(state, {})

        with pytest.raises(StrategyExecutionError):
            executor.execute(deployment.id, DeploymentStrategy.DIRECT)

    def test_configured_timeout_override(self, state, clock, deployment):
        executor = StrategyExecutor.defaults(
            state, SimulatedRolloutTarget(clock), clock, timeouts={"canary": 5}
        )

        with pytest.raises(StrategyExecutionError):
            executor.execute(deployment.id, "canary")

    def test_outer_deadline_caps_timeout(self, state, clock, deployment):
        executor = StrategyExecutor.defaults(state, SimulatedRolloutTarget(clock), clock)
        deadline = Deadline(clock, 7)

        with pytest.raises(StrategyExecutionError):
            executor.execute(deployment.id, "canary", deadline=deadline)

        assert deadline.expired()
