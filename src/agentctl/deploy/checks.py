"""Pre- and post-deployment check execution."""

import concurrent.futures
import os
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from agentctl.core.exceptions import Cancelled, CheckTimeout
from agentctl.core.logging import get_logger
from agentctl.core.timing import Clock, Deadline, call_with_timeout, utcnow
from agentctl.deploy.models import CheckPhase, CheckStatus, Deployment, LogLevel
from agentctl.deploy.schema import CheckSpec, CheckType
from agentctl.deploy.state import DeploymentState

logger = get_logger(__name__)

COMPONENT = "check-runner"


@dataclass
class ProbeResult:
    """Outcome reported by a probe."""

    passed: bool
    output: str = ""
    errors: list[str] = field(default_factory=list)


Probe = Callable[[CheckSpec], ProbeResult]


class CheckService(Protocol):
    """Check Execution Service operations used by the runner."""

    def start_suite(self, suite_id: str) -> str: ...

    def get_run_status(self, run_id: str) -> Any: ...


def _param(check: CheckSpec, *names: str, default: Any = None) -> Any:
    """First parameter present under any of ``names``."""
    for name in names:
        if name in check.parameters:
            return check.parameters[name]
    return default


def http_health_probe(check: CheckSpec) -> ProbeResult:
    """GET ``parameters.url`` and pass on an expected status code."""
    url = _param(check, "url", "endpoint")
    if not url:
        return ProbeResult(False, errors=["Missing parameter: url"])

    expected = _param(check, "expected_status", "expectedStatus", default=[200])
    if isinstance(expected, int):
        expected = [expected]

    response = httpx.get(url, timeout=check.timeout_seconds, follow_redirects=True)
    passed = response.status_code in expected
    output = f"GET {url} -> {response.status_code}"
    errors = [] if passed else [f"Unexpected status {response.status_code}, expected {expected}"]
    return ProbeResult(passed, output=output, errors=errors)


def latency_probe(check: CheckSpec) -> ProbeResult:
    """Issue ``requests`` GETs and compare p95 latency with ``max_latency_ms``."""
    url = _param(check, "url", "endpoint")
    if not url:
        return ProbeResult(False, errors=["Missing parameter: url"])

    requests = int(_param(check, "requests", default=10))
    max_latency_ms = float(_param(check, "max_latency_ms", "maxLatencyMs", default=1000))

    latencies: list[float] = []
    errors: list[str] = []
    with httpx.Client(timeout=check.timeout_seconds) as client:
        for _ in range(max(1, requests)):
            start = time.perf_counter()
            response = client.get(url)
            latencies.append((time.perf_counter() - start) * 1000)
            if response.status_code >= 500:
                errors.append(f"Server error {response.status_code}")

    latencies.sort()
    p95 = latencies[min(len(latencies) - 1, int(len(latencies) * 0.95))]
    passed = p95 <= max_latency_ms and not errors
    if p95 > max_latency_ms:
        errors.append(f"p95 latency {p95:.0f}ms exceeds {max_latency_ms:.0f}ms")

    return ProbeResult(passed, output=f"p95={p95:.0f}ms over {len(latencies)} requests", errors=errors)


def command_probe(check: CheckSpec) -> ProbeResult:
    """Run ``parameters.command`` in a shell and pass on exit code 0."""
    command = _param(check, "command", "script")
    if not command:
        return ProbeResult(False, errors=["Missing parameter: command"])

    env = os.environ.copy()
    for key, value in (_param(check, "environment", "env", default={}) or {}).items():
        env[key] = str(value)

    try:
        proc = subprocess.run(
            command,
            shell=True,
            capture_output=True,
            text=True,
            timeout=check.timeout_seconds,
            env=env,
        )
    except subprocess.TimeoutExpired:
        raise CheckTimeout(check.id, check.timeout_seconds)

    if proc.returncode == 0:
        return ProbeResult(True, output=proc.stdout)
    return ProbeResult(
        False,
        output=proc.stdout,
        errors=[proc.stderr.strip() or f"Exit code: {proc.returncode}"],
    )


class ProbeRegistry:
    """Maps check types to the probes that execute them.

    ``test_suite`` checks are handled by the runner itself through the
    Check Execution Service and are never looked up here.
    """

    def __init__(self, probes: dict[CheckType, Probe] | None = None):
        self._probes: dict[CheckType, Probe] = dict(probes or {})

    @classmethod
    def defaults(cls) -> "ProbeRegistry":
        """Registry with the built-in HTTP and command probes."""
        return cls(
            {
                CheckType.HEALTH_CHECK: http_health_probe,
                CheckType.PERFORMANCE_TEST: latency_probe,
                CheckType.SECURITY_SCAN: command_probe,
                CheckType.CUSTOM_SCRIPT: command_probe,
            }
        )

    def register(self, check_type: CheckType | str, probe: Probe) -> None:
        self._probes[CheckType(check_type)] = probe

    def get(self, check_type: CheckType | str) -> Probe | None:
        return self._probes.get(CheckType(check_type))

    def __contains__(self, check_type: object) -> bool:
        return check_type in self._probes


class CheckRunner:
    """Runs declared checks in order and records each outcome."""

    def __init__(
        self,
        state: DeploymentState,
        probes: ProbeRegistry,
        clock: Clock,
        check_service: CheckService | None = None,
        poll_interval: float = 5.0,
        min_success_rate: float = 0.9,
    ):
        self._state = state
        self._probes = probes
        self._clock = clock
        self._check_service = check_service
        self._poll_interval = poll_interval
        self._min_success_rate = min_success_rate

    def run_checks(
        self,
        deployment_id: str,
        checks: list[CheckSpec],
        phase: CheckPhase,
        deadline: Deadline | None = None,
    ) -> bool:
        """Run ``checks`` sequentially.

        Every check runs even after a required one fails.

        Returns:
            False if any required check failed
        """
        all_passed = True
        for check in checks:
            passed = self.run_check(deployment_id, check, phase, deadline)
            if not passed and check.required:
                all_passed = False
        return all_passed

    def run_check(
        self,
        deployment_id: str,
        check: CheckSpec,
        phase: CheckPhase,
        deadline: Deadline | None = None,
    ) -> bool:
        """Run one check and persist its result slot.

        Checks against a settled deployment are skipped and report False.
        """
        log = logger.bind(deployment_id=deployment_id, check_id=check.id)
        settled = False

        def mark_running(deployment: Deployment) -> None:
            nonlocal settled
            if deployment.is_settled:
                settled = True
                return
            result = deployment.get_check(check.id)
            if result is not None:
                result.status = CheckStatus.RUNNING
                result.start_time = utcnow()
            deployment.add_log(
                LogLevel.INFO,
                f"Running {phase.value} check: {check.name}",
                component=COMPONENT,
                details={"check_id": check.id, "type": check.type.value},
            )
            if check.retry_count:
                deployment.add_log(
                    LogLevel.DEBUG,
                    f"Check {check.name} declares {check.retry_count} retries; running once",
                    component=COMPONENT,
                )

        self._state.update(deployment_id, mark_running)
        if settled:
            log.info("Skipping check, deployment already settled")
            return False
        log.info("Running check", name=check.name, phase=phase.value)

        timeout = check.timeout_seconds
        if deadline is not None:
            timeout = deadline.cap(timeout)

        try:
            outcome = self._execute(check, timeout)
        except Cancelled:
            raise
        except CheckTimeout as e:
            outcome = ProbeResult(False, errors=[str(e)])
        except Exception as e:
            outcome = ProbeResult(False, errors=[f"{type(e).__name__}: {e}"])

        def mark_finished(deployment: Deployment) -> None:
            if deployment.is_settled:
                return
            result = deployment.get_check(check.id)
            if result is not None:
                result.status = CheckStatus.PASSED if outcome.passed else CheckStatus.FAILED
                result.end_time = utcnow()
                result.output = outcome.output or None
                result.errors = list(outcome.errors)
            if outcome.passed:
                deployment.add_log(
                    LogLevel.INFO,
                    f"Check passed: {check.name}",
                    component=COMPONENT,
                    details={"check_id": check.id},
                )
            else:
                deployment.add_log(
                    LogLevel.ERROR,
                    f"Check failed: {check.name}",
                    component=COMPONENT,
                    details={"check_id": check.id, "required": check.required, "errors": outcome.errors},
                )

        self._state.update(deployment_id, mark_finished)

        if outcome.passed:
            log.info("Check passed")
        else:
            log.error("Check failed", required=check.required, errors=outcome.errors)

        return outcome.passed

    def _execute(self, check: CheckSpec, timeout: float) -> ProbeResult:
        """Dispatch a check by type, bounded by ``timeout`` seconds."""
        if check.type == CheckType.TEST_SUITE:
            return self._run_test_suite(check, timeout)

        probe = self._probes.get(check.type)
        if probe is None:
            logger.warning("Unknown check type", check_id=check.id, type=check.type.value)
            return ProbeResult(False, errors=[f"Unknown check type: {check.type.value}"])

        try:
            return call_with_timeout(lambda: probe(check), timeout)
        except concurrent.futures.TimeoutError:
            raise CheckTimeout(check.id, timeout)

    def _run_test_suite(self, check: CheckSpec, timeout: float) -> ProbeResult:
        """Start a suite run and poll it until it finishes or times out."""
        suite_id = _param(check, "test_suite_id", "testSuiteId")
        if not suite_id:
            return ProbeResult(False, errors=["Missing parameter: test_suite_id"])
        if self._check_service is None:
            return ProbeResult(False, errors=["Check Execution Service not configured"])

        min_success_rate = float(
            _param(check, "min_success_rate", "minSuccessRate", default=self._min_success_rate)
        )

        deadline = Deadline(self._clock, timeout)
        run_id = self._check_service.start_suite(suite_id)
        logger.debug("Started test suite run", suite_id=suite_id, run_id=run_id)

        while True:
            status = self._check_service.get_run_status(run_id)
            if status.finished:
                break
            if deadline.expired():
                raise CheckTimeout(check.id, timeout)
            deadline.sleep(self._poll_interval)
            if deadline.expired():
                raise CheckTimeout(check.id, timeout)

        output = f"run {run_id}: {status.status}, success rate {status.success_rate:.0%}"
        if status.status != "completed":
            return ProbeResult(False, output=output, errors=[f"Suite run {run_id} {status.status}"])
        if status.success_rate < min_success_rate:
            return ProbeResult(
                False,
                output=output,
                errors=[f"Success rate {status.success_rate:.2f} below {min_success_rate:.2f}"],
            )
        return ProbeResult(True, output=output)
