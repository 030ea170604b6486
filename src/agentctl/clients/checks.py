"""Check Execution Service API client."""

from dataclasses import dataclass

from agentctl.clients.base import ServiceClient
from agentctl.config import CheckServiceConfig
from agentctl.core.exceptions import CheckServiceError

TERMINAL_RUN_STATES = frozenset({"completed", "failed"})


@dataclass
class RunStatus:
    """Status of a test-suite run."""

    status: str  # queued, running, completed, failed
    success_rate: float = 0.0

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_RUN_STATES


class CheckServiceClient(ServiceClient):
    """Client for the Check Execution Service REST API.

    Suite runs are asynchronous: ``start_suite`` returns a run id that is
    polled with ``get_run_status``.
    """

    service_name = "Check Execution Service"
    error_class = CheckServiceError

    def __init__(self, config: CheckServiceConfig):
        super().__init__(config.timeout)
        self._config = config

    def _base_url(self) -> str | None:
        return self._config.get_url()

    def _token(self) -> str | None:
        return self._config.get_token()

    def start_suite(self, suite_id: str) -> str:
        """Start a test-suite run and return the run id."""
        data = self._request("POST", f"/suites/{suite_id}/runs")
        return data["id"]

    def get_run_status(self, run_id: str) -> RunStatus:
        # Older service versions only report the rate inside "summary"
        data = self._request("GET", f"/runs/{run_id}")
        summary = data.get("summary") or {}
        return RunStatus(
            status=data.get("status", "running"),
            success_rate=float(data.get("success_rate", summary.get("successRate", 0.0))),
        )
