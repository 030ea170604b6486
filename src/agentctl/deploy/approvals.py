"""Approval gate for deployments that require sign-off."""

from datetime import datetime, timedelta

from agentctl.core.exceptions import InvalidTransition
from agentctl.core.logging import get_logger
from agentctl.core.timing import utcnow
from agentctl.deploy.configs import DeploymentConfigStore
from agentctl.deploy.models import (
    ApprovalDecision,
    ApprovalStatus,
    Deployment,
    DeploymentStatus,
    LogLevel,
)
from agentctl.deploy.notifications import NotificationDispatcher
from agentctl.deploy.schema import DeploymentConfig, DeploymentEvent
from agentctl.deploy.state import DeploymentState

logger = get_logger(__name__)

COMPONENT = "approval-gate"
TIMED_OUT = "Approval timed out"


def create_approval_slots(config: DeploymentConfig) -> list[ApprovalDecision]:
    """One pending slot per required approver across all policies."""
    return [
        ApprovalDecision(approver_id=approver, policy_index=index)
        for index, policy in enumerate(config.approvals)
        for approver in policy.required_approvers
    ]


class ApprovalGate:
    """Records approver decisions and resolves the gate.

    A single rejection rejects the deployment. The gate opens once every
    slot is approved; the caller is then expected to execute the deployment.
    """

    def __init__(
        self,
        state: DeploymentState,
        configs: DeploymentConfigStore,
        notifier: NotificationDispatcher,
    ):
        self._state = state
        self._configs = configs
        self._notifier = notifier

    def record_decision(
        self,
        deployment_id: str,
        approver_id: str,
        approved: bool,
        comments: str | None = None,
    ) -> Deployment:
        """Record one approver's decision.

        Args:
            deployment_id: Deployment awaiting approval
            approver_id: Approver making the decision
            approved: True to approve, False to reject
            comments: Optional comments stored on the slot

        Returns:
            The updated Deployment

        Raises:
            InvalidTransition: If the deployment is not awaiting approval, or
                the approver has no pending slot
        """
        decision = ApprovalStatus.APPROVED if approved else ApprovalStatus.REJECTED

        def apply(deployment: Deployment) -> None:
            if deployment.status != DeploymentStatus.PENDING_APPROVAL:
                raise InvalidTransition(
                    f"Deployment is not awaiting approval (status: {deployment.status.value})",
                    deployment_id=deployment.id,
                    current=deployment.status.value,
                )

            slot = deployment.pending_slot(approver_id)
            if slot is None:
                raise InvalidTransition(
                    f"No pending approval for '{approver_id}'",
                    deployment_id=deployment.id,
                    current=deployment.status.value,
                )

            slot.status = decision
            slot.timestamp = utcnow()
            slot.comments = comments
            deployment.add_log(
                LogLevel.INFO,
                f"Deployment {decision.value} by {approver_id}",
                component=COMPONENT,
                details={"approver_id": approver_id, "comments": comments},
            )
            self._resolve(deployment)

        deployment = self._state.update(deployment_id, apply)
        logger.info(
            "Recorded approval decision",
            deployment_id=deployment_id,
            approver=approver_id,
            decision=decision.value,
            status=deployment.status.value,
        )

        event = DeploymentEvent.APPROVED if approved else DeploymentEvent.REJECTED
        self._notify(deployment, event, f"Deployment {decision.value} by {approver_id}")
        return deployment

    def expire_overdue(self, deployment_id: str, now: datetime | None = None) -> bool:
        """Reject a deployment whose approval window has elapsed.

        A pending slot is overdue when its policy declares a ``timeout`` and
        that many minutes have passed since the deployment was created.

        Returns:
            True if the deployment was rejected
        """
        now = now or utcnow()
        deployment = self._state.load(deployment_id)
        if deployment.status != DeploymentStatus.PENDING_APPROVAL:
            return False

        config = self._configs.get(deployment.config_id)
        overdue = [slot.approver_id for slot in deployment.approvals if self._is_overdue(slot, deployment, config, now)]
        if not overdue:
            return False

        def expire(record: Deployment) -> None:
            if record.status != DeploymentStatus.PENDING_APPROVAL:
                return
            for slot in record.approvals:
                if slot.approver_id in overdue and slot.is_pending:
                    slot.status = ApprovalStatus.REJECTED
                    slot.timestamp = now
                    slot.comments = TIMED_OUT
            record.add_log(
                LogLevel.WARN,
                TIMED_OUT,
                component=COMPONENT,
                details={"approvers": overdue},
            )
            self._resolve(record)

        deployment = self._state.update(deployment_id, expire)
        if deployment.status != DeploymentStatus.REJECTED:
            return False

        logger.warning("Approval timed out", deployment_id=deployment_id, approvers=overdue)
        self._notify(deployment, DeploymentEvent.REJECTED, TIMED_OUT)
        return True

    def _resolve(self, deployment: Deployment) -> None:
        if deployment.any_rejected:
            deployment.transition_to(DeploymentStatus.REJECTED, reason="Approval rejected")
            deployment.add_log(LogLevel.WARN, "Deployment rejected", component=COMPONENT)
        elif deployment.all_approved:
            deployment.transition_to(DeploymentStatus.APPROVED, reason="All approvals received")
            deployment.add_log(LogLevel.INFO, "All approvals received", component=COMPONENT)

    @staticmethod
    def _is_overdue(
        slot: ApprovalDecision,
        deployment: Deployment,
        config: DeploymentConfig,
        now: datetime,
    ) -> bool:
        if not slot.is_pending or slot.policy_index >= len(config.approvals):
            return False
        timeout = config.approvals[slot.policy_index].timeout
        if timeout is None:
            return False
        return now - deployment.start_time >= timedelta(minutes=timeout)

    def _notify(self, deployment: Deployment, event: DeploymentEvent, message: str) -> None:
        config = self._configs.get(deployment.config_id)
        self._notifier.notify(config, deployment, event, message)
