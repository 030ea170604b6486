"""Deploy command group."""

import getpass

import click

from agentctl.core.context import pass_context, AgentCtlContext
from agentctl.core.exceptions import AgentCtlError, Cancelled, ValidationError
from agentctl.core.output import OutputFormat, format_duration, status_markup
from agentctl.deploy.models import Deployment, DeploymentArtifact, DeploymentStatus


def _parse_artifact(value: str) -> DeploymentArtifact:
    parts = value.split(":")
    if len(parts) != 3 or not all(parts):
        raise ValidationError(f"Invalid artifact '{value}', expected TYPE:NAME:VERSION")
    return DeploymentArtifact(type=parts[0], name=parts[1], version=parts[2])


def _print_deployment(ctx: AgentCtlContext, deployment: Deployment) -> None:
    """Print a deployment summary in the configured format."""
    if ctx.output_format != OutputFormat.TABLE:
        ctx.output.print_data(deployment.to_dict(include_logs=False))
        return

    duration = deployment.duration_seconds
    ctx.output.print_header(f"Deployment: {deployment.id}")
    ctx.output.print_fields(
        {
            "Config": deployment.config_id,
            "Version": deployment.version,
            "Environment": deployment.environment,
            "Strategy": deployment.strategy,
            "Status": status_markup(deployment.status.value),
            "Deployed by": deployment.deployed_by,
            "Previous version": deployment.previous_version or None,
            "Duration": format_duration(duration) if duration is not None else None,
        }
    )

    if deployment.approvals:
        ctx.output.print_data(
            [
                {
                    "approver": a.approver_id,
                    "status": a.status.value,
                    "comments": a.comments or "",
                }
                for a in deployment.approvals
            ],
            title="Approvals",
        )

    if deployment.checks:
        ctx.output.print_data(
            [
                {
                    "check": c.name,
                    "phase": c.phase.value,
                    "required": c.required,
                    "status": c.status.value,
                    "errors": "; ".join(c.errors),
                }
                for c in deployment.checks
            ],
            title="Checks",
        )

    if deployment.rollback:
        rb = deployment.rollback
        outcome = "succeeded" if rb.success else f"failed ({rb.error})"
        ctx.output.print_panel(
            f"Rollback {outcome} after {format_duration(rb.rollback_duration)}\n"
            f"Reason: {rb.reason}\n"
            f"Triggered by: {rb.triggered_by}\n"
            f"Restored version: {rb.previous_version or 'unknown'}",
            title="Rollback",
            style="green" if rb.success else "red",
        )


@click.group()
@pass_context
def deploy(ctx: AgentCtlContext) -> None:
    """Deployment orchestration - start, approve, status, rollback.

    \b
    Examples:
        agentctl deploy start 3f2a9c1e --version 1.4.0
        agentctl deploy approve d41c02aa --approver alice
        agentctl deploy status d41c02aa
        agentctl deploy rollback d41c02aa --reason "error spike"
    """
    pass


@deploy.command("start")
@click.argument("config_id")
@click.option("--version", "version", required=True, help="Version being deployed")
@click.option("--by", "deployed_by", default=lambda: getpass.getuser(), help="Who is deploying")
@click.option(
    "--artifact",
    "artifacts",
    multiple=True,
    metavar="TYPE:NAME:VERSION",
    help="Artifact shipped by this deployment (repeatable)",
)
@pass_context
def start(
    ctx: AgentCtlContext,
    config_id: str,
    version: str,
    deployed_by: str,
    artifacts: tuple[str, ...],
) -> None:
    """Start a deployment from a stored config.

    Deployments without approval policies run to completion immediately.

    \b
    Examples:
        agentctl deploy start 3f2a9c1e --version 1.4.0
        agentctl deploy start 3f2a9c1e --version 1.4.0 --artifact intents:greeting:7
    """
    try:
        parsed = [_parse_artifact(a) for a in artifacts]
        deployment = ctx.engine.start_deployment(config_id, version, deployed_by, artifacts=parsed)

        if deployment.status == DeploymentStatus.PENDING_APPROVAL:
            ctx.output.print_info(f"Deployment {deployment.id} is awaiting approval")
        elif deployment.status == DeploymentStatus.COMPLETED:
            ctx.output.print_success(f"Deployment {deployment.id} completed")
        else:
            ctx.output.print_warning(f"Deployment {deployment.id} ended as {deployment.status.value}")

        _print_deployment(ctx, deployment)

    except Cancelled:
        raise
    except AgentCtlError as e:
        ctx.output.print_error(f"Deployment failed: {e}")
        raise click.Abort()


def _decide(ctx: AgentCtlContext, deployment_id: str, approver: str, approved: bool, comments: str | None) -> None:
    try:
        deployment = ctx.engine.approve_deployment(deployment_id, approver, approved, comments)
    except Cancelled:
        raise
    except AgentCtlError as e:
        ctx.output.print_error(f"Could not record decision: {e}")
        raise click.Abort()

    if approved:
        ctx.output.print_success(f"Approval by {approver} recorded")
    else:
        ctx.output.print_warning(f"Deployment {deployment_id} rejected by {approver}")
    _print_deployment(ctx, deployment)


@deploy.command("approve")
@click.argument("deployment_id")
@click.option("--approver", default=lambda: getpass.getuser(), help="Approver id")
@click.option("-m", "--comments", default=None, help="Comments stored with the decision")
@pass_context
def approve(ctx: AgentCtlContext, deployment_id: str, approver: str, comments: str | None) -> None:
    """Approve a deployment awaiting approval.

    Once every approver has signed off the deployment runs.
    """
    _decide(ctx, deployment_id, approver, True, comments)


@deploy.command("reject")
@click.argument("deployment_id")
@click.option("--approver", default=lambda: getpass.getuser(), help="Approver id")
@click.option("-m", "--comments", default=None, help="Reason for rejecting")
@pass_context
def reject(ctx: AgentCtlContext, deployment_id: str, approver: str, comments: str | None) -> None:
    """Reject a deployment awaiting approval."""
    _decide(ctx, deployment_id, approver, False, comments)


@deploy.command("expire-approvals")
@click.argument("deployment_id")
@pass_context
def expire_approvals(ctx: AgentCtlContext, deployment_id: str) -> None:
    """Reject a deployment whose approval window has elapsed."""
    try:
        expired = ctx.engine.expire_approvals(deployment_id)
    except AgentCtlError as e:
        ctx.output.print_error(str(e))
        raise click.Abort()

    if expired:
        ctx.output.print_warning(f"Deployment {deployment_id} rejected: approval timed out")
    else:
        ctx.output.print_info(f"Deployment {deployment_id} has no overdue approvals")


@deploy.command("status")
@click.argument("deployment_id")
@pass_context
def status(ctx: AgentCtlContext, deployment_id: str) -> None:
    """Show deployment status.

    \b
    Examples:
        agentctl deploy status d41c02aa
        agentctl -o json deploy status d41c02aa
    """
    try:
        deployment = ctx.engine.get_deployment(deployment_id)
    except AgentCtlError as e:
        ctx.output.print_error(f"Failed to get status: {e}")
        raise click.Abort()

    _print_deployment(ctx, deployment)


@deploy.command("logs")
@click.argument("deployment_id")
@click.option("--level", type=click.Choice(["debug", "info", "warn", "error"]), default=None, help="Only this level")
@click.option("--tail", type=int, default=None, help="Show only the last N entries")
@pass_context
def logs(ctx: AgentCtlContext, deployment_id: str, level: str | None, tail: int | None) -> None:
    """Show the audit log of a deployment."""
    try:
        entries = ctx.engine.get_logs(deployment_id)
    except AgentCtlError as e:
        ctx.output.print_error(f"Failed to read logs: {e}")
        raise click.Abort()

    if level:
        entries = [e for e in entries if e.level.value == level]
    if tail:
        entries = entries[-tail:]

    if ctx.output_format != OutputFormat.TABLE:
        ctx.output.print_data([e.to_dict() for e in entries])
        return

    if not entries:
        ctx.output.print_info("No log entries")
        return

    for entry in entries:
        ctx.output.print_log_line(entry.timestamp, entry.level.value, entry.component, entry.message)


@deploy.command("history")
@click.option("-e", "--environment", type=click.Choice(["dev", "staging", "production"]), default=None)
@click.option("--limit", default=20, help="Max results")
@pass_context
def history(ctx: AgentCtlContext, environment: str | None, limit: int) -> None:
    """List deployments, newest first.

    \b
    Examples:
        agentctl deploy history
        agentctl deploy history -e production --limit 5
    """
    deployments = ctx.engine.get_history(environment=environment, limit=limit)

    if not deployments:
        ctx.output.print_info("No deployments found")
        return

    rows = [
        {
            "id": d.id,
            "version": d.version,
            "environment": d.environment,
            "strategy": d.strategy,
            "status": d.status.value,
            "deployed_by": d.deployed_by,
            "started": d.start_time.strftime("%Y-%m-%d %H:%M"),
        }
        for d in deployments
    ]
    ctx.output.print_data(rows, title="Deployments")


@deploy.command("metrics")
@click.argument("deployment_id")
@pass_context
def metrics(ctx: AgentCtlContext, deployment_id: str) -> None:
    """Show summary metrics of a finished deployment."""
    try:
        result = ctx.engine.get_metrics(deployment_id)
    except AgentCtlError as e:
        ctx.output.print_error(f"Failed to get metrics: {e}")
        raise click.Abort()

    if result is None:
        ctx.output.print_info(f"Deployment {deployment_id} is still in progress")
        return

    if ctx.output_format != OutputFormat.TABLE:
        ctx.output.print_data(result.to_dict())
        return

    ctx.output.print_data(
        {
            "duration": format_duration(result.deployment_duration),
            "check time": format_duration(result.test_execution_time),
            "success rate": f"{result.success_rate:.0%}",
            "error rate": f"{result.error_rate:.0%}",
        },
        title=f"Metrics: {deployment_id}",
    )


@deploy.command("rollback")
@click.argument("deployment_id")
@click.option("--reason", required=True, help="Why the deployment is rolled back")
@click.option("--by", "triggered_by", default=lambda: getpass.getuser(), help="Operator requesting the rollback")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation")
@pass_context
def rollback(ctx: AgentCtlContext, deployment_id: str, reason: str, triggered_by: str, yes: bool) -> None:
    """Roll back a deployment that is being validated.

    \b
    Examples:
        agentctl deploy rollback d41c02aa --reason "error spike"
    """
    if not yes and not ctx.confirm(f"Rollback deployment {deployment_id}?"):
        ctx.output.print_info("Cancelled")
        return

    try:
        record = ctx.engine.rollback_deployment(deployment_id, reason, triggered_by)
    except AgentCtlError as e:
        ctx.output.print_error(f"Rollback failed: {e}")
        raise click.Abort()

    if record.success:
        ctx.output.print_success(f"Deployment {deployment_id} rolled back")
    else:
        ctx.output.print_warning(f"Deployment {deployment_id} rolled back, revert failed: {record.error}")
