"""Deployment config command group."""

import click

from agentctl.core.context import pass_context, AgentCtlContext
from agentctl.core.exceptions import AgentCtlError
from agentctl.deploy.configs import load_config_file
from agentctl.deploy.schema import Environment


@click.group()
@pass_context
def configs(ctx: AgentCtlContext) -> None:
    """Deployment configs - create, list, show.

    Configs are immutable. To change one, create a new config.

    \b
    Examples:
        agentctl configs create production.yaml
        agentctl configs list -e production
        agentctl configs show 3f2a9c1e
    """
    pass


@configs.command("create")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@pass_context
def create(ctx: AgentCtlContext, file: str) -> None:
    """Validate a YAML deployment config and store it."""
    try:
        config = ctx.engine.create_config(load_config_file(file))
    except AgentCtlError as e:
        ctx.output.print_error(f"Invalid config: {e}")
        raise click.Abort()

    ctx.output.print_success(f"Created config {config.id} ({config.name})")


@configs.command("list")
@click.option("-e", "--environment", type=click.Choice([e.value for e in Environment]), default=None)
@pass_context
def list_configs(ctx: AgentCtlContext, environment: str | None) -> None:
    """List stored deployment configs."""
    env = Environment(environment) if environment else None
    items = ctx.engine.configs.list(environment=env)

    if not items:
        ctx.output.print_info("No deployment configs found")
        return

    rows = [
        {
            "id": c.id,
            "name": c.name,
            "environment": c.environment.value,
            "strategy": c.strategy.value,
            "approvers": c.required_approver_count,
            "checks": len(c.pre_deploy_checks) + len(c.post_deploy_checks),
            "rollback": "on" if c.rollback_policy.enabled else "off",
        }
        for c in items
    ]
    ctx.output.print_data(rows, title="Deployment Configs")


@configs.command("show")
@click.argument("config_id")
@pass_context
def show(ctx: AgentCtlContext, config_id: str) -> None:
    """Show a stored deployment config."""
    try:
        config = ctx.engine.configs.get(config_id)
    except AgentCtlError as e:
        ctx.output.print_error(str(e))
        raise click.Abort()

    ctx.output.print_data(config.model_dump(mode="json"), title=f"Config: {config.id}")
