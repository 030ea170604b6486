"""agentctl command line entry point."""

import sys
from typing import Any

import click
from rich.console import Console

from agentctl import __version__
from agentctl.config import ProfileConfig, load_config
from agentctl.core.context import AgentCtlContext
from agentctl.core.exceptions import AgentCtlError, Cancelled, ConfigError
from agentctl.core.output import OutputFormat

CONTEXT_SETTINGS = {
    "help_option_names": ["-h", "--help"],
    "max_content_width": 120,
}


class OutputFormatType(click.ParamType):
    """Case-insensitive ``--output`` values, converted to OutputFormat."""

    name = "format"

    def convert(self, value: Any, param: click.Parameter | None, ctx: click.Context | None) -> OutputFormat:
        if isinstance(value, OutputFormat):
            return value
        try:
            return OutputFormat(str(value).lower())
        except ValueError:
            choices = ", ".join(f.value for f in OutputFormat)
            self.fail(f"Invalid format '{value}'. Choose from: {choices}", param, ctx)


def print_version(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    if not value or ctx.resilient_parsing:
        return
    click.echo(f"agentctl version {__version__}")
    ctx.exit()


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("-p", "--profile", metavar="NAME", envvar="AGENTCTL_PROFILE", help="Configuration profile to use")
@click.option(
    "-o",
    "--output",
    "output_format",
    type=OutputFormatType(),
    metavar="FORMAT",
    help="Output format: table, json, yaml, raw",
)
@click.option("-v", "--verbose", count=True, help="Show engine progress (-v) or debug detail (-vv)")
@click.option("-q", "--quiet", is_flag=True, help="Only print data and errors")
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    metavar="FILE",
    envvar="AGENTCTL_CONFIG",
    help="Path to config file",
)
@click.option(
    "--version",
    is_flag=True,
    callback=print_version,
    expose_value=False,
    is_eager=True,
    help="Show version and exit",
)
@click.pass_context
def cli(
    ctx: click.Context,
    profile: str | None,
    output_format: OutputFormat | None,
    verbose: int,
    quiet: bool,
    no_color: bool,
    config_file: str | None,
) -> None:
    """AgentCtl - deployment orchestration for conversational agents.

    Takes a versioned agent configuration change through approval,
    pre-deployment checks, staged rollout, post-deployment checks and
    automatic rollback.

    \b
    Examples:
        agentctl configs create production.yaml
        agentctl deploy start 3f2a9c1e --version 1.4.0
        agentctl deploy approve d41c02aa
        agentctl deploy logs d41c02aa

    \b
    Configuration:
        ~/.agentctl/config.yaml    User configuration
        ./agentctl.yaml            Project configuration
        AGENTCTL_*                 Environment variables
    """
    try:
        config = load_config(config_file, profile)
    except ConfigError as e:
        Console(stderr=True).print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)

    ctx.obj = AgentCtlContext(
        config=config,
        profile=profile,
        output_format=output_format,
        verbose=verbose,
        quiet=quiet,
        color=not no_color,
    )


def register_commands() -> None:
    from agentctl.commands.configs import configs
    from agentctl.commands.deploy import deploy

    cli.add_command(configs)
    cli.add_command(deploy)


register_commands()


def _profile_summary(name: str, profile: ProfileConfig) -> dict[str, Any]:
    """Resolved profile settings with secrets reduced to presence flags."""
    engine = profile.engine
    return {
        "profile": name,
        "state_dir": str(engine.get_state_dir()),
        "stabilization_delay": engine.stabilization_delay,
        "max_deployment_duration": engine.default_max_deployment_duration,
        "strategy_timeouts": dict(engine.strategy_timeouts),
        "backup": {
            "url": profile.backup.get_url(),
            "has_token": bool(profile.backup.get_token()),
        },
        "checks": {
            "url": profile.checks.get_url(),
            "has_token": bool(profile.checks.get_token()),
            "poll_interval": profile.checks.poll_interval,
            "min_success_rate": profile.checks.min_success_rate,
        },
        "slack": {"has_token": bool(profile.slack.get_token())},
        "email": {"smtp_host": profile.email.smtp_host},
    }


@cli.command()
@click.pass_obj
def config(ctx: AgentCtlContext) -> None:
    """Show the resolved configuration of the selected profile."""
    summary = _profile_summary(ctx.profile_name, ctx.profile)
    summary["output_format"] = ctx.output_format.value
    ctx.output.print_data(summary, title="Current Configuration")


def main() -> None:
    """Console script entry point."""
    try:
        cli()
    except Cancelled:
        Console(stderr=True).print("[yellow]Cancelled[/yellow]")
        sys.exit(130)
    except AgentCtlError as e:
        Console(stderr=True).print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        Console(stderr=True).print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
