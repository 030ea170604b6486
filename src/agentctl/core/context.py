"""Click context object shared by agentctl commands."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from agentctl.config import AgentCtlConfig, ProfileConfig, get_default_config
from agentctl.core.logging import StructuredLogger, resolve_level, setup_logging
from agentctl.core.output import OutputFormat, OutputFormatter

if TYPE_CHECKING:
    from agentctl.deploy.engine import DeploymentEngine


class AgentCtlContext:
    """Per-invocation state: the resolved profile, output and the engine.

    Commands never build engine parts themselves. They go through
    ``ctx.engine``, which wires stores, checks, strategies and notification
    channels from the selected profile on first use.
    """

    def __init__(
        self,
        config: AgentCtlConfig | None = None,
        profile: str | None = None,
        output_format: OutputFormat | None = None,
        verbose: int = 0,
        quiet: bool = False,
        color: bool = True,
    ):
        self._config = config or get_default_config()
        self._profile_name = profile or "default"
        self._output_format = output_format or self._config.global_settings.output_format
        self._verbose = verbose
        self._quiet = quiet

        level = resolve_level(verbose, quiet, self._config.global_settings.verbosity)
        setup_logging(level, rich_output=color)
        self._logger = StructuredLogger("context").bind(profile=self._profile_name)

        self._output = OutputFormatter(format=self._output_format, color=color, quiet=quiet)
        self._engine: DeploymentEngine | None = None

    @property
    def config(self) -> AgentCtlConfig:
        return self._config

    @property
    def profile(self) -> ProfileConfig:
        """The selected profile.

        Raises:
            ConfigError: If the profile is not defined
        """
        return self._config.get_profile(self._profile_name)

    @property
    def profile_name(self) -> str:
        return self._profile_name

    @property
    def output(self) -> OutputFormatter:
        return self._output

    @property
    def output_format(self) -> OutputFormat:
        return self._output_format

    @property
    def verbose(self) -> int:
        return self._verbose

    @property
    def quiet(self) -> bool:
        return self._quiet

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def engine(self) -> DeploymentEngine:
        """The deployment engine for the selected profile, built once."""
        if self._engine is None:
            # Imported here so `agentctl --help` does not load the engine stack
            from agentctl.deploy.engine import build_engine

            profile = self.profile
            self._engine = build_engine(profile)
            self._logger.debug("Built deployment engine", state_dir=profile.engine.get_state_dir())
        return self._engine

    def confirm(self, message: str, default: bool = False) -> bool:
        """Ask before a destructive action unless ``confirm_destructive`` is off."""
        if not self._config.global_settings.confirm_destructive:
            return True
        return self._output.confirm(message, default)


pass_context = click.make_pass_decorator(AgentCtlContext, ensure=True)
