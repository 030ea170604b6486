"""Core utilities shared by agentctl commands and the engine."""

# Import the context from agentctl.core.context directly; importing it here
# would make agentctl.config and agentctl.core circular.
from agentctl.core.exceptions import AgentCtlError, ConfigError, DeploymentError
from agentctl.core.output import OutputFormat, OutputFormatter

__all__ = [
    "AgentCtlError",
    "ConfigError",
    "DeploymentError",
    "OutputFormat",
    "OutputFormatter",
]
