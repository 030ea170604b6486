"""agentctl - deployment orchestration for conversational agent configurations."""

__version__ = "0.1.0"
