"""Configuration management for agentctl using Pydantic.

Settings come from YAML files, merged in order of precedence, and from
``AGENTCTL_*`` environment variables. Secrets can be left out of files
entirely, or set to ``from_env`` to make the environment lookup explicit.
"""

import os
from pathlib import Path
from typing import Any

import pydantic
import yaml
from pydantic import BaseModel, Field, field_validator

from agentctl.core.exceptions import ConfigError
from agentctl.core.logging import LogLevel
from agentctl.core.output import OutputFormat

FROM_ENV = "from_env"

STRATEGIES = ("direct", "blue_green", "canary", "rolling")


def _secret(value: str | None, *env_vars: str) -> str | None:
    """Resolve a secret: the configured value, else the first env var set."""
    if value is not None and value != FROM_ENV:
        return value
    for name in env_vars:
        if os.environ.get(name):
            return os.environ[name]
    return None


class BackupServiceConfig(BaseModel):
    """Backup Service connection settings."""

    url: str | None = None
    token: str | None = None
    timeout: int = 30

    def get_url(self) -> str | None:
        return os.environ.get("AGENTCTL_BACKUP_URL") or self.url

    def get_token(self) -> str | None:
        return _secret(self.token, "AGENTCTL_BACKUP_TOKEN")


class CheckServiceConfig(BaseModel):
    """Check Execution Service connection settings.

    ``min_success_rate`` is the pass mark for test suite runs that do not
    set their own.
    """

    url: str | None = None
    token: str | None = None
    timeout: int = 30
    poll_interval: float = Field(default=5.0, gt=0)  # seconds
    min_success_rate: float = 0.9

    @field_validator("min_success_rate")
    @classmethod
    def validate_success_rate(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("min_success_rate must be between 0 and 1")
        return v

    def get_url(self) -> str | None:
        return os.environ.get("AGENTCTL_CHECKS_URL") or self.url

    def get_token(self) -> str | None:
        return _secret(self.token, "AGENTCTL_CHECKS_TOKEN")


class SlackConfig(BaseModel):
    """Slack bot used for ``slack`` notification rules."""

    token: str | None = None
    username: str = "agentctl"
    icon_emoji: str = ":rocket:"
    timeout: int = 30

    def get_token(self) -> str | None:
        return _secret(self.token, "AGENTCTL_SLACK_TOKEN", "SLACK_BOT_TOKEN")


class EmailConfig(BaseModel):
    """SMTP settings for ``email`` notification rules."""

    smtp_host: str | None = None
    smtp_port: int = 587
    username: str | None = None
    password: str | None = None
    sender: str = "agentctl@localhost"
    use_tls: bool = True
    timeout: int = 30

    def get_password(self) -> str | None:
        return _secret(self.password, "AGENTCTL_SMTP_PASSWORD")


class WebhookConfig(BaseModel):
    """Settings for ``webhook`` notification rules."""

    timeout: int = 10
    headers: dict[str, str] = Field(default_factory=dict)


class EngineConfig(BaseModel):
    """Deployment engine settings."""

    state_dir: str | None = None
    stabilization_delay: float = Field(default=30.0, ge=0)  # seconds
    default_max_deployment_duration: float | None = Field(default=None, gt=0)  # minutes
    strategy_timeouts: dict[str, float] = Field(default_factory=dict)  # seconds

    @field_validator("strategy_timeouts")
    @classmethod
    def validate_strategy_timeouts(cls, v: dict[str, float]) -> dict[str, float]:
        for strategy, seconds in v.items():
            if strategy not in STRATEGIES:
                raise ValueError(f"Unknown strategy '{strategy}' in strategy_timeouts")
            if seconds <= 0:
                raise ValueError(f"Timeout for '{strategy}' must be positive")
        return v

    def get_state_dir(self) -> Path:
        """State directory holding ``configs/`` and ``deployments/``."""
        value = os.environ.get("AGENTCTL_STATE_DIR") or self.state_dir
        if value:
            return Path(value).expanduser()
        return Path.home() / ".agentctl"


class ProfileConfig(BaseModel):
    """One environment's services and engine settings."""

    backup: BackupServiceConfig = Field(default_factory=BackupServiceConfig)
    checks: CheckServiceConfig = Field(default_factory=CheckServiceConfig)
    slack: SlackConfig = Field(default_factory=SlackConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)


class GlobalConfig(BaseModel):
    """Global settings."""

    output_format: OutputFormat = OutputFormat.TABLE
    color: str = "auto"  # auto, always, never
    verbosity: LogLevel = LogLevel.INFO
    confirm_destructive: bool = True

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        if v not in ("auto", "always", "never"):
            raise ValueError("color must be 'auto', 'always', or 'never'")
        return v


class AgentCtlConfig(BaseModel):
    """Main configuration model."""

    model_config = {"populate_by_name": True}

    version: str = "1"
    global_settings: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    profiles: dict[str, ProfileConfig] = Field(default_factory=lambda: {"default": ProfileConfig()})

    def get_profile(self, name: str | None = None) -> ProfileConfig:
        """Get a profile by name, defaulting to 'default'.

        Raises:
            ConfigError: If the profile is not defined
        """
        profile_name = name or "default"
        if profile_name not in self.profiles:
            available = ", ".join(sorted(self.profiles)) or "none"
            raise ConfigError(f"Profile '{profile_name}' not found (available: {available})")
        return self.profiles[profile_name]


class ConfigLoader:
    """Loads and merges configuration files.

    Later sources override earlier ones key by key:
    ``~/.agentctl/config.yaml``, then the nearest project file, then an
    explicit ``--config`` file. ``sources`` lists the files that were read.
    """

    CONFIG_FILENAMES = ["agentctl.yaml", "agentctl.yml", ".agentctl.yaml", ".agentctl.yml"]

    def __init__(self):
        self.sources: list[Path] = []

    def load(
        self,
        config_file: str | Path | None = None,
        profile: str | None = None,
    ) -> AgentCtlConfig:
        """Load and validate the merged configuration.

        Raises:
            ConfigError: If a file is missing or invalid, or ``profile`` is undefined
        """
        candidates: list[Path] = []

        user_config = Path.home() / ".agentctl" / "config.yaml"
        if user_config.exists():
            candidates.append(user_config)

        project_config = self._find_project_config()
        if project_config:
            candidates.append(project_config)

        if config_file:
            config_path = Path(config_file)
            if not config_path.exists():
                raise ConfigError(f"Config file not found: {config_file}")
            candidates.append(config_path)

        self.sources = candidates
        merged = self._merge_configs([self._load_yaml_file(path) for path in candidates])

        try:
            config = AgentCtlConfig(**merged)
        except pydantic.ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ConfigError(f"Invalid configuration: {problems}")

        if profile:
            config.get_profile(profile)
        return config

    def _find_project_config(self) -> Path | None:
        """Find the nearest project config in the current or a parent directory."""
        current = Path.cwd()
        while current != current.parent:
            for filename in self.CONFIG_FILENAMES:
                config_path = current / filename
                if config_path.exists():
                    return config_path
            current = current.parent
        return None

    def _load_yaml_file(self, path: Path) -> dict[str, Any]:
        try:
            with open(path) as f:
                content = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}")

        if not isinstance(content, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return content

    def _merge_configs(self, configs: list[dict[str, Any]]) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for config in configs:
            result = self._deep_merge(result, config)
        return result

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result


def load_config(
    config_file: str | Path | None = None,
    profile: str | None = None,
) -> AgentCtlConfig:
    """Load agentctl configuration from the usual locations."""
    return ConfigLoader().load(config_file, profile)


def get_default_config() -> AgentCtlConfig:
    """Get default configuration without loading from files."""
    return AgentCtlConfig()
