"""Deployment configuration store."""

import uuid
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from agentctl.core.exceptions import ConfigNotFound, ValidationError
from agentctl.core.logging import get_logger
from agentctl.core.timing import utcnow
from agentctl.deploy.schema import DeploymentConfig, Environment, validate_config

logger = get_logger(__name__)


def load_config_file(path: str | Path) -> DeploymentConfig:
    """Parse and validate a deployment config from a YAML file.

    Raises:
        ValidationError: If the file is not valid YAML or fails validation
    """
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML in {path}: {e}")
    except OSError as e:
        raise ValidationError(f"Cannot read {path}: {e}")

    return parse_config(data)


def parse_config(data: dict[str, Any]) -> DeploymentConfig:
    """Validate a config dictionary, wrapping schema errors."""
    try:
        return validate_config(data)
    except PydanticValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise ValidationError("Invalid deployment config", details={"errors": errors})


class DeploymentConfigStore:
    """File-backed store of immutable deployment configs.

    Configs are written once as ``<config_id>.yaml`` and never edited; a
    change is a new config with a new id.
    """

    def __init__(self, config_dir: str | Path | None = None):
        if config_dir:
            self._config_dir = Path(config_dir)
        else:
            self._config_dir = Path.home() / ".agentctl" / "configs"
        self._config_dir.mkdir(parents=True, exist_ok=True)

    def _config_file(self, config_id: str) -> Path:
        return self._config_dir / f"{config_id}.yaml"

    def create(self, config: DeploymentConfig) -> DeploymentConfig:
        """Store a new config, assigning its id and creation time.

        Any id already on ``config`` is ignored.
        """
        stored = config.model_copy(
            update={"id": str(uuid.uuid4())[:8], "created_at": utcnow()}
        )

        with open(self._config_file(stored.id), "w") as f:
            yaml.safe_dump(
                stored.model_dump(mode="json"),
                f,
                default_flow_style=False,
                sort_keys=False,
            )

        logger.info("Created deployment config", id=stored.id, name=stored.name)
        return stored

    def get(self, config_id: str) -> DeploymentConfig:
        """Load a config by id.

        Raises:
            ConfigNotFound: If no config with this id exists
        """
        config_file = self._config_file(config_id)
        if not config_file.exists():
            raise ConfigNotFound(config_id)
        return load_config_file(config_file)

    def exists(self, config_id: str) -> bool:
        return self._config_file(config_id).exists()

    def list(self, environment: Environment | None = None) -> list[DeploymentConfig]:
        """List stored configs, newest first."""
        configs: list[DeploymentConfig] = []
        for config_file in self._config_dir.glob("*.yaml"):
            try:
                config = load_config_file(config_file)
            except ValidationError as e:
                logger.warning("Skipping invalid config", path=str(config_file), error=str(e))
                continue
            if environment and config.environment != environment:
                continue
            configs.append(config)

        configs.sort(key=lambda c: c.created_at.isoformat() if c.created_at else "", reverse=True)
        return configs
