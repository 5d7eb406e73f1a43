"""Configuration management for the panel migration server."""

import os
import re
from pathlib import Path
from typing import Any

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings

from ..models.entities import Database, Project, Website
from .exceptions import ConfigurationError
from .settings import MigrationSettings

logger = structlog.get_logger()

DEFAULT_CONFIG_PATH = "config/panel.yml"


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "127.0.0.1"  # Use 0.0.0.0 for container deployment
    port: int = 8888
    log_level: str = "INFO"


class InventoryConfig(BaseModel):
    """Websites, databases and projects hosted by this panel."""

    websites: list[Website] = Field(default_factory=list)
    databases: list[Database] = Field(default_factory=list)
    projects: list[Project] = Field(default_factory=list)


class PanelMigrateConfig(BaseSettings):
    """Main configuration for the panel migration server."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    tokens: dict[int, str] = Field(
        default_factory=dict, description="API token id -> secret accepted from peer panels"
    )
    inventory: InventoryConfig = Field(default_factory=InventoryConfig)
    migration: MigrationSettings = Field(default_factory=MigrationSettings)
    config_file: str = Field(default=DEFAULT_CONFIG_PATH, alias="PANEL_MIGRATE_CONFIG")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


def load_config(config_path: str | None = None) -> PanelMigrateConfig:
    """Load configuration from .env, the YAML file and environment overrides.

    Args:
        config_path: Optional path to YAML config file

    Returns:
        Loaded configuration

    Raises:
        ConfigurationError: file unreadable or contents invalid
    """
    load_dotenv()

    config = PanelMigrateConfig()

    path = Path(config_path or os.getenv("PANEL_MIGRATE_CONFIG", DEFAULT_CONFIG_PATH))
    if path.exists():
        yaml_config = _load_yaml_config(path)
        try:
            _apply_yaml_config(config, yaml_config)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e
    else:
        logger.info("No configuration file found, using defaults", path=str(path))

    config.config_file = str(path)
    _apply_env_overrides(config)
    return config


def _apply_yaml_config(config: PanelMigrateConfig, yaml_config: dict[str, Any]) -> None:
    if server := yaml_config.get("server"):
        for key, value in server.items():
            if hasattr(config.server, key):
                setattr(config.server, key, value)

    if tokens := yaml_config.get("tokens"):
        config.tokens = {int(token_id): str(secret) for token_id, secret in tokens.items()}

    if inventory := yaml_config.get("inventory"):
        config.inventory = InventoryConfig(**inventory)

    if migration := yaml_config.get("migration"):
        # Explicit environment variables still win over the file
        merged = {**migration, **config.migration.model_dump(exclude_unset=True)}
        config.migration = MigrationSettings(**merged)


def _apply_env_overrides(config: PanelMigrateConfig) -> None:
    """Apply environment variable overrides."""
    if os.getenv("PANEL_HOST"):
        config.server.host = os.getenv("PANEL_HOST", config.server.host)
    if port_env := os.getenv("PANEL_PORT"):
        config.server.port = int(port_env)
    if os.getenv("LOG_LEVEL"):
        config.server.log_level = os.getenv("LOG_LEVEL", config.server.log_level)


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Load YAML configuration file."""
    try:
        content = _expand_yaml_config(config_path.read_text())
        loaded = yaml.safe_load(content)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config from {config_path}: {e}") from e
    # yaml.safe_load can return None, str, list, etc.
    return loaded if isinstance(loaded, dict) else {}


_ALLOWED_ENV_VARS = {"HOME", "USER", "PANEL_ROOT", "PANEL_HOST", "PANEL_PORT", "LOG_LEVEL"}
_ALLOWED_ENV_PREFIX = "PANEL_TOKEN_"


def _expand_yaml_config(content: str) -> str:
    """Expand ${VAR} references to allowlisted environment variables only.

    Token secrets can be kept out of the file as ${PANEL_TOKEN_<NAME>}.
    """

    def replace_var(match):
        var_name = match.group(1)
        if var_name in _ALLOWED_ENV_VARS or var_name.startswith(_ALLOWED_ENV_PREFIX):
            return os.getenv(var_name, match.group(0))  # Keep original if not found
        logger.warning("Environment variable not in allowlist, skipping expansion", variable=var_name)
        return match.group(0)

    return re.sub(r"\$\{([^}]+)\}", replace_var, content)
