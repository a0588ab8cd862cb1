"""Configuration management for termgate.

Loads settings from a YAML configuration file with environment variable
overrides (``TERMGATE_SERVER__PORT=9000`` and friends). Supports .env files.

Runtime settings only: the terminal targets and the security policy live
in their own JSON documents managed by :mod:`termgate.store`.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/termgate.yaml")


class ServerConfig(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=3000, ge=1, le=65535)
    trust_forwarded_for: bool = Field(
        default=False, description="Take the client address from X-Forwarded-For"
    )


class StorageConfig(BaseModel):
    targets_path: Path = Field(default=Path("config/terminals.json"))
    policy_path: Path = Field(default=Path("config/security.json"))
    audit_log_path: Path = Field(default=Path("logs/security.log"))


class BrokerConfig(BaseModel):
    tmux_binary: str = Field(default="tmux")
    poll_interval: float = Field(default=0.5, gt=0, description="Seconds between output polls")
    stream_lines: int = Field(default=50, gt=0)
    snapshot_lines: int = Field(default=100, gt=0)


class IdentityConfig(BaseModel):
    """Headers set by the authenticating reverse proxy in front of termgate."""

    user_header: str = Field(default="X-Forwarded-User")
    role_header: str = Field(default="X-Forwarded-Role")
    targets_header: str = Field(default="X-Forwarded-Terminals")
    admin_role: str = Field(default="admin")


class ClientConfig(BaseModel):
    base_url: str = Field(default="http://localhost:3000")
    timeout: float = Field(default=10.0, gt=0)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the termgate service.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "TERMGATE_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # Bearer token presented by the CLI client to the authenticating proxy
    api_token: SecretStr = Field(default=SecretStr(""))

    # Configuration sections
    server: ServerConfig = Field(default_factory=ServerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    broker: BrokerConfig = Field(default_factory=BrokerConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: init values (YAML) > env vars > .env file > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    return Settings(**yaml_data)
