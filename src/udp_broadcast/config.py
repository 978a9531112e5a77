"""Configuration management for udp-broadcast."""

from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from udp_broadcast.core.types import DEFAULT_INTERFACE, AddressFamily

DEFAULT_PORT = 35602
DEFAULT_MESSAGE = "Hello world"


class ConnectionConfig(BaseModel):
    """Broadcast connection configuration."""

    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    interface: str = DEFAULT_INTERFACE
    bind: bool = False
    broadcast_address: Optional[str] = None


class DiscoveryConfig(BaseModel):
    """What to announce and how long to collect replies."""

    message: str = DEFAULT_MESSAGE
    listen_seconds: float = Field(default=3.0, ge=0)
    families: List[AddressFamily] = Field(default_factory=lambda: [AddressFamily.IPV4])


class ResponderConfig(BaseModel):
    """Peer that answers broadcasts."""

    host: str = ""
    reply: str = "pong"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


class Config(BaseModel):
    """Main application configuration."""

    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    responder: ResponderConfig = Field(default_factory=ResponderConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        # Replace environment variables
        data = cls._replace_env_vars(data)

        return cls(**data)

    @staticmethod
    def _replace_env_vars(data: Any) -> Any:
        """Recursively replace ${VAR} patterns with environment variables."""
        import os
        import re

        if isinstance(data, dict):
            return {k: Config._replace_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [Config._replace_env_vars(item) for item in data]
        elif isinstance(data, str):
            pattern = re.compile(r'\$\{([^}]+)\}')
            matches = pattern.findall(data)
            for var in matches:
                value = os.getenv(var, "")
                data = data.replace(f"${{{var}}}", value)
            return data
        else:
            return data

    def apply_env(self, env: "EnvSettings") -> "Config":
        """Return a copy with any values set in the environment taking precedence."""
        connection = self.connection.model_copy(update={
            key: value
            for key, value in {
                "port": env.port,
                "interface": env.interface,
            }.items()
            if value is not None
        })
        discovery = self.discovery
        if env.family is not None:
            discovery = discovery.model_copy(update={"families": [env.family]})
        logging_config = self.logging
        if env.log_level:
            logging_config = logging_config.model_copy(update={"level": env.log_level})
        return self.model_copy(update={
            "connection": connection,
            "discovery": discovery,
            "logging": logging_config,
        })


class EnvSettings(BaseSettings):
    """Environment-based settings."""

    model_config = SettingsConfigDict(
        env_prefix="UDP_BROADCAST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Allow extra fields in .env
    )

    family: Optional[AddressFamily] = None
    port: Optional[int] = Field(default=None, ge=0, le=65535)
    interface: Optional[str] = None

    # Logging
    log_level: Optional[str] = None
