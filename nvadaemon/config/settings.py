"""
Settings for nvadaemon

The monitor consumes a flat, string-typed key/value mapping
(``probe.port``, ``probe.nva1.probeNetworkInterface`` ...). Configuration
files are YAML and may be nested or use dotted keys; both flatten to the same
mapping. Typed views of the global keys are pydantic models.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Any

import structlog
import yaml

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
    model_validator,
)

from nvadaemon.core.errors import ConfigurationError

logger = structlog.get_logger(__name__)

PROBE_PREFIX = "probe."
AZURE_PREFIX = "azure."
LOGGING_PREFIX = "logging."
CANDIDATE_PREFIX = "probe.nva"


def flatten_config(data: dict[str, Any], parent: str = "") -> dict[str, str]:
    """Flatten nested mappings into dotted keys with string values.

    Args:
        data: Nested or already-flat mapping
        parent: Key prefix used while recursing

    Returns:
        Flat mapping of dotted keys to strings
    """
    flat: dict[str, str] = {}
    for key, value in data.items():
        full_key = f"{parent}.{key}" if parent else str(key)
        if isinstance(value, dict):
            flat.update(flatten_config(value, full_key))
        elif value is None:
            continue
        elif isinstance(value, bool):
            flat[full_key] = "true" if value else "false"
        else:
            flat[full_key] = str(value)
    return flat


def load_config_file(config_path: Path) -> dict[str, str]:
    """Load a YAML configuration file into a flat key/value mapping."""
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read configuration file {config_path}: {e}"
        ) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in configuration file {config_path}: {e}"
        ) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration file {config_path} must contain a mapping"
        )

    config = flatten_config(data)
    logger.debug("Loaded configuration file", path=str(config_path), keys=len(config))
    return config


def _section(config: dict[str, str], prefix: str) -> dict[str, str]:
    return {
        key[len(prefix):]: value
        for key, value in config.items()
        if key.startswith(prefix) and value != ""
    }


class ProbeSettings(BaseModel):
    """Global ``probe.*`` settings shared by every candidate."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    resource_group: str = Field(..., alias="resourceGroup", min_length=1)
    port: int = Field(..., ge=1, le=65535)
    public_ip_address: str | None = Field(None, alias="publicIpAddress")
    route_table: str | None = Field(None, alias="routeTable")
    route_table_route: str | None = Field(None, alias="routeTableRoute")

    # Milliseconds
    interval_ms: int = Field(3000, alias="interval", gt=0)
    connect_timeout_ms: int = Field(1000, alias="connectTimeout", gt=0)
    migration_timeout_ms: int = Field(120000, alias="migrationTimeout", gt=0)

    @model_validator(mode="after")
    def validate_connect_timeout(self) -> ProbeSettings:
        """The probe must finish well inside one polling interval, defaults included."""
        if self.connect_timeout_ms >= self.interval_ms:
            raise ValueError(
                f"connectTimeout ({self.connect_timeout_ms} ms) must be shorter than "
                f"interval ({self.interval_ms} ms)"
            )
        return self

    @property
    def interval(self) -> timedelta:
        return timedelta(milliseconds=self.interval_ms)

    @property
    def connect_timeout(self) -> float:
        return self.connect_timeout_ms / 1000

    @property
    def migration_timeout(self) -> float:
        return self.migration_timeout_ms / 1000


class AzureSettings(BaseModel):
    """Service principal credentials and ARM client tuning."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    client_id: str = Field(..., alias="clientId")
    tenant_id: str = Field(..., alias="tenantId")
    client_secret: SecretStr = Field(..., alias="clientSecret")
    subscription_id: str = Field(..., alias="subscriptionId")
    request_timeout: float = Field(30.0, alias="requestTimeout", gt=0)
    read_retries: int = Field(3, alias="readRetries", ge=1)
    close_timeout: float = Field(5.0, alias="closeTimeout", ge=0)
    authority: str = "https://login.microsoftonline.com"
    endpoint: str = "https://management.azure.com"


class LoggingSettings(BaseModel):
    """Log level and renderer selection."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    level: str = "INFO"
    json_logs: bool = Field(False, alias="json")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @classmethod
    def from_config(cls, config: dict[str, str]) -> LoggingSettings:
        """Validate only the ``logging.*`` keys of a flat configuration mapping.

        Used before the rest of the configuration is checked, so that
        logging is set up in time to report those errors.
        """
        try:
            return cls.model_validate(_section(config, LOGGING_PREFIX))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid logging configuration: {e}") from e


class DaemonSettings(BaseModel):
    """Typed view over the flat configuration mapping."""

    probe: ProbeSettings
    azure: AzureSettings | None = None
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_config(cls, config: dict[str, str]) -> DaemonSettings:
        """Validate the global keys of a flat configuration mapping.

        Candidate keys (``probe.nva<N>.*``) are ignored here; they are
        handled by :func:`nvadaemon.core.pool.load_candidate_pool`.

        Raises:
            ConfigurationError: A required key is missing or malformed
        """
        probe = {
            key: value
            for key, value in _section(config, PROBE_PREFIX).items()
            if "." not in key
        }
        azure = _section(config, AZURE_PREFIX)

        try:
            return cls(
                probe=ProbeSettings.model_validate(probe),
                azure=AzureSettings.model_validate(azure) if azure else None,
                logging=LoggingSettings.model_validate(_section(config, LOGGING_PREFIX)),
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
