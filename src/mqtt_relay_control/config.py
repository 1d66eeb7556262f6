"""YAML configuration for the relay bridge.

The file is read once at startup with `yaml.safe_load` and validated into
frozen pydantic models; nothing mutates configuration afterwards. Field aliases
match the YAML keys used by existing deployments (`guid`, `discovery`,
`keep_alive_seconds`, ...).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from mqtt_relay_control.const import (
    DEFAULT_CLIENT_ID_PREFIX,
    DEFAULT_DEVICE_MODEL,
    DEFAULT_DEVICE_NAME,
    DEFAULT_DISCOVERY_PREFIX,
    DEFAULT_ICON,
    DEFAULT_MANUFACTURER,
    DEFAULT_TOPIC_PREFIX,
)
from mqtt_relay_control.exceptions import ConfigurationError
from mqtt_relay_control.logging_abstraction import get_logger

__all__ = [
    "Configuration",
    "HomeAssistantConfig",
    "LoggingConfig",
    "MqttConfig",
    "RelayControlConfig",
    "SerialPortConfig",
]

logger = get_logger(__name__)

# Level names accepted in `logging.level`; the short forms come from older config files
_LEVEL_NAMES: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class MqttConfig(_FrozenModel):
    """Broker address, credentials, and connection lifecycle timings (seconds)."""

    host: str
    port: int = Field(default=1883, ge=1, le=65535)
    username: str | None = None
    password: str | None = None
    client_id: str | None = None
    keep_alive_interval: float = Field(default=5.0, gt=0, alias="keep_alive_seconds")
    reconnect_interval: float = Field(default=60.0, ge=0, alias="reconnect_timeout")
    connect_timeout: float = Field(default=10.0, gt=0, alias="connection_timeout")
    disconnect_timeout: float = Field(default=2.0, gt=0)
    initial_connection_attempts: int = Field(default=10, ge=0)

    @property
    def has_credentials(self) -> bool:
        return bool(self.username) or bool(self.password)

    def resolved_client_id(self, suffix: str) -> str:
        return self.client_id or f"{DEFAULT_CLIENT_ID_PREFIX}_{suffix}"


class HomeAssistantConfig(_FrozenModel):
    discovery_enabled: bool = Field(default=False, alias="discovery")
    discovery_prefix: str = DEFAULT_DISCOVERY_PREFIX
    device_topic_prefix: str = DEFAULT_TOPIC_PREFIX
    device_unique_id: str | None = None
    device_model: str = DEFAULT_DEVICE_MODEL
    device_name: str = DEFAULT_DEVICE_NAME
    manufacturer: str = DEFAULT_MANUFACTURER


class LoggingConfig(_FrozenModel):
    filename: str | None = None
    level: str | None = None
    format: str | None = None

    def python_level(self) -> int | None:
        """Map the configured level name to a `logging` constant, None if unset."""
        if self.level is None:
            return None
        try:
            return _LEVEL_NAMES[self.level.strip().casefold()]
        except KeyError:
            raise ConfigurationError(f"unknown log level '{self.level}'", field="logging.level") from None


class SerialPortConfig(_FrozenModel):
    port: str | None = None
    baud: int = Field(default=9600, gt=0)


class RelayControlConfig(_FrozenModel):
    """One relay exposed as a Home Assistant switch."""

    unique_id: str = Field(default="", alias="guid")
    entity_id: str = ""
    name: str = ""
    icon: str = DEFAULT_ICON
    serial_port: SerialPortConfig | None = None
    qos: int = Field(default=0, ge=0, le=2)
    retain: bool = True

    # `entity_id:` with no value loads as None; an empty id is reported per device at discovery
    @field_validator("unique_id", "entity_id", "name", mode="before")
    @classmethod
    def _blank_text(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("icon", mode="before")
    @classmethod
    def _default_icon(cls, value: Any) -> Any:
        return DEFAULT_ICON if value is None else value


class Configuration(_FrozenModel):
    mqtt: MqttConfig | None = None
    home_assistant: HomeAssistantConfig = Field(default_factory=HomeAssistantConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    relay_control: list[RelayControlConfig] = Field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: dict[str, Any] | None) -> Configuration:
        try:
            return cls.model_validate(data or {})
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e

    @classmethod
    def from_yaml(cls, path: str | Path) -> Configuration:
        """Read and validate a YAML configuration file.

        Raises:
            ConfigurationError: The file cannot be read, is not YAML, or fails validation

        """
        cfg_path = Path(path).expanduser()
        logger.debug("Parsing config file: %s", cfg_path)
        try:
            with cfg_path.open() as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"unable to read {cfg_path}: {e}") from e

        if data is not None and not isinstance(data, dict):
            raise ConfigurationError(f"{cfg_path} must contain a mapping at the top level")
        config = cls.from_mapping(data)
        logger.info(
            "Parsed config",
            extra={"path": str(cfg_path), "relays": len(config.relay_control)},
        )
        return config

    def require_mqtt(self) -> MqttConfig:
        if self.mqtt is None:
            raise ConfigurationError("no mqtt block present", field="mqtt")
        return self.mqtt
