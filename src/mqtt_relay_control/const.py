import os
from pathlib import Path

from mqtt_relay_control import __version__

__all__ = [
    "DEFAULT_CLIENT_ID_PREFIX",
    "DEFAULT_DEVICE_MODEL",
    "DEFAULT_DEVICE_NAME",
    "DEFAULT_DISCOVERY_PREFIX",
    "DEFAULT_ICON",
    "DEFAULT_MANUFACTURER",
    "DEFAULT_TOPIC_PREFIX",
    "EXIT_ERROR",
    "EXIT_OK",
    "KEEPALIVE_PROBE_PAYLOAD",
    "KEEPALIVE_PROBE_SUFFIX",
    "LAST_RELAY_STATE_SUFFIX",
    "PAYLOAD_AVAILABLE",
    "PAYLOAD_CLOSE",
    "PAYLOAD_NOT_AVAILABLE",
    "PAYLOAD_OFF",
    "PAYLOAD_ON",
    "PAYLOAD_OPEN",
    "PAYLOAD_STOP",
    "RELAY_CLOSE_FRAME",
    "RELAY_CONFIG_FILE_PATH",
    "RELAY_DEBUG",
    "RELAY_LOG_FORMAT",
    "RELAY_LOG_HUMAN_OUTPUT",
    "RELAY_LOG_JSON_FILE",
    "RELAY_OPEN_FRAME",
    "RELAY_SETTINGS_PATH",
    "RELAY_VERSION",
    "STATE_CLOSED",
    "STATE_OPEN",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
RELAY_VERSION: str = __version__

EXIT_OK = 0
EXIT_ERROR = 2

# Home Assistant payload conventions
PAYLOAD_ON = "on"
PAYLOAD_OFF = "off"
PAYLOAD_AVAILABLE = "available"
PAYLOAD_NOT_AVAILABLE = "offline"
PAYLOAD_OPEN = "OPEN"
PAYLOAD_CLOSE = "CLOSE"
PAYLOAD_STOP = "STOP"
STATE_OPEN = "open"
STATE_CLOSED = "closed"

DEFAULT_ICON = "mdi:switch"
DEFAULT_DISCOVERY_PREFIX = "homeassistant"
DEFAULT_TOPIC_PREFIX = "devices/relaycontrol"
DEFAULT_DEVICE_NAME = "MQTT Helper"
DEFAULT_DEVICE_MODEL = "none"
DEFAULT_MANUFACTURER = "mqtt-relay-control"
DEFAULT_CLIENT_ID_PREFIX = "mqtt_relay_control"

KEEPALIVE_PROBE_SUFFIX = "keepalive"
KEEPALIVE_PROBE_PAYLOAD = b"ping"

# serial relay board frames: header, channel, state, checksum
RELAY_OPEN_FRAME = bytes((0xA0, 0x01, 0x01, 0xA2))
RELAY_CLOSE_FRAME = bytes((0xA0, 0x01, 0x00, 0xA1))
LAST_RELAY_STATE_SUFFIX = "LastRelayState"

RELAY_DEBUG = os.environ.get("RELAY_DEBUG", "0").casefold() in YES_ANSWER
RELAY_CONFIG_FILE_PATH: str = os.environ.get("RELAY_CONFIG_FILE", "")

_xdg_data = os.environ.get("XDG_DATA_HOME") or str(Path("~/.local/share").expanduser())
RELAY_SETTINGS_PATH: str = os.environ.get(
    "RELAY_SETTINGS_PATH",
    str(Path(_xdg_data) / "mqtt-relay-control" / "settings.json"),
)

# Logging Configuration
RELAY_LOG_FORMAT: str = os.environ.get("RELAY_LOG_FORMAT", "human")  # "json", "human", or "both"
RELAY_LOG_JSON_FILE: str = os.environ.get("RELAY_LOG_JSON_FILE", "")
RELAY_LOG_HUMAN_OUTPUT: str = os.environ.get("RELAY_LOG_HUMAN_OUTPUT", "stdout")  # "stdout", "stderr", or file path
