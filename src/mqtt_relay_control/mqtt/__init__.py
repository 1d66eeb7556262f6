"""MQTT side of the bridge: transport, connection lifecycle, discovery, routing."""

from mqtt_relay_control.mqtt.connection import ConnectionManager
from mqtt_relay_control.mqtt.discovery import DiscoveryPublisher
from mqtt_relay_control.mqtt.registry import DeviceRegistry
from mqtt_relay_control.mqtt.transport import AiomqttTransport

__all__ = ["AiomqttTransport", "ConnectionManager", "DeviceRegistry", "DiscoveryPublisher"]
