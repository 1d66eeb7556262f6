"""Home Assistant MQTT discovery announcements.

One retained JSON document per device is published to
`{discovery_prefix}/{device_type}/{entity_id}/config`; Home Assistant creates
(or updates) the entity from it. The document shape depends on the device type.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from mqtt_relay_control.const import DEFAULT_CLIENT_ID_PREFIX, RELAY_VERSION
from mqtt_relay_control.exceptions import ConfigurationError
from mqtt_relay_control.logging_abstraction import get_logger
from mqtt_relay_control.structs import DeviceType

if TYPE_CHECKING:
    from mqtt_relay_control.config import HomeAssistantConfig
    from mqtt_relay_control.devices.base_device import BaseDevice
    from mqtt_relay_control.devices.cover import CoverDevice
    from mqtt_relay_control.devices.sensor import SensorDevice
    from mqtt_relay_control.mqtt.connection import ConnectionManager

logger = get_logger(__name__)

tpc_str_template = "{0}/{1}/{2}/config"


class DiscoveryPublisher:
    """Builds and publishes discovery descriptors."""

    lp: str = "hass:"

    def __init__(self, connection: ConnectionManager, config: HomeAssistantConfig) -> None:
        self.connection: ConnectionManager = connection
        self.config: HomeAssistantConfig = config

    def discovery_topic(self, device: BaseDevice) -> str:
        return tpc_str_template.format(self.config.discovery_prefix, device.device_type, device.entity_id)

    def device_block(self) -> dict[str, Any]:
        """The `dev` block: every entity of this process groups under one HA device."""
        return {
            "name": self.config.device_name,
            "model": self.config.device_model,
            "sw_version": RELAY_VERSION,
            "manufacturer": self.config.manufacturer,
            "identifiers": self.config.device_unique_id or DEFAULT_CLIENT_ID_PREFIX,
        }

    def build_descriptor(self, device: BaseDevice) -> dict[str, Any]:
        """Build the discovery document for one device.

        Raises:
            ConfigurationError: The device has no entity id

        """
        if not device.entity_id:
            msg = f"Home Assistant discovery requires an entity_id (device '{device.unique_id}')"
            raise ConfigurationError(msg, field="relay_control.entity_id")

        descriptor: dict[str, Any] = {
            "name": device.name,
            "uniq_id": device.unique_id,
            "state_topic": device.state_topic,
        }
        match device.device_type:
            case DeviceType.SWITCH:
                descriptor.update(
                    command_topic=device.command_topic,
                    payload_on=device.payload_on,
                    payload_off=device.payload_off,
                )
            case DeviceType.SENSOR:
                descriptor.update(self._sensor_fields(device))  # type: ignore[arg-type]
            case DeviceType.COVER:
                descriptor.update(self._cover_fields(device))  # type: ignore[arg-type]
        descriptor.update(
            icon=device.icon,
            availability_topic=device.availability_topic,
            payload_available=device.payload_available,
            payload_not_available=device.payload_not_available,
            qos=device.qos,
            retain=device.retain,
            dev=self.device_block(),
        )
        return descriptor

    @staticmethod
    def _sensor_fields(device: SensorDevice) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        if device.unit_of_measurement:
            fields["unit_of_measurement"] = device.unit_of_measurement
        if device.device_class:
            fields["device_class"] = device.device_class
        return fields

    @staticmethod
    def _cover_fields(device: CoverDevice) -> dict[str, Any]:
        return {
            "command_topic": device.command_topic,
            "payload_open": device.payload_open,
            "payload_close": device.payload_close,
            "payload_stop": device.payload_stop,
            "state_open": device.state_open,
            "state_closed": device.state_closed,
        }

    async def publish_device(self, device: BaseDevice) -> bool:
        """Publish (retained) one device's descriptor; ConfigurationError propagates."""
        descriptor = self.build_descriptor(device)
        topic = self.discovery_topic(device)
        logger.debug("%s Publishing discovery for %s to '%s'", self.lp, device.entity_id, topic)
        return await self.connection.publish(topic, json.dumps(descriptor), qos=0, retain=True)

    async def publish_all(self, devices: Iterable[BaseDevice]) -> int:
        """Announce every device, isolating per-device configuration errors.

        Returns:
            Number of descriptors published

        """
        published = 0
        for device in devices:
            try:
                if await self.publish_device(device):
                    published += 1
            except ConfigurationError as e:
                logger.error("%s Skipping discovery for %r: %s", self.lp, device, e)
        logger.info("%s Published discovery for %d device(s)", self.lp, published)
        return published
