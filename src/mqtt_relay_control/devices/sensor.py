from __future__ import annotations

from typing import Any

from typing_extensions import override

from mqtt_relay_control.devices.base_device import BaseDevice
from mqtt_relay_control.logging_abstraction import get_logger
from mqtt_relay_control.structs import DeviceType

logger = get_logger(__name__)


class SensorDevice(BaseDevice):
    """Read-only entity; readings are pushed in with update()."""

    device_type = DeviceType.SENSOR
    accepts_commands = False

    def __init__(
        self,
        unique_id: str,
        entity_id: str,
        name: str = "",
        *,
        unit_of_measurement: str | None = None,
        device_class: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(unique_id, entity_id, name, **kwargs)
        self.unit_of_measurement: str | None = unit_of_measurement
        self.device_class: str | None = device_class
        self._value: str | None = None

    def update(self, value: object) -> None:
        """Store a new reading and report it; unchanged readings are not reported."""
        text = None if value is None else str(value)
        if text == self._value:
            return
        self._value = text
        self.notify_state_changed()

    @override
    async def handle_command(self, payload: str) -> None:
        logger.warning("%s Sensors do not accept commands, ignoring '%s'", self.lp, payload)

    @override
    def current_state(self) -> str | None:
        return self._value
