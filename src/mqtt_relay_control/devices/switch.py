from __future__ import annotations

from typing import TYPE_CHECKING, Any

from typing_extensions import override

from mqtt_relay_control.devices.base_device import BaseDevice
from mqtt_relay_control.logging_abstraction import get_logger
from mqtt_relay_control.structs import DeviceType

if TYPE_CHECKING:
    from mqtt_relay_control.structs import SwitchBackend

logger = get_logger(__name__)


class SwitchDevice(BaseDevice):
    """On/off entity driving a SwitchBackend."""

    device_type = DeviceType.SWITCH

    def __init__(self, unique_id: str, entity_id: str, name: str = "", *, backend: SwitchBackend, **kwargs: Any) -> None:
        super().__init__(unique_id, entity_id, name, **kwargs)
        self.backend: SwitchBackend = backend

    @override
    async def handle_command(self, payload: str) -> None:
        # every accepted command re-drives the backend, repeats included
        command = payload.strip().casefold()
        if command == self.payload_on.casefold():
            logger.info("%s Turning on", self.lp)
            await self.backend.turn_on()
        elif command == self.payload_off.casefold():
            logger.info("%s Turning off", self.lp)
            await self.backend.turn_off()
        else:
            logger.warning("%s Unknown payload '%s', skipping...", self.lp, payload)
            return
        self.notify_state_changed()

    @override
    def current_state(self) -> str | None:
        is_on = self.backend.is_on
        if is_on is None:
            return None
        return self.payload_on if is_on else self.payload_off
