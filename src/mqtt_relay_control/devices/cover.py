from __future__ import annotations

from typing import TYPE_CHECKING, Any

from typing_extensions import override

from mqtt_relay_control.const import PAYLOAD_CLOSE, PAYLOAD_OPEN, PAYLOAD_STOP, STATE_CLOSED, STATE_OPEN
from mqtt_relay_control.devices.base_device import BaseDevice
from mqtt_relay_control.logging_abstraction import get_logger
from mqtt_relay_control.structs import DeviceType

if TYPE_CHECKING:
    from mqtt_relay_control.structs import CoverBackend

logger = get_logger(__name__)


class CoverDevice(BaseDevice):
    """Open/close/stop entity (garage door, blind) driving a CoverBackend."""

    device_type = DeviceType.COVER

    def __init__(
        self,
        unique_id: str,
        entity_id: str,
        name: str = "",
        *,
        backend: CoverBackend,
        payload_open: str = PAYLOAD_OPEN,
        payload_close: str = PAYLOAD_CLOSE,
        payload_stop: str = PAYLOAD_STOP,
        state_open: str = STATE_OPEN,
        state_closed: str = STATE_CLOSED,
        **kwargs: Any,
    ) -> None:
        super().__init__(unique_id, entity_id, name, **kwargs)
        self.backend: CoverBackend = backend
        self.payload_open: str = payload_open
        self.payload_close: str = payload_close
        self.payload_stop: str = payload_stop
        self.state_open: str = state_open
        self.state_closed: str = state_closed

    @override
    async def handle_command(self, payload: str) -> None:
        command = payload.strip().casefold()
        if command == self.payload_open.casefold():
            await self.backend.open()
        elif command == self.payload_close.casefold():
            await self.backend.close()
        elif command == self.payload_stop.casefold():
            await self.backend.stop()
        else:
            logger.warning("%s Unknown payload '%s', skipping...", self.lp, payload)
            return
        self.notify_state_changed()

    @override
    def current_state(self) -> str | None:
        match self.backend.position:
            case "open":
                return self.state_open
            case "closed":
                return self.state_closed
            case _:
                return None
