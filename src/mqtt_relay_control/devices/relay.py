"""Serial-port relay board exposed as a Home Assistant switch.

The board takes a four byte frame (header, channel, state, checksum). The port
is opened lazily on the first write; pyserial calls block, so they run in a
worker thread. The last commanded state is persisted so a restart can resume
it.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import serial

from mqtt_relay_control.const import (
    LAST_RELAY_STATE_SUFFIX,
    RELAY_CLOSE_FRAME,
    RELAY_OPEN_FRAME,
    STATE_CLOSED,
    STATE_OPEN,
)
from mqtt_relay_control.devices.switch import SwitchDevice
from mqtt_relay_control.exceptions import ConfigurationError
from mqtt_relay_control.logging_abstraction import get_logger
from mqtt_relay_control.structs import RelayState

if TYPE_CHECKING:
    from mqtt_relay_control.config import RelayControlConfig
    from mqtt_relay_control.settings import UserSettings

logger = get_logger(__name__)

UNNAMED_RELAY_ID = "no-entity-id-specified"


class SerialRelay:
    """SwitchBackend for a single-channel serial relay; "on" means the relay is open."""

    def __init__(self, identifier: str, port: str, baud: int, settings: UserSettings) -> None:
        self.identifier: str = identifier
        self.settings: UserSettings = settings
        self.state: RelayState = RelayState.UNKNOWN
        self.lp: str = f"relay:{identifier}:"
        # constructing without a port does not open it
        self.serial: serial.Serial = serial.Serial()
        self.serial.port = port
        self.serial.baudrate = baud
        logger.debug("%s Using serial port %s at %d baud", self.lp, port, baud)

    @property
    def settings_key(self) -> str:
        return f"{self.identifier}{LAST_RELAY_STATE_SUFFIX}"

    @property
    def is_on(self) -> bool | None:
        match self.state:
            case RelayState.OPEN:
                return True
            case RelayState.CLOSED:
                return False
            case _:
                return None

    async def turn_on(self) -> None:
        await self.open_relay()

    async def turn_off(self) -> None:
        await self.close_relay()

    async def open_relay(self) -> None:
        logger.info("%s Opening relay connection", self.lp)
        await self._apply(RELAY_OPEN_FRAME, RelayState.OPEN, STATE_OPEN)

    async def close_relay(self) -> None:
        logger.info("%s Closing relay connection", self.lp)
        await self._apply(RELAY_CLOSE_FRAME, RelayState.CLOSED, STATE_CLOSED)

    async def _apply(self, frame: bytes, state: RelayState, stored: str) -> None:
        _ = await asyncio.to_thread(self._send, frame)
        self.state = state
        self.settings.set_value(self.settings_key, stored)
        _ = await self.settings.write()

    def _send(self, frame: bytes) -> bool:
        if not self.serial.is_open:
            logger.info("%s Serial port is closed, opening before writing", self.lp)
            try:
                self.serial.open()
            except serial.SerialException as e:
                logger.error("%s Unable to open serial port: %s", self.lp, e)
                return False
        try:
            _ = self.serial.write(frame)
        except serial.SerialException as e:
            logger.error("%s Unable to write to serial port: %s", self.lp, e)
            return False
        return True

    async def resume(self) -> bool:
        """Re-apply the last persisted state; True when a state was restored."""
        match self.settings.get_value(self.settings_key):
            case "open":
                await self.open_relay()
            case "closed":
                await self.close_relay()
            case _:
                return False
        return True

    def close_port(self) -> None:
        if self.serial.is_open:
            self.serial.close()
            logger.info("%s Serial port closed", self.lp)


def build_relay_switch(cfg: RelayControlConfig, topic_prefix: str, settings: UserSettings) -> SwitchDevice:
    """Create the switch entity for one `relay_control` entry.

    Raises:
        ConfigurationError: The entry has no serial port

    """
    if cfg.serial_port is None or not cfg.serial_port.port:
        msg = f"No serial port specified for relay '{cfg.entity_id or cfg.unique_id}'"
        raise ConfigurationError(msg, field="relay_control.serial_port")
    backend = SerialRelay(
        identifier=cfg.entity_id or UNNAMED_RELAY_ID,
        port=cfg.serial_port.port,
        baud=cfg.serial_port.baud,
        settings=settings,
    )
    return SwitchDevice(
        cfg.unique_id,
        cfg.entity_id,
        cfg.name,
        backend=backend,
        topic_prefix=topic_prefix,
        icon=cfg.icon,
        qos=cfg.qos,
        retain=cfg.retain,
    )
