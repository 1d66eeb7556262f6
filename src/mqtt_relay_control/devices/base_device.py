"""Home Assistant entity model shared by every device kind."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import ClassVar

from typing_extensions import override

from mqtt_relay_control.const import (
    DEFAULT_ICON,
    DEFAULT_TOPIC_PREFIX,
    PAYLOAD_AVAILABLE,
    PAYLOAD_NOT_AVAILABLE,
    PAYLOAD_OFF,
    PAYLOAD_ON,
)
from mqtt_relay_control.logging_abstraction import get_logger
from mqtt_relay_control.structs import DeviceType, StateChange

logger = get_logger(__name__)


class BaseDevice(ABC):
    """One controllable (or observable) entity exposed over MQTT.

    Identity is fixed at construction. Topics derive from the device topic
    prefix and the unique id:

        state:        {prefix}/{unique_id}
        command:      {prefix}/{unique_id}/set
        availability: {prefix}/{unique_id}/available

    State changes are reported by putting a StateChange on the queue bound by
    the registry; the device never publishes on its own.
    """

    device_type: ClassVar[DeviceType]
    accepts_commands: ClassVar[bool] = True

    def __init__(
        self,
        unique_id: str,
        entity_id: str,
        name: str = "",
        *,
        topic_prefix: str = DEFAULT_TOPIC_PREFIX,
        icon: str = DEFAULT_ICON,
        qos: int = 0,
        retain: bool = True,
        payload_on: str = PAYLOAD_ON,
        payload_off: str = PAYLOAD_OFF,
        payload_available: str = PAYLOAD_AVAILABLE,
        payload_not_available: str = PAYLOAD_NOT_AVAILABLE,
    ) -> None:
        if qos not in (0, 1, 2):
            msg = f"QoS must be 0, 1 or 2, got {qos}"
            raise ValueError(msg)
        self.unique_id: str = unique_id or ""
        self.entity_id: str = entity_id or ""
        self.name: str = name or self.entity_id or self.unique_id
        self.icon: str = icon
        self.qos: int = qos
        self.retain: bool = retain
        self.payload_on: str = payload_on
        self.payload_off: str = payload_off
        self.payload_available: str = payload_available
        self.payload_not_available: str = payload_not_available
        self._topic_prefix: str = topic_prefix.rstrip("/")
        self._state_queue: asyncio.Queue[StateChange] | None = None
        self.lp: str = f"{type(self).__name__}:{self.entity_id or self.unique_id}:"

    @property
    def state_topic(self) -> str:
        return f"{self._topic_prefix}/{self.unique_id}"

    @property
    def command_topic(self) -> str:
        return f"{self.state_topic}/set"

    @property
    def availability_topic(self) -> str:
        return f"{self.state_topic}/available"

    def bind(self, queue: asyncio.Queue[StateChange]) -> None:
        """Attach the queue that receives this device's state changes."""
        self._state_queue = queue

    def notify_state_changed(self) -> None:
        state = self.current_state()
        if self._state_queue is None:
            logger.debug("%s State changed to %s but device is not registered", self.lp, state)
            return
        self._state_queue.put_nowait(StateChange(self, state))

    @abstractmethod
    async def handle_command(self, payload: str) -> None:
        """Apply a command payload received on the command topic."""

    @abstractmethod
    def current_state(self) -> str | None:
        """State payload to publish, None while the state is unknown."""

    @override
    def __repr__(self) -> str:
        return f"<{type(self).__name__}: unique_id={self.unique_id!r} entity_id={self.entity_id!r}>"
