"""Device registry: binds devices to the MQTT connection.

Subscribes command topics, routes inbound commands to the owning device,
publishes discovery/availability/state, and drains the state-change queue that
devices report into.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import TYPE_CHECKING

from mqtt_relay_control.logging_abstraction import get_logger
from mqtt_relay_control.mqtt.discovery import DiscoveryPublisher
from mqtt_relay_control.structs import StateChange, Tasks

if TYPE_CHECKING:
    from mqtt_relay_control.config import HomeAssistantConfig
    from mqtt_relay_control.devices.base_device import BaseDevice
    from mqtt_relay_control.mqtt.connection import ConnectionManager
    from mqtt_relay_control.structs import MessageHook

logger = get_logger(__name__)


class DeviceRegistry:
    lp: str = "registry:"

    def __init__(self, connection: ConnectionManager, config: HomeAssistantConfig) -> None:
        self.connection: ConnectionManager = connection
        self.config: HomeAssistantConfig = config
        self.discovery: DiscoveryPublisher = DiscoveryPublisher(connection, config)
        self._devices: list[BaseDevice] = []
        self._topic_index: dict[str, BaseDevice] = {}
        self._observers: list[MessageHook] = []
        self._state_queue: asyncio.Queue[StateChange] = asyncio.Queue()
        self._tasks: Tasks = Tasks()

        connection.set_message_hook(self.on_message)
        connection.set_lifecycle_hooks(
            on_connected=self.on_connected,
            on_still_connected=self.on_still_connected,
            on_pre_disconnect=self.on_pre_disconnect,
        )

    @property
    def devices(self) -> tuple[BaseDevice, ...]:
        return tuple(self._devices)

    @property
    def discovery_enabled(self) -> bool:
        return self.config.discovery_enabled

    def register_devices(self, devices: Iterable[BaseDevice]) -> None:
        """Add devices; must happen before the first connect."""
        for device in devices:
            device.bind(self._state_queue)
            self._devices.append(device)
            logger.debug("%s Registered %r", self.lp, device)
        logger.info("%s %d device(s) registered", self.lp, len(self._devices))

    def observe(self, callback: MessageHook) -> None:
        """Receive every inbound message after device routing, matched or not."""
        self._observers.append(callback)

    def device_for_topic(self, topic: str) -> BaseDevice | None:
        return self._topic_index.get(topic)

    def start(self) -> None:
        self._tasks.spawn(self._state_worker(), name="registry_state_worker")

    async def stop(self) -> None:
        await self._tasks.cancel_all()

    async def on_connected(self, first_connect: bool) -> None:
        if first_connect:
            await self.on_first_connect()
        await self.on_every_connect(first_connect)

    async def on_first_connect(self) -> None:
        lp = f"{self.lp}first_connect:"
        for device in self._devices:
            if device.accepts_commands:
                _ = await self.connection.subscribe(device.command_topic, device.qos)
        self._build_topic_index()
        logger.debug("%s Routing %d command topic(s)", lp, len(self._topic_index))

    def _build_topic_index(self) -> None:
        self._topic_index.clear()
        for device in self._devices:
            if not device.accepts_commands:
                continue
            topic = device.command_topic
            if (existing := self._topic_index.get(topic)) is not None:
                logger.warning(
                    "%s Duplicate device topic '%s': keeping %r, ignoring %r",
                    self.lp,
                    topic,
                    existing,
                    device,
                )
                continue
            self._topic_index[topic] = device

    async def on_every_connect(self, first_connect: bool) -> None:
        lp = f"{self.lp}connect:"
        if not self.discovery_enabled:
            logger.debug("%s Discovery disabled, not announcing devices", lp)
            return
        logger.info("%s Announcing devices (first connect: %s)", lp, first_connect)
        _ = await self.discovery.publish_all(self._devices)
        await self.publish_availability(True)
        await self.publish_current_states()

    async def on_still_connected(self) -> None:
        await self.publish_availability(True)
        await self.publish_current_states()

    async def on_pre_disconnect(self) -> None:
        await self.publish_availability(False)

    async def publish_availability(self, available: bool) -> None:
        if not self.discovery_enabled:
            return
        for device in self._devices:
            payload = device.payload_available if available else device.payload_not_available
            _ = await self.connection.publish(device.availability_topic, payload, qos=device.qos, retain=True)

    async def publish_state(self, device: BaseDevice, payload: str) -> bool:
        if not self.discovery_enabled:
            return False
        return await self.connection.publish(device.state_topic, payload, qos=device.qos, retain=device.retain)

    async def publish_current_states(self) -> None:
        for device in self._devices:
            if (state := device.current_state()) is not None:
                _ = await self.publish_state(device, state)

    async def on_message(self, topic: str, payload: str) -> None:
        lp = f"{self.lp}rcv:"
        device = self.device_for_topic(topic)
        if device is None:
            logger.debug("%s No device for topic '%s'", lp, topic)
        else:
            logger.info("%s Device '%s' running command '%s'", lp, device.entity_id, payload)
            try:
                await device.handle_command(payload)
            except Exception:
                logger.exception("%s Unable to run command '%s' on %r", lp, payload, device)
            await self.flush_state_changes()

        for observer in self._observers:
            await observer(topic, payload)

    async def flush_state_changes(self) -> None:
        """Publish every queued state change, including one the worker is handling."""
        while True:
            try:
                change = self._state_queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            try:
                await self._publish_change(change)
            finally:
                self._state_queue.task_done()
        await self._state_queue.join()

    async def _publish_change(self, change: StateChange) -> None:
        if change.payload is None:
            logger.debug("%s %r state unknown, nothing to publish", self.lp, change.device)
            return
        _ = await self.publish_state(change.device, change.payload)

    async def _state_worker(self) -> None:
        while True:
            change = await self._state_queue.get()
            try:
                await self._publish_change(change)
            finally:
                self._state_queue.task_done()
