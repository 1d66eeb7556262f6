"""Core data structures and typing protocols for the relay bridge."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum, StrEnum
from typing import TYPE_CHECKING, Any, Protocol, TypeAlias

from mqtt_relay_control.const import (
    RELAY_CONFIG_FILE_PATH,
    RELAY_DEBUG,
    RELAY_LOG_FORMAT,
    RELAY_LOG_HUMAN_OUTPUT,
    RELAY_LOG_JSON_FILE,
    RELAY_SETTINGS_PATH,
    YES_ANSWER,
)

if TYPE_CHECKING:
    from mqtt_relay_control.devices.base_device import BaseDevice

RawMessageHandler: TypeAlias = Callable[[str, bytes], Awaitable[None]]
MessageHook: TypeAlias = Callable[[str, str], Awaitable[None]]
ConnectedHook: TypeAlias = Callable[[bool], Awaitable[None]]
LifecycleHook: TypeAlias = Callable[[], Awaitable[None]]


class ConnectionState(Enum):
    """Connection state enumeration."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


class DeviceType(StrEnum):
    """Closed set of entity kinds; the discovery payload shape depends on the kind."""

    SWITCH = "switch"
    SENSOR = "sensor"
    COVER = "cover"


class RelayState(Enum):
    UNKNOWN = 0
    OPEN = 1
    CLOSED = 2


@dataclass(frozen=True, slots=True)
class StateChange:
    """A device's state changed; published by the registry's state worker."""

    device: BaseDevice
    payload: str | None


class TransportProtocol(Protocol):
    """The bus connection the ConnectionManager drives.

    Implementations raise TransportError on failure; timeouts are applied by the
    caller with asyncio.wait_for, so every coroutine must be cancellable.
    """

    @property
    def is_connected(self) -> bool:
        """Return True while a broker session is believed to be open."""
        ...

    def set_message_handler(self, handler: RawMessageHandler | None) -> None:
        """Install the callback that receives every inbound (topic, payload)."""
        ...

    async def connect(self) -> None:
        """Open a new broker session."""
        ...

    async def disconnect(self) -> None:
        """Close the broker session gracefully."""
        ...

    async def ping(self) -> None:
        """Round-trip a liveness probe through the broker."""
        ...

    async def publish(self, topic: str, payload: bytes, qos: int, retain: bool) -> None:
        """Publish a message."""
        ...

    async def subscribe(self, topic: str, qos: int) -> None:
        """Subscribe to a topic filter."""
        ...

    async def unsubscribe(self, topic: str) -> None:
        """Remove a topic filter subscription."""
        ...


class SwitchBackend(Protocol):
    """Hardware behind a switch entity."""

    @property
    def is_on(self) -> bool | None:
        """Current state, None when not yet known."""
        ...

    async def turn_on(self) -> None:
        """Energise the output."""
        ...

    async def turn_off(self) -> None:
        """De-energise the output."""
        ...


class CoverBackend(Protocol):
    """Hardware behind a cover entity."""

    @property
    def position(self) -> str | None:
        """Either "open" or "closed"; None when not yet known."""
        ...

    async def open(self) -> None:
        """Start opening."""
        ...

    async def close(self) -> None:
        """Start closing."""
        ...

    async def stop(self) -> None:
        """Stop moving."""
        ...


@dataclass
class RelayEnv:
    """Environment-derived settings; refreshed by GlobalObject.reload_env()."""

    debug: bool = RELAY_DEBUG
    config_file: str = RELAY_CONFIG_FILE_PATH
    settings_path: str = RELAY_SETTINGS_PATH
    log_format: str = RELAY_LOG_FORMAT
    log_json_file: str = RELAY_LOG_JSON_FILE
    log_human_output: str = RELAY_LOG_HUMAN_OUTPUT


class GlobalObject:
    """Singleton container for process-wide handles used by signal handling."""

    loop: asyncio.AbstractEventLoop | None = None
    shutdown_event: asyncio.Event | None = None
    env: RelayEnv = RelayEnv()

    _instance: GlobalObject | None = None

    def __new__(cls, *_args: Any, **_kwargs: Any) -> GlobalObject:
        """Ensure only one GlobalObject instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def reload_env(self) -> None:
        """Re-evaluate environment variables, e.g. after loading a .env file."""
        self.env = RelayEnv(
            debug=os.environ.get("RELAY_DEBUG", "0").casefold() in YES_ANSWER,
            config_file=os.environ.get("RELAY_CONFIG_FILE", RELAY_CONFIG_FILE_PATH),
            settings_path=os.environ.get("RELAY_SETTINGS_PATH", RELAY_SETTINGS_PATH),
            log_format=os.environ.get("RELAY_LOG_FORMAT", RELAY_LOG_FORMAT),
            log_json_file=os.environ.get("RELAY_LOG_JSON_FILE", RELAY_LOG_JSON_FILE),
            log_human_output=os.environ.get("RELAY_LOG_HUMAN_OUTPUT", RELAY_LOG_HUMAN_OUTPUT),
        )


@dataclass
class Tasks:
    """Background tasks owned by one component, cancelled together."""

    running: list[asyncio.Task[Any]] = field(default_factory=list)

    def spawn(self, coro: Awaitable[Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self.running.append(task)
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: asyncio.Task[Any]) -> None:
        if task in self.running:
            self.running.remove(task)

    async def cancel_all(self) -> None:
        pending = [t for t in self.running if not t.done()]
        for task in pending:
            _ = task.cancel()
        if pending:
            _ = await asyncio.gather(*pending, return_exceptions=True)
        self.running.clear()
