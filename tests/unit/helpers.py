"""
Test doubles shared by the unit tests.

A scripted in-memory transport and small fake backends so the connection,
registry and device layers can be exercised without a broker or serial
hardware.
"""

import asyncio
from collections.abc import Callable

from mqtt_relay_control.exceptions import TransportError


class FakeTransport:
    """TransportProtocol double that records every call.

    `connect_results` is consumed one entry per connect() call: True succeeds,
    False raises TransportError, a float sleeps that long (to trip the connect
    timeout). When empty, connect() succeeds.
    """

    def __init__(self):
        self.connected = False
        self.handler = None
        self.connect_results: list[bool | float] = []
        self.connect_calls = 0
        self.ping_calls = 0
        self.ping_failures = 0
        self.subscribe_failures = 0
        self.publish_error: Exception | None = None
        self.disconnect_error: Exception | None = None
        self.disconnect_delay = 0.0
        self.disconnect_calls = 0
        self.published: list[tuple[str, bytes, int, bool]] = []
        self.subscribed: list[tuple[str, int]] = []
        self.subscribe_attempts: list[str] = []
        self.unsubscribed: list[str] = []

    @property
    def is_connected(self):
        return self.connected

    def set_message_handler(self, handler):
        self.handler = handler

    async def connect(self):
        self.connect_calls += 1
        outcome = self.connect_results.pop(0) if self.connect_results else True
        if outcome is False:
            raise TransportError("connection refused", "connect")
        if not isinstance(outcome, bool):
            await asyncio.sleep(outcome)
        self.connected = True

    async def disconnect(self):
        self.disconnect_calls += 1
        if self.disconnect_delay:
            await asyncio.sleep(self.disconnect_delay)
        self.connected = False
        if self.disconnect_error is not None:
            raise self.disconnect_error

    async def ping(self):
        self.ping_calls += 1
        if self.ping_failures > 0:
            self.ping_failures -= 1
            self.connected = False
            raise TransportError("no PUBACK", "ping")

    async def publish(self, topic, payload, qos, retain):
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append((topic, payload, qos, retain))

    async def subscribe(self, topic, qos):
        self.subscribe_attempts.append(topic)
        if self.subscribe_failures > 0:
            self.subscribe_failures -= 1
            raise TransportError("not authorized", "subscribe")
        self.subscribed.append((topic, qos))

    async def unsubscribe(self, topic):
        self.unsubscribed.append(topic)

    async def deliver(self, topic, payload):
        """Simulate the broker delivering a message."""
        if isinstance(payload, str):
            payload = payload.encode()
        await self.handler(topic, payload)

    def payloads_for(self, topic):
        return [p.decode() for t, p, _, _ in self.published if t == topic]

    def publishes_for(self, topic):
        return [entry for entry in self.published if entry[0] == topic]


class FakeSwitchBackend:
    def __init__(self, is_on=None):
        self.is_on = is_on
        self.calls: list[str] = []

    async def turn_on(self):
        self.calls.append("on")
        self.is_on = True

    async def turn_off(self):
        self.calls.append("off")
        self.is_on = False


class FakeCoverBackend:
    def __init__(self, position=None):
        self.position = position
        self.calls: list[str] = []

    async def open(self):
        self.calls.append("open")
        self.position = "open"

    async def close(self):
        self.calls.append("close")
        self.position = "closed"

    async def stop(self):
        self.calls.append("stop")


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll `predicate` until it is true; fail the test on timeout."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


