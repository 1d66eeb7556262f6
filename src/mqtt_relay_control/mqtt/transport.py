"""aiomqtt-backed transport for the ConnectionManager.

Wraps one aiomqtt.Client per broker session: a fresh client is built on every
connect, and a reader task pumps `client.messages` into the installed message
handler. aiomqtt errors are re-raised as TransportError so the connection
layer handles a single exception type.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import aiomqtt

from mqtt_relay_control.const import KEEPALIVE_PROBE_PAYLOAD, KEEPALIVE_PROBE_SUFFIX
from mqtt_relay_control.exceptions import TransportError
from mqtt_relay_control.logging_abstraction import get_logger

if TYPE_CHECKING:
    from mqtt_relay_control.config import MqttConfig
    from mqtt_relay_control.structs import RawMessageHandler

logger = get_logger(__name__)


def _payload_bytes(payload: object) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    return str(payload).encode()


class AiomqttTransport:
    """TransportProtocol implementation on top of aiomqtt."""

    lp: str = "mqtt:transport:"

    def __init__(self, config: MqttConfig, client_id: str) -> None:
        self.config: MqttConfig = config
        self.client_id: str = client_id
        self.probe_topic: str = f"{client_id}/{KEEPALIVE_PROBE_SUFFIX}"
        self.client: aiomqtt.Client | None = None
        self._handler: RawMessageHandler | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._connected: bool = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def set_message_handler(self, handler: RawMessageHandler | None) -> None:
        self._handler = handler

    def _build_client(self) -> aiomqtt.Client:
        return aiomqtt.Client(
            hostname=self.config.host,
            port=self.config.port,
            username=self.config.username if self.config.has_credentials else None,
            password=self.config.password if self.config.has_credentials else None,
            identifier=self.client_id,
        )

    def _require_client(self, operation: str) -> aiomqtt.Client:
        if self.client is None or not self._connected:
            raise TransportError("not connected", operation)
        return self.client

    async def connect(self) -> None:
        lp = f"{self.lp}connect:"
        if self.client is not None:
            logger.debug("%s Discarding previous broker session before reconnecting", lp)
            await self._teardown()

        client = self._build_client()
        try:
            _ = await client.__aenter__()
        except aiomqtt.MqttError as e:
            # -> [Errno 111] Connection refused
            # [code:134] Bad user name or password
            raise TransportError(str(e), "connect") from e
        except asyncio.CancelledError:
            # connect timeout; release the half-open paho socket before propagating
            await self._abandon(client)
            raise

        self.client = client
        self._connected = True
        self._reader_task = asyncio.create_task(self._read_messages(client), name="mqtt_reader")

    async def _abandon(self, client: aiomqtt.Client) -> None:
        lp = f"{self.lp}connect:"
        try:
            await asyncio.wait_for(client.__aexit__(None, None, None), timeout=self.config.disconnect_timeout)
        except (aiomqtt.MqttError, TimeoutError) as e:
            logger.debug("%s Closing abandoned client failed: %s", lp, e)

    async def _read_messages(self, client: aiomqtt.Client) -> None:
        lp = f"{self.lp}rcv:"
        try:
            async for message in client.messages:
                handler = self._handler
                if handler is None:
                    continue
                await handler(message.topic.value, _payload_bytes(message.payload))
        except aiomqtt.MqttError as e:
            logger.warning("%s Message reader stopped: %s", lp, e)
            self._connected = False

    async def _stop_reader(self) -> None:
        task, self._reader_task = self._reader_task, None
        if task is None or task.done():
            return
        _ = task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            if (current := asyncio.current_task()) is not None and current.cancelling():
                raise

    async def _teardown(self) -> None:
        """Drop a stale session; errors are expected here because the link is usually dead."""
        await self._stop_reader()
        client, self.client = self.client, None
        self._connected = False
        if client is None:
            return
        try:
            await client.__aexit__(None, None, None)
        except aiomqtt.MqttError as e:
            logger.debug("%s Stale session close failed: %s", self.lp, e)

    async def disconnect(self) -> None:
        await self._stop_reader()
        client, self.client = self.client, None
        self._connected = False
        if client is None:
            return
        try:
            await client.__aexit__(None, None, None)
        except aiomqtt.MqttError as e:
            raise TransportError(str(e), "disconnect") from e

    async def ping(self) -> None:
        """QoS 1 publish to the probe topic; returns only after the broker's PUBACK."""
        client = self._require_client("ping")
        try:
            await client.publish(self.probe_topic, KEEPALIVE_PROBE_PAYLOAD, qos=1, retain=False)
        except aiomqtt.MqttError as e:
            self._connected = False
            raise TransportError(str(e), "ping") from e

    async def publish(self, topic: str, payload: bytes, qos: int, retain: bool) -> None:
        client = self._require_client("publish")
        try:
            await client.publish(topic, payload, qos=qos, retain=retain)
        except aiomqtt.MqttError as e:
            raise TransportError(str(e), "publish") from e

    async def subscribe(self, topic: str, qos: int) -> None:
        client = self._require_client("subscribe")
        try:
            _ = await client.subscribe(topic, qos=qos)
        except aiomqtt.MqttError as e:
            raise TransportError(str(e), "subscribe") from e

    async def unsubscribe(self, topic: str) -> None:
        client = self._require_client("unsubscribe")
        try:
            await client.unsubscribe(topic)
        except aiomqtt.MqttError as e:
            raise TransportError(str(e), "unsubscribe") from e
