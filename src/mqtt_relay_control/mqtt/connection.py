"""Broker connection lifecycle: connect/retry, keep-alive, subscription replay.

The ConnectionManager owns the transport and is the only component that talks
to it. Every transport call is bounded by `asyncio.wait_for`, and transport
failures never escape this module: they are logged and reported through return
values. Connect, keep-alive reconnect and disconnect all run under one lock.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from mqtt_relay_control.correlation import correlation_scope
from mqtt_relay_control.exceptions import TransportError
from mqtt_relay_control.logging_abstraction import get_logger
from mqtt_relay_control.structs import ConnectionState

if TYPE_CHECKING:
    from mqtt_relay_control.config import MqttConfig
    from mqtt_relay_control.structs import ConnectedHook, LifecycleHook, MessageHook, TransportProtocol

__all__ = ["ConnectionManager"]

logger = get_logger(__name__)


class ConnectionManager:
    lp: str = "mqtt:"

    def __init__(
        self,
        config: MqttConfig,
        transport: TransportProtocol,
        shutdown_event: asyncio.Event | None = None,
    ) -> None:
        self.config: MqttConfig = config
        self.transport: TransportProtocol = transport
        self.shutdown_event: asyncio.Event = shutdown_event or asyncio.Event()
        self.state: ConnectionState = ConnectionState.DISCONNECTED
        # topic -> qos, insertion ordered; replayed after every (re)connect
        self._subscriptions: dict[str, int] = {}
        self._lock: asyncio.Lock = asyncio.Lock()
        self._keepalive_task: asyncio.Task[None] | None = None
        self._has_connected: bool = False

        self._message_hook: MessageHook | None = None
        self._connected_hook: ConnectedHook | None = None
        self._still_connected_hook: LifecycleHook | None = None
        self._pre_disconnect_hook: LifecycleHook | None = None

        self.transport.set_message_handler(self._on_raw_message)

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def subscriptions(self) -> tuple[str, ...]:
        return tuple(self._subscriptions)

    def set_message_hook(self, hook: MessageHook | None) -> None:
        self._message_hook = hook

    def set_lifecycle_hooks(
        self,
        on_connected: ConnectedHook | None = None,
        on_still_connected: LifecycleHook | None = None,
        on_pre_disconnect: LifecycleHook | None = None,
    ) -> None:
        """Install the callbacks driven by the connection state machine.

        Args:
            on_connected: Awaited after every successful connect with True on the
                first connect of the process and False on reconnects
            on_still_connected: Awaited after every successful keep-alive probe
            on_pre_disconnect: Awaited before a graceful disconnect while connected

        """
        self._connected_hook = on_connected
        self._still_connected_hook = on_still_connected
        self._pre_disconnect_hook = on_pre_disconnect

    async def _wait_for_shutdown(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; True when shutdown was requested meanwhile."""
        if self.shutdown_event.is_set():
            return True
        try:
            _ = await asyncio.wait_for(self.shutdown_event.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    async def connect(self) -> bool:
        """Connect to the broker, retrying up to `initial_connection_attempts` times.

        Returns:
            True once connected; False when every attempt failed, the manager
            was already closed, or shutdown was requested during a backoff wait

        """
        lp = f"{self.lp}connect:"
        remaining = self.config.initial_connection_attempts
        with correlation_scope("conn"):
            async with self._lock:
                if self.state is ConnectionState.CLOSED:
                    logger.warning("%s Connection manager is closed, not connecting", lp)
                    return False
                if self.state is ConnectionState.CONNECTED:
                    logger.debug("%s Already connected", lp)
                    return True

                while not await self._attempt_connect():
                    if remaining <= 0:
                        logger.error(
                            "%s Unable to connect to MQTT broker after %d attempt(s)",
                            lp,
                            self.config.initial_connection_attempts + 1,
                        )
                        return False
                    remaining -= 1
                    logger.info(
                        "%s Retrying in %.1fs (%d attempt(s) remaining)",
                        lp,
                        self.config.reconnect_interval,
                        remaining,
                    )
                    if await self._wait_for_shutdown(self.config.reconnect_interval):
                        logger.info("%s Shutdown requested while waiting to reconnect, giving up", lp)
                        return False

                await self._after_connect()
        return True

    async def _attempt_connect(self) -> bool:
        lp = f"{self.lp}connect:"
        self.state = ConnectionState.CONNECTING
        logger.info(
            "%s Connecting to MQTT broker",
            lp,
            extra={"host": self.config.host, "port": self.config.port},
        )
        try:
            await asyncio.wait_for(self.transport.connect(), timeout=self.config.connect_timeout)
        except TimeoutError:
            logger.warning("%s Connection attempt timed out after %.1fs", lp, self.config.connect_timeout)
        except TransportError as e:
            logger.warning("%s Unable to connect to MQTT broker: %s", lp, e.reason)
        else:
            self.state = ConnectionState.CONNECTED
            logger.info("%s Connected to MQTT broker", lp)
            return True
        self.state = ConnectionState.DISCONNECTED
        return False

    async def _after_connect(self) -> None:
        """Replay subscriptions, arm keep-alive, then run the connected hook."""
        lp = f"{self.lp}connect:"
        first_connect = not self._has_connected
        self._has_connected = True

        for topic, qos in list(self._subscriptions.items()):
            _ = await self._send_subscribe(topic, qos)

        if self._keepalive_task is None or self._keepalive_task.done():
            self._keepalive_task = asyncio.create_task(self._keepalive_loop(), name="mqtt_keepalive")

        if self._connected_hook is not None:
            try:
                await self._connected_hook(first_connect)
            except Exception:
                logger.exception("%s on_connected hook failed", lp)

    async def subscribe(self, topic: str, qos: int = 0) -> bool:
        """Add a topic to the subscription set and subscribe when connected.

        The topic is recorded first, so a request that fails (or is deferred
        while disconnected) is sent again on the next connect.
        """
        if topic not in self._subscriptions:
            self._subscriptions[topic] = qos
        if not self.is_connected:
            logger.debug("%s Not connected, deferring subscribe to '%s'", self.lp, topic)
            return False
        return await self._send_subscribe(topic, qos)

    async def _send_subscribe(self, topic: str, qos: int) -> bool:
        lp = f"{self.lp}subscribe:"
        logger.info("%s Subscribing to topic '%s'", lp, topic)
        try:
            await asyncio.wait_for(self.transport.subscribe(topic, qos), timeout=self.config.connect_timeout)
        except (TransportError, TimeoutError) as e:
            logger.error("%s Unable to subscribe to topic '%s': %s", lp, topic, e)
            return False
        return True

    async def unsubscribe(self, topic: str) -> bool:
        lp = f"{self.lp}unsubscribe:"
        _ = self._subscriptions.pop(topic, None)
        if not self.is_connected:
            return False
        try:
            await asyncio.wait_for(self.transport.unsubscribe(topic), timeout=self.config.connect_timeout)
        except (TransportError, TimeoutError) as e:
            logger.error("%s Unable to unsubscribe from topic '%s': %s", lp, topic, e)
            return False
        logger.info("%s Unsubscribed from topic '%s'", lp, topic)
        return True

    async def publish(self, topic: str, payload: str | bytes, qos: int = 0, retain: bool = False) -> bool:
        """Publish a message; False (logged) when disconnected or the transport fails."""
        lp = f"{self.lp}publish:"
        if not self.is_connected:
            logger.debug("%s Not connected, dropping publish to '%s'", lp, topic)
            return False
        data = payload.encode() if isinstance(payload, str) else payload
        logger.debug("%s Publishing topic '%s' with value '%s'", lp, topic, payload)
        try:
            await asyncio.wait_for(
                self.transport.publish(topic, data, qos, retain),
                timeout=self.config.connect_timeout,
            )
        except (TransportError, TimeoutError) as e:
            logger.warning("%s Unable to publish to '%s': %s", lp, topic, e)
            return False
        return True

    async def _keepalive_loop(self) -> None:
        delay = self.config.keep_alive_interval
        while not await self._wait_for_shutdown(delay):
            delay = await self._keepalive_tick()

    async def _keepalive_tick(self) -> float:
        """Probe the broker once; returns the delay before the next tick."""
        lp = f"{self.lp}keepalive:"
        with correlation_scope("ka"):
            async with self._lock:
                if await self._probe():
                    logger.debug("%s Broker still connected", lp)
                    if self._still_connected_hook is not None:
                        try:
                            await self._still_connected_hook()
                        except Exception:
                            logger.exception("%s on_still_connected hook failed", lp)
                    return self.config.keep_alive_interval

                logger.info("%s Keep-alive failed, attempting to reconnect", lp)
                self.state = ConnectionState.DISCONNECTED
                if await self._attempt_connect():
                    await self._after_connect()
                    return self.config.keep_alive_interval

                logger.warning(
                    "%s Reconnect failed, next attempt in %.1fs",
                    lp,
                    self.config.reconnect_interval,
                )
                return self.config.reconnect_interval

    async def _probe(self) -> bool:
        if not self.is_connected:
            return False
        if not self.transport.is_connected:
            logger.warning("%s Broker session dropped since the last keep-alive", self.lp)
            return False
        try:
            await asyncio.wait_for(self.transport.ping(), timeout=self.config.connect_timeout)
        except (TransportError, TimeoutError) as e:
            logger.warning("%s Keep-alive probe failed: %s", self.lp, e)
            return False
        return True

    async def _cancel_keepalive(self) -> None:
        task, self._keepalive_task = self._keepalive_task, None
        if task is None or task.done():
            return
        _ = task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            if (current := asyncio.current_task()) is not None and current.cancelling():
                raise

    async def disconnect(self) -> None:
        """Gracefully leave the broker; errors are logged, the final state is CLOSED."""
        lp = f"{self.lp}disconnect:"
        await self._cancel_keepalive()
        with correlation_scope("conn"):
            async with self._lock:
                if self.state is ConnectionState.CLOSED:
                    return
                try:
                    if not self._has_connected:
                        logger.debug("%s Never connected, nothing to disconnect", lp)
                        return

                    if self.is_connected and self._pre_disconnect_hook is not None:
                        try:
                            await self._pre_disconnect_hook()
                        except Exception:
                            logger.exception("%s on_pre_disconnect hook failed", lp)

                    logger.info("%s Cleanly disconnecting from MQTT broker", lp)
                    try:
                        await asyncio.wait_for(self.transport.disconnect(), timeout=self.config.disconnect_timeout)
                    except TimeoutError:
                        logger.warning(
                            "%s Disconnect timed out after %.1fs",
                            lp,
                            self.config.disconnect_timeout,
                        )
                    except TransportError as e:
                        logger.warning("%s Error while disconnecting: %s", lp, e.reason)
                    else:
                        logger.info("%s Disconnected from MQTT broker", lp)
                finally:
                    self.state = ConnectionState.CLOSED

    async def _on_raw_message(self, topic: str, payload: bytes) -> None:
        lp = f"{self.lp}rcv:"
        text = payload.decode("utf-8", errors="replace")
        with correlation_scope("msg"):
            logger.debug("%s Topic '%s' updated with '%s'", lp, topic, text)
            hook = self._message_hook
            if hook is None:
                logger.debug("%s No message hook registered, dropping message on '%s'", lp, topic)
                return
            try:
                await hook(topic, text)
            except Exception:
                logger.exception("%s Unable to process message on '%s'", lp, topic)
