"""
Unit tests for the DeviceRegistry.

Drives the registry through a real ConnectionManager over the fake transport:
command topic subscription, discovery/availability/state publishing and
command routing back to devices.
"""

import json
import logging
from unittest.mock import AsyncMock

import pytest

from mqtt_relay_control.config import HomeAssistantConfig
from mqtt_relay_control.devices.sensor import SensorDevice
from mqtt_relay_control.devices.switch import SwitchDevice
from mqtt_relay_control.mqtt.registry import DeviceRegistry
from tests.unit.helpers import FakeSwitchBackend, wait_until


def make_switch(unique_id="relay1", entity_id="garage_fan", backend=None):
    return SwitchDevice(
        unique_id,
        entity_id,
        "Garage Fan",
        backend=backend or FakeSwitchBackend(),
        topic_prefix="devices/relaycontrol",
    )


class TestFirstConnect:
    """Tests for subscriptions and announcements on connect"""

    @pytest.mark.asyncio
    async def test_relay_end_to_end(self, connection, transport, ha_config):
        """Test subscribe, discovery, availability and a command round trip for one relay"""
        backend = FakeSwitchBackend()
        registry = DeviceRegistry(connection, ha_config)
        registry.register_devices([make_switch(backend=backend)])

        assert await connection.connect() is True

        assert ("devices/relaycontrol/relay1/set", 0) in transport.subscribed
        discovery = transport.publishes_for("homeassistant/switch/garage_fan/config")
        assert len(discovery) == 1
        assert discovery[0][3] is True
        assert json.loads(discovery[0][1])["command_topic"] == "devices/relaycontrol/relay1/set"
        assert transport.publishes_for("devices/relaycontrol/relay1/available") == [
            ("devices/relaycontrol/relay1/available", b"available", 0, True),
        ]
        # unknown initial state is not published
        assert transport.publishes_for("devices/relaycontrol/relay1") == []

        await transport.deliver("devices/relaycontrol/relay1/set", "on")

        assert backend.calls == ["on"]
        assert transport.publishes_for("devices/relaycontrol/relay1") == [
            ("devices/relaycontrol/relay1", b"on", 0, True),
        ]
        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_one_discovery_and_availability_per_device(self, connection, transport, ha_config):
        """Test each device is announced exactly once per connect"""
        registry = DeviceRegistry(connection, ha_config)
        registry.register_devices([make_switch("relay1", "fan"), make_switch("relay2", "pump")])

        await connection.connect()

        for unique_id, entity_id in (("relay1", "fan"), ("relay2", "pump")):
            assert len(transport.publishes_for(f"homeassistant/switch/{entity_id}/config")) == 1
            assert transport.payloads_for(f"devices/relaycontrol/{unique_id}/available") == ["available"]
        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_known_state_published_on_connect(self, connection, transport, ha_config):
        """Test the current state snapshot follows availability"""
        registry = DeviceRegistry(connection, ha_config)
        registry.register_devices([make_switch(backend=FakeSwitchBackend(is_on=False))])

        await connection.connect()

        assert transport.payloads_for("devices/relaycontrol/relay1") == ["off"]
        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_discovery_disabled(self, connection, transport):
        """Test nothing is announced when discovery is off, but commands still route"""
        backend = FakeSwitchBackend()
        registry = DeviceRegistry(connection, HomeAssistantConfig(discovery=False))
        registry.register_devices([make_switch(backend=backend)])

        await connection.connect()
        await transport.deliver("devices/relaycontrol/relay1/set", "off")

        assert transport.published == []
        assert transport.subscribed == [("devices/relaycontrol/relay1/set", 0)]
        assert backend.calls == ["off"]
        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_sensor_command_topic_not_subscribed(self, connection, transport, ha_config):
        """Test read-only devices get no command subscription"""
        registry = DeviceRegistry(connection, ha_config)
        registry.register_devices(
            [SensorDevice("temp1", "boiler_temp", topic_prefix="devices/relaycontrol", unit_of_measurement="°C")],
        )

        await connection.connect()

        assert transport.subscribed == []
        assert len(transport.publishes_for("homeassistant/sensor/boiler_temp/config")) == 1
        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_empty_entity_id_is_isolated(self, connection, transport, ha_config, caplog):
        """Test one misconfigured device does not block discovery of the others"""
        registry = DeviceRegistry(connection, ha_config)
        registry.register_devices([make_switch("relay1", ""), make_switch("relay2", "pump")])

        with caplog.at_level(logging.ERROR):
            await connection.connect()

        config_topics = [t for t, *_ in transport.published if t.endswith("/config")]
        assert config_topics == ["homeassistant/switch/pump/config"]
        assert "Skipping discovery" in caplog.text
        assert transport.payloads_for("devices/relaycontrol/relay1/available") == ["available"]
        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_duplicate_command_topic(self, connection, transport, ha_config, caplog):
        """Test the first registered device owns a shared command topic"""
        first, second = FakeSwitchBackend(), FakeSwitchBackend()
        registry = DeviceRegistry(connection, ha_config)
        registry.register_devices([make_switch("relay1", "a", first), make_switch("relay1", "b", second)])

        with caplog.at_level(logging.WARNING):
            await connection.connect()
        await transport.deliver("devices/relaycontrol/relay1/set", "on")

        assert "Duplicate device topic" in caplog.text
        assert first.calls == ["on"]
        assert second.calls == []
        await connection.disconnect()


class TestCommands:
    """Tests for inbound command routing"""

    @pytest.mark.asyncio
    async def test_repeated_command_republishes(self, connection, transport, ha_config):
        """Test an identical command re-drives the backend and publishes again"""
        backend = FakeSwitchBackend()
        registry = DeviceRegistry(connection, ha_config)
        registry.register_devices([make_switch(backend=backend)])
        await connection.connect()

        await transport.deliver("devices/relaycontrol/relay1/set", "on")
        await transport.deliver("devices/relaycontrol/relay1/set", "on")

        assert backend.calls == ["on", "on"]
        assert transport.payloads_for("devices/relaycontrol/relay1") == ["on", "on"]
        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_single_publish_with_state_worker(self, connection, transport, ha_config):
        """Test the background worker and the dispatch flush never double publish"""
        registry = DeviceRegistry(connection, ha_config)
        registry.register_devices([make_switch()])
        registry.start()
        await connection.connect()

        await transport.deliver("devices/relaycontrol/relay1/set", "on")

        assert transport.payloads_for("devices/relaycontrol/relay1") == ["on"]
        await connection.disconnect()
        await registry.stop()

    @pytest.mark.asyncio
    async def test_unknown_topic_ignored(self, connection, transport, ha_config):
        """Test messages for unregistered topics publish nothing"""
        registry = DeviceRegistry(connection, ha_config)
        registry.register_devices([make_switch()])
        await connection.connect()
        published = len(transport.published)

        await transport.deliver("devices/relaycontrol/other/set", "on")

        assert len(transport.published) == published
        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_observer_sees_every_message(self, connection, transport, ha_config):
        """Test observers receive matched and unmatched topics"""
        observer = AsyncMock()
        registry = DeviceRegistry(connection, ha_config)
        registry.register_devices([make_switch()])
        registry.observe(observer)
        await connection.connect()

        await transport.deliver("devices/relaycontrol/relay1/set", "on")
        await transport.deliver("elsewhere", "x")

        assert [c.args for c in observer.await_args_list] == [
            ("devices/relaycontrol/relay1/set", "on"),
            ("elsewhere", "x"),
        ]
        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_state_change_outside_dispatch(self, connection, transport, ha_config):
        """Test the worker publishes changes that do not come from a command"""
        backend = FakeSwitchBackend()
        switch = make_switch(backend=backend)
        registry = DeviceRegistry(connection, ha_config)
        registry.register_devices([switch])
        registry.start()
        await connection.connect()

        await backend.turn_off()
        switch.notify_state_changed()

        await wait_until(lambda: transport.payloads_for("devices/relaycontrol/relay1") == ["off"])
        await connection.disconnect()
        await registry.stop()


class TestLifecycleHooks:
    """Tests for keep-alive and disconnect announcements"""

    @pytest.mark.asyncio
    async def test_still_connected_republishes(self, connection, transport, ha_config):
        """Test availability and state are refreshed after a healthy probe"""
        registry = DeviceRegistry(connection, ha_config)
        registry.register_devices([make_switch(backend=FakeSwitchBackend(is_on=True))])
        await connection.connect()
        transport.published.clear()

        await registry.on_still_connected()

        assert transport.payloads_for("devices/relaycontrol/relay1/available") == ["available"]
        assert transport.payloads_for("devices/relaycontrol/relay1") == ["on"]
        await connection.disconnect()

    @pytest.mark.asyncio
    async def test_pre_disconnect_marks_offline(self, connection, transport, ha_config):
        """Test every device is marked unavailable before leaving"""
        registry = DeviceRegistry(connection, ha_config)
        registry.register_devices([make_switch("relay1", "fan"), make_switch("relay2", "pump")])
        await connection.connect()
        transport.published.clear()

        await connection.disconnect()

        assert transport.published == [
            ("devices/relaycontrol/relay1/available", b"offline", 0, True),
            ("devices/relaycontrol/relay2/available", b"offline", 0, True),
        ]

    @pytest.mark.asyncio
    async def test_reconnect_does_not_resubscribe_twice(self, connection, transport, ha_config):
        """Test on_first_connect runs only for the first connect"""
        registry = DeviceRegistry(connection, ha_config)
        registry.register_devices([make_switch()])
        await connection.connect()

        await registry.on_connected(False)

        assert transport.subscribed == [("devices/relaycontrol/relay1/set", 0)]
        await connection.disconnect()
