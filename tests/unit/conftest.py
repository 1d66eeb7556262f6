"""
Shared fixtures for unit tests.

This module provides reusable fixtures for the connection, registry and device
layers; the doubles themselves live in tests/unit/helpers.py.
"""

import asyncio

import pytest

from mqtt_relay_control.config import HomeAssistantConfig, MqttConfig
from mqtt_relay_control.mqtt.connection import ConnectionManager
from tests.unit.helpers import FakeTransport


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def mqtt_config():
    """Fast timings so lifecycle tests finish in milliseconds."""
    return MqttConfig(
        host="broker.test",
        keep_alive_seconds=30,
        reconnect_timeout=0,
        connection_timeout=0.2,
        disconnect_timeout=0.2,
        initial_connection_attempts=10,
    )


@pytest.fixture
def ha_config():
    return HomeAssistantConfig(
        discovery=True,
        device_unique_id="relay-box-1",
        device_name="Relay Box",
        device_model="USB relay",
    )


@pytest.fixture
def connection(mqtt_config, transport):
    return ConnectionManager(mqtt_config, transport, asyncio.Event())
