"""Entities exposed to Home Assistant and the hardware backends behind them."""

from mqtt_relay_control.devices.base_device import BaseDevice
from mqtt_relay_control.devices.cover import CoverDevice
from mqtt_relay_control.devices.relay import SerialRelay, build_relay_switch
from mqtt_relay_control.devices.sensor import SensorDevice
from mqtt_relay_control.devices.switch import SwitchDevice

__all__ = [
    "BaseDevice",
    "CoverDevice",
    "SensorDevice",
    "SerialRelay",
    "SwitchDevice",
    "build_relay_switch",
]
