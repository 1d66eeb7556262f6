"""Expose serial-port relays to Home Assistant over MQTT."""

__version__ = "1.1.0"
