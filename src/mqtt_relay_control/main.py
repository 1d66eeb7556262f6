from __future__ import annotations

import argparse
import asyncio
import logging
import uuid
from collections.abc import Sequence
from pathlib import Path

import dotenv
import uvloop

from mqtt_relay_control.config import Configuration
from mqtt_relay_control.const import EXIT_ERROR, EXIT_OK, RELAY_VERSION
from mqtt_relay_control.correlation import correlation_scope, ensure_correlation_id
from mqtt_relay_control.devices.relay import SerialRelay, build_relay_switch
from mqtt_relay_control.exceptions import ConfigurationError
from mqtt_relay_control.logging_abstraction import configure_logging, get_logger
from mqtt_relay_control.mqtt.connection import ConnectionManager
from mqtt_relay_control.mqtt.registry import DeviceRegistry
from mqtt_relay_control.mqtt.transport import AiomqttTransport
from mqtt_relay_control.settings import UserSettings
from mqtt_relay_control.structs import GlobalObject, TransportProtocol
from mqtt_relay_control.utils import check_python_version, install_signal_handlers

logger = get_logger(__name__)

# Suppress verbose MQTT library warnings
mqtt_logger = logging.getLogger("mqtt")
mqtt_logger.setLevel(logging.ERROR)
mqtt_logger.propagate = False

g = GlobalObject()


class RelayController:
    """Wires configuration, relays, the registry and the broker connection together."""

    lp: str = "RelayController:"

    def __init__(
        self,
        config: Configuration,
        shutdown_event: asyncio.Event,
        transport: TransportProtocol | None = None,
        settings: UserSettings | None = None,
    ) -> None:
        self.config: Configuration = config
        self.shutdown_event: asyncio.Event = shutdown_event
        mqtt_config = config.require_mqtt()
        if transport is None:
            client_id = mqtt_config.resolved_client_id(uuid.uuid4().hex[:8])
            transport = AiomqttTransport(mqtt_config, client_id)
        self.settings: UserSettings = settings or UserSettings(g.env.settings_path)
        self.connection: ConnectionManager = ConnectionManager(mqtt_config, transport, shutdown_event)
        self.registry: DeviceRegistry = DeviceRegistry(self.connection, config.home_assistant)
        self.relays: list[SerialRelay] = []

    async def setup_devices(self) -> None:
        """Build a switch per relay, restore persisted relay states, register them.

        Raises:
            ConfigurationError: A relay entry is unusable

        """
        await self.settings.load()
        prefix = self.config.home_assistant.device_topic_prefix
        devices = [build_relay_switch(cfg, prefix, self.settings) for cfg in self.config.relay_control]
        self.registry.register_devices(devices)
        for device in devices:
            backend = device.backend
            if isinstance(backend, SerialRelay):
                self.relays.append(backend)
                if await backend.resume():
                    logger.info("%s Restored last relay state of '%s'", self.lp, device.entity_id)
                    device.notify_state_changed()

    async def start(self) -> int:
        """Run until shutdown is requested.

        Returns:
            Process exit code

        """
        lp = f"{self.lp}start:"
        _ = ensure_correlation_id()
        logger.info(
            "%s Starting relay bridge",
            lp,
            extra={"version": RELAY_VERSION, "relays": len(self.config.relay_control)},
        )
        await self.setup_devices()
        self.registry.start()

        if not await self.connection.connect():
            if self.shutdown_event.is_set():
                logger.info("%s Shutdown requested before the broker connection was up", lp)
                await self.stop()
                return EXIT_OK
            logger.error("%s Failed to connect to the MQTT broker, aborting", lp)
            await self.stop()
            return EXIT_ERROR

        logger.info("%s Relay bridge running, waiting for shutdown signal", lp)
        _ = await self.shutdown_event.wait()
        await self.stop()
        return EXIT_OK

    async def stop(self) -> None:
        logger.info("%s Shutting down relay bridge...", self.lp)
        await self.connection.disconnect()
        await self.registry.stop()
        for relay in self.relays:
            relay.close_port()


def parse_cli(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Expose serial relays to Home Assistant over MQTT")
    _ = parser.add_argument(
        "-c",
        "--config",
        help="Path to the YAML configuration file (default: $RELAY_CONFIG_FILE)",
        default=None,
        type=Path,
    )
    _ = parser.add_argument(
        "-D",
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )
    _ = parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    args = parser.parse_args(argv)

    if args.env:
        env_path = args.env.expanduser().resolve()
        if not env_path.exists():
            logger.error("Environment file not found", extra={"path": str(env_path)})
        elif dotenv.load_dotenv(env_path, override=True):
            logger.info("Environment variables loaded", extra={"source": str(env_path)})
        else:
            logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})
    g.reload_env()
    return args


def apply_logging_config(config: Configuration, debug: bool = False) -> None:
    """Rebuild log handlers from env knobs, the `logging` block and the -D flag."""
    level = config.logging.python_level()
    if debug or g.env.debug:
        level = logging.DEBUG
    human_output = config.logging.filename or g.env.log_human_output
    _ = configure_logging(
        level=level,
        log_format=config.logging.format or g.env.log_format,
        json_file=g.env.log_json_file or None,
        human_output=human_output,
    )
    if level == logging.DEBUG:
        logger.info("Debug logging enabled")


async def run(config: Configuration) -> int:
    g.loop = asyncio.get_running_loop()
    g.shutdown_event = shutdown_event = asyncio.Event()
    install_signal_handlers(g.loop)
    controller = RelayController(config, shutdown_event)
    try:
        return await controller.start()
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        await controller.stop()
        return EXIT_ERROR


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the relay bridge."""
    with correlation_scope("app"):
        check_python_version()
        args = parse_cli(argv)
        config_path = args.config or g.env.config_file
        if not config_path:
            logger.error("No configuration file given, use -c/--config or set RELAY_CONFIG_FILE")
            return EXIT_ERROR

        try:
            config = Configuration.from_yaml(config_path)
            apply_logging_config(config, debug=args.debug)
            _ = config.require_mqtt()
        except ConfigurationError as e:
            logger.error("Invalid configuration: %s", e)
            return EXIT_ERROR

        try:
            exit_code = uvloop.run(run(config))
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
            exit_code = EXIT_OK
        logger.info("Relay bridge stopped", extra={"exit_code": exit_code})
        return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
