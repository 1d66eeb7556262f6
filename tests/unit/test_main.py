"""
Unit tests for the entry point and RelayController.
"""

import asyncio
from unittest.mock import MagicMock, patch

import pytest

from mqtt_relay_control import main as main_module
from mqtt_relay_control.config import Configuration
from mqtt_relay_control.const import EXIT_ERROR, EXIT_OK
from mqtt_relay_control.main import RelayController, main, parse_cli
from mqtt_relay_control.settings import UserSettings
from mqtt_relay_control.structs import ConnectionState
from tests.unit.helpers import FakeTransport, wait_until


@pytest.fixture
def mock_serial():
    with patch("mqtt_relay_control.devices.relay.serial.Serial") as serial_cls:
        port = MagicMock()
        port.is_open = False
        serial_cls.return_value = port
        yield port


def make_config(attempts=0):
    return Configuration.from_mapping(
        {
            "mqtt": {
                "host": "broker.test",
                "reconnect_timeout": 0,
                "connection_timeout": 0.2,
                "disconnect_timeout": 0.2,
                "initial_connection_attempts": attempts,
            },
            "home_assistant": {"discovery": True},
            "relay_control": [
                {"guid": "relay1", "entity_id": "garage_fan", "serial_port": {"port": "/dev/ttyUSB0"}},
            ],
        },
    )


class TestParseCli:
    """Tests for argument parsing"""

    def test_config_and_debug(self):
        args = parse_cli(["-c", "/etc/relay.yaml", "-D"])

        assert str(args.config) == "/etc/relay.yaml"
        assert args.debug is True

    def test_defaults(self):
        args = parse_cli([])

        assert args.config is None
        assert args.debug is False


class TestRelayController:
    """Tests for RelayController.start()"""

    @pytest.mark.asyncio
    async def test_connect_failure_exits_with_error(self, mock_serial, tmp_path):
        """Test exhausted connect attempts give exit code 2"""
        transport = FakeTransport()
        transport.connect_results = [False]
        controller = RelayController(
            make_config(),
            asyncio.Event(),
            transport=transport,
            settings=UserSettings(tmp_path / "settings.json"),
        )

        assert await controller.start() == EXIT_ERROR
        assert controller.connection.state is ConnectionState.CLOSED

    @pytest.mark.asyncio
    async def test_runs_until_shutdown(self, mock_serial, tmp_path):
        """Test the bridge serves until the shutdown event, then leaves cleanly"""
        transport = FakeTransport()
        shutdown = asyncio.Event()
        controller = RelayController(
            make_config(),
            shutdown,
            transport=transport,
            settings=UserSettings(tmp_path / "settings.json"),
        )
        task = asyncio.create_task(controller.start())

        await wait_until(lambda: transport.payloads_for("devices/relaycontrol/relay1/available") == ["available"])
        assert controller.connection.is_connected
        assert ("devices/relaycontrol/relay1/set", 0) in transport.subscribed
        shutdown.set()

        assert await asyncio.wait_for(task, timeout=2) == EXIT_OK
        assert transport.payloads_for("devices/relaycontrol/relay1/available") == ["available", "offline"]
        assert transport.disconnect_calls == 1

    @pytest.mark.asyncio
    async def test_resumes_last_relay_state(self, mock_serial, tmp_path):
        """Test the persisted relay state is restored and published on connect"""
        settings = UserSettings(tmp_path / "settings.json")
        settings.set_value("garage_fanLastRelayState", "open")
        await settings.write()
        transport = FakeTransport()
        shutdown = asyncio.Event()
        controller = RelayController(make_config(), shutdown, transport=transport, settings=settings)
        task = asyncio.create_task(controller.start())

        await wait_until(lambda: "on" in transport.payloads_for("devices/relaycontrol/relay1"))
        shutdown.set()

        assert await asyncio.wait_for(task, timeout=2) == EXIT_OK
        mock_serial.write.assert_called()

    @pytest.mark.asyncio
    async def test_relay_without_entity_id_is_isolated(self, mock_serial, tmp_path):
        """Test a relay whose entity_id is left empty in YAML does not stop the others"""
        path = tmp_path / "config.yaml"
        path.write_text(
            "mqtt:\n"
            "  host: broker.test\n"
            "home_assistant:\n"
            "  discovery: true\n"
            "relay_control:\n"
            "  - guid: relay1\n"
            "    entity_id:\n"
            "    serial_port:\n"
            "      port: /dev/ttyUSB0\n"
            "  - guid: relay2\n"
            "    entity_id: pump\n"
            "    serial_port:\n"
            "      port: /dev/ttyUSB1\n",
        )
        transport = FakeTransport()
        shutdown = asyncio.Event()
        controller = RelayController(
            Configuration.from_yaml(path),
            shutdown,
            transport=transport,
            settings=UserSettings(tmp_path / "settings.json"),
        )
        task = asyncio.create_task(controller.start())

        await wait_until(lambda: transport.payloads_for("devices/relaycontrol/relay2/available") == ["available"])
        config_topics = [t for t, *_ in transport.published if t.endswith("/config")]
        assert config_topics == ["homeassistant/switch/pump/config"]
        assert transport.payloads_for("devices/relaycontrol/relay1/available") == ["available"]
        shutdown.set()

        assert await asyncio.wait_for(task, timeout=2) == EXIT_OK

    @pytest.mark.asyncio
    async def test_shutdown_during_connect_is_clean(self, mock_serial, tmp_path):
        """Test a shutdown while retrying is not an error"""
        config = Configuration.from_mapping(
            {
                "mqtt": {"host": "broker.test", "reconnect_timeout": 30, "initial_connection_attempts": 5},
                "relay_control": [],
            },
        )
        transport = FakeTransport()
        transport.connect_results = [False] * 10
        shutdown = asyncio.Event()
        controller = RelayController(
            config,
            shutdown,
            transport=transport,
            settings=UserSettings(tmp_path / "settings.json"),
        )
        asyncio.get_running_loop().call_later(0.05, shutdown.set)

        assert await asyncio.wait_for(controller.start(), timeout=2) == EXIT_OK


class TestMain:
    """Tests for main()"""

    def test_missing_config_path(self, monkeypatch):
        """Test running without any configuration file fails"""
        monkeypatch.delenv("RELAY_CONFIG_FILE", raising=False)

        assert main([]) == EXIT_ERROR

    def test_unreadable_config(self, tmp_path):
        assert main(["-c", str(tmp_path / "missing.yaml")]) == EXIT_ERROR

    def test_config_without_mqtt(self, tmp_path):
        """Test a config file without an mqtt block is fatal"""
        path = tmp_path / "config.yaml"
        path.write_text("relay_control: []\n")

        assert main(["-c", str(path)]) == EXIT_ERROR

    def test_runs_event_loop(self, tmp_path):
        """Test a valid config is handed to the event loop runner"""
        path = tmp_path / "config.yaml"
        path.write_text("mqtt:\n  host: broker.test\n")

        def fake_run(coro):
            coro.close()
            return EXIT_OK

        with patch.object(main_module.uvloop, "run", side_effect=fake_run) as run:
            assert main(["-c", str(path)]) == EXIT_OK
        run.assert_called_once()
