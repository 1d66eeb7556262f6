from __future__ import annotations

import asyncio
import signal
import sys
from functools import partial

from mqtt_relay_control.logging_abstraction import get_logger
from mqtt_relay_control.structs import GlobalObject

logger = get_logger(__name__)
g = GlobalObject()


def signal_handler(signum: int) -> None:
    logger.info("Relay bridge: Intercepted signal: %s (%s)", signal.Signals(signum).name, signum)
    if g.shutdown_event is not None:
        g.shutdown_event.set()


def install_signal_handlers(loop: asyncio.AbstractEventLoop) -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, partial(signal_handler, sig))
    logger.debug("Signal handlers configured for SIGINT & SIGTERM")


def check_python_version():
    if sys.version_info < (3, 12):
        msg = f"Python 3.12 or newer is required, running {sys.version.split()[0]}"
        raise SystemExit(msg)
