"""Logging abstraction layer for the relay bridge.

Every module logs through a RelayLogger obtained from get_logger(__name__).
Handlers live on the package root logger so module loggers propagate to one
place; output can be JSON lines, human-readable lines, or both, and each
record carries the current correlation id.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import cast

from typing_extensions import override

__all__ = [
    "HumanReadableFormatter",
    "JSONFormatter",
    "RelayLogger",
    "configure_logging",
    "get_logger",
]

ROOT_LOGGER_NAME = "mqtt_relay_control"
_HANDLER_TAG = "_relay_handler"


class JSONFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per record."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        from mqtt_relay_control.correlation import current_correlation_id

        log_data: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
            "correlation_id": current_correlation_id(),
        }

        extra_data = getattr(record, "extra_data", None)
        if isinstance(extra_data, Mapping) and extra_data:
            log_data["context"] = dict(cast("Mapping[str, object]", extra_data))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Formatter for console output: timestamp level [module:line] [cid] > message | k=v."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(correlation_id)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        from mqtt_relay_control.correlation import current_correlation_id

        cid = current_correlation_id()
        record.correlation_id = f"[{cid[-8:]}]" if cid else "[--------]"

        formatted = super().format(record)

        extra_data = getattr(record, "extra_data", None)
        if isinstance(extra_data, Mapping) and extra_data:
            context_map = cast("Mapping[str, object]", extra_data)
            context_str = " | ".join(f"{k}={v}" for k, v in context_map.items())
            formatted = f"{formatted} | {context_str}"

        return formatted


def _stream_or_file_handler(output: str) -> logging.Handler:
    if output == "stdout":
        return logging.StreamHandler(sys.stdout)
    if output == "stderr":
        return logging.StreamHandler(sys.stderr)
    try:
        path = Path(output).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(path, mode="a")
    except OSError as e:
        print(f"Warning: Failed to open log file {output}: {e}", file=sys.stderr)
        return logging.StreamHandler(sys.stdout)


def configure_logging(
    level: int | None = None,
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
) -> logging.Logger:
    """(Re)build the handlers on the package root logger.

    Args:
        level: Logging level; defaults to DEBUG when RELAY_DEBUG is set, else INFO
        log_format: "json", "human" or "both"
        json_file: Destination for JSON lines (ignored unless format includes json)
        human_output: "stdout", "stderr", or a file path

    Returns:
        The package root logger

    """
    from mqtt_relay_control.const import (
        RELAY_DEBUG,
        RELAY_LOG_FORMAT,
        RELAY_LOG_HUMAN_OUTPUT,
        RELAY_LOG_JSON_FILE,
    )

    if level is None:
        level = logging.DEBUG if RELAY_DEBUG else logging.INFO
    log_format = log_format or RELAY_LOG_FORMAT
    json_file = json_file or RELAY_LOG_JSON_FILE or None
    human_output = human_output or RELAY_LOG_HUMAN_OUTPUT

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            root.removeHandler(handler)
            handler.close()

    new_handlers: list[logging.Handler] = []
    if log_format in ("json", "both") and json_file:
        json_handler = _stream_or_file_handler(str(json_file))
        json_handler.setFormatter(JSONFormatter())
        new_handlers.append(json_handler)
    if log_format in ("human", "both"):
        human_handler = _stream_or_file_handler(human_output)
        human_handler.setFormatter(HumanReadableFormatter())
        new_handlers.append(human_handler)

    for handler in new_handlers:
        handler.setLevel(level)
        setattr(handler, _HANDLER_TAG, True)
        root.addHandler(handler)
    return root


class RelayLogger:
    """Thin wrapper over logging.Logger that accepts structured context.

    `extra` is a flat mapping attached to the record as `extra_data`; the
    formatters render it as JSON `context` or as trailing `k=v` pairs.
    """

    def __init__(self, name: str) -> None:
        self.name: str = name
        self.logger: logging.Logger = logging.getLogger(name)

    def _log(self, level: int, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        payload = {"extra_data": dict(extra)} if extra else None
        self.logger.log(level, msg, *args, extra=payload, stacklevel=3)

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.WARNING, msg, *args, extra=extra)

    def error(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.ERROR, msg, *args, extra=extra)

    def exception(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        payload = {"extra_data": dict(extra)} if extra else None
        self.logger.exception(msg, *args, extra=payload, stacklevel=2)


def get_logger(name: str) -> RelayLogger:
    """Get a RelayLogger; the first call installs default handlers on the package root."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not any(getattr(h, _HANDLER_TAG, False) for h in root.handlers):
        _ = configure_logging()
    return RelayLogger(name)
