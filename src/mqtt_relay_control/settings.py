"""Small persistent key/value store for values that must survive restarts.

Backed by a JSON object of string -> string. File access runs in a worker
thread; writes replace the file atomically.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path

from mqtt_relay_control.const import RELAY_SETTINGS_PATH
from mqtt_relay_control.logging_abstraction import get_logger

logger = get_logger(__name__)


class UserSettings:
    lp: str = "settings:"

    def __init__(self, path: str | Path | None = None) -> None:
        self.path: Path = Path(path or RELAY_SETTINGS_PATH).expanduser()
        self._values: dict[str, str] = {}
        self._dirty: bool = False
        self._write_lock: asyncio.Lock = asyncio.Lock()

    async def load(self) -> None:
        """Read the settings file; a missing or unreadable file leaves the store empty."""
        self._values = await asyncio.to_thread(self._read)
        self._dirty = False

    def _read(self) -> dict[str, str]:
        lp = f"{self.lp}load:"
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("%s No settings file at %s, starting empty", lp, self.path)
            return {}
        except OSError as e:
            logger.warning("%s Unable to read %s: %s", lp, self.path, e)
            return {}
        try:
            data = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as e:
            logger.warning("%s Ignoring corrupt settings file %s: %s", lp, self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("%s Ignoring settings file %s: not a JSON object", lp, self.path)
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def get_value(self, name: str) -> str | None:
        return self._values.get(name)

    def set_value(self, name: str, value: str) -> None:
        if self._values.get(name) == value:
            return
        self._values[name] = value
        self._dirty = True

    async def write(self) -> bool:
        """Persist pending changes.

        Returns:
            True when the file was written, False when nothing changed or the
            write failed (logged)

        """
        async with self._write_lock:
            if not self._dirty:
                return False
            snapshot = dict(self._values)
            self._dirty = False
            try:
                await asyncio.to_thread(self._write, snapshot)
            except OSError as e:
                self._dirty = True
                logger.error("%s Unable to write %s: %s", self.lp, self.path, e)
                return False
            return True

    def _write(self, values: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        _ = tmp.write_text(json.dumps(values, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, self.path)
