"""Persist overlay and template settings to a JSON file.

Settings live in memory as one flat key-value mapping per scope (one scope per
camera plus the plugin scope). Writes are applied in memory immediately and
flushed to disk after a short debounce so bursts of settings changes produce a
single file write.
"""

from __future__ import annotations

import fcntl
import json
import logging
import shutil
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path("/var/lib/osd-manager/settings.json")

# Debounce delay in seconds - wait this long after last change before writing
DEBOUNCE_DELAY_SECONDS = 2.0

LOCK_FILE_SUFFIX = ".lock"


def encode_value(value: Any) -> str | None:
    """Store strings verbatim and everything else as JSON."""
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value)


class SettingsStore:
    """Scoped key-value store backed by a JSON file with debounced writes."""

    def __init__(
        self,
        path: Path | None = None,
        debounce_seconds: float = DEBOUNCE_DELAY_SECONDS,
        logger: logging.Logger | None = None,
    ) -> None:
        self._path = path
        self._debounce_seconds = debounce_seconds
        self._logger = logger or LOGGER
        self._data: dict[str, dict[str, str]] = {}
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._dirty = False

    @property
    def path(self) -> Path | None:
        return self._path

    def load(self) -> None:
        """Read the settings file, keeping an empty store when it is missing or corrupt."""
        if self._path is None or not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            self._logger.error("[settings] Failed to read settings file '%s': %s", self._path, exc)
            return
        if not isinstance(raw, dict):
            self._logger.warning("[settings] Ignoring settings file '%s' with unexpected layout", self._path)
            return
        data: dict[str, dict[str, str]] = {}
        for scope, values in raw.items():
            if not isinstance(values, dict):
                continue
            data[str(scope)] = {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in values.items()}
        with self._lock:
            self._data = data
        self._logger.info("[settings] Loaded %d settings scope(s) from '%s'", len(data), self._path)

    def scope(self, name: str) -> DeviceStorage:
        return DeviceStorage(self, name)

    def scopes(self) -> list[str]:
        with self._lock:
            return list(self._data)

    def get(self, scope: str, key: str) -> str | None:
        with self._lock:
            return self._data.get(scope, {}).get(key)

    def put(self, scope: str, key: str, value: Any) -> None:
        encoded = encode_value(value)
        with self._lock:
            values = self._data.setdefault(scope, {})
            if encoded is None:
                if key not in values:
                    return
                values.pop(key, None)
            else:
                if values.get(key) == encoded:
                    return
                values[key] = encoded
            self._dirty = True
            self._schedule_write()

    def items(self, scope: str) -> dict[str, str]:
        with self._lock:
            return dict(self._data.get(scope, {}))

    def _schedule_write(self) -> None:
        """Schedule a debounced write. Must be called with self._lock held."""
        if self._path is None:
            return
        if self._timer is not None:
            self._timer.cancel()
        self._timer = threading.Timer(self._debounce_seconds, self._flush)
        self._timer.daemon = True
        self._timer.start()

    def _flush(self) -> None:
        with self._lock:
            self._timer = None
            if not self._dirty:
                return
            snapshot = {scope: dict(values) for scope, values in self._data.items()}
            self._dirty = False
        try:
            self._write(snapshot)
        except Exception as exc:
            self._logger.error("[settings] Failed to persist settings: %s", exc)

    def _write(self, snapshot: dict[str, dict[str, str]]) -> None:
        if self._path is None:
            return
        with self._write_lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            lock_path = Path(str(self._path) + LOCK_FILE_SUFFIX)
            lock_fd = None
            try:
                try:
                    lock_fd = open(lock_path, "w")
                    fcntl.flock(lock_fd.fileno(), fcntl.LOCK_EX)
                except OSError as exc:
                    self._logger.warning("[settings] Could not acquire settings lock: %s", exc)

                if self._path.exists():
                    try:
                        shutil.copy2(self._path, Path(str(self._path) + ".backup"))
                    except OSError as exc:
                        self._logger.warning("[settings] Failed to create settings backup: %s", exc)

                tmp_path = Path(str(self._path) + ".tmp")
                tmp_path.write_text(json.dumps(snapshot, indent=2, sort_keys=True), encoding="utf-8")
                tmp_path.replace(self._path)
                self._logger.debug("[settings] Persisted %d scope(s) to '%s'", len(snapshot), self._path)
            finally:
                if lock_fd is not None:
                    try:
                        fcntl.flock(lock_fd.fileno(), fcntl.LOCK_UN)
                        lock_fd.close()
                    except OSError:
                        pass

    def flush_sync(self) -> None:
        """Immediately flush any pending changes (blocking)."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        self._flush()

    def stop(self) -> None:
        self.flush_sync()


class DeviceStorage:
    """View of a single scope of the settings store."""

    def __init__(self, store: SettingsStore, scope: str) -> None:
        self._store = store
        self.scope = scope

    def get_item(self, key: str) -> str | None:
        return self._store.get(self.scope, key)

    def set_item(self, key: str, value: Any) -> None:
        self._store.put(self.scope, key, value)

    def remove_item(self, key: str) -> None:
        self._store.put(self.scope, key, None)

    def items(self) -> dict[str, str]:
        return self._store.items(self.scope)

    def __iter__(self) -> Iterator[str]:
        return iter(self.items())
