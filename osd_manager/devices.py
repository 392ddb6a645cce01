"""Device capability port and the helpers shared by its adapters.

The overlay engine never talks to a transport directly. Cameras and data
sources are reached through a ``DeviceHub``: capability lookup, value reads,
cancellable event subscriptions, and overlay writes.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any, Protocol

from .models import Capability, DeviceInfo, OverlaySlot

LOGGER = logging.getLogger(__name__)

ValueCallback = Callable[[Any], None]


class OsdError(RuntimeError):
    """Base error for the OSD manager."""


class DeviceNotFoundError(OsdError):
    """Raised when an operation targets a device the hub does not know."""


class Subscription(Protocol):
    def cancel(self) -> None: ...


class DeviceHub(Protocol):
    def get_device(self, device_id: str) -> DeviceInfo | None: ...

    async def list_overlays(self, device_id: str) -> list[OverlaySlot]: ...

    async def read_value(self, device_id: str, capability: Capability, sensor_id: str | None = None) -> Any: ...

    def subscribe(self, device_id: str, capability: Capability, callback: ValueCallback) -> Subscription: ...

    async def set_overlay_text(self, device_id: str, overlay_id: str, text: str) -> None: ...

    async def clear_overlay(self, device_id: str, overlay_id: str) -> None: ...

    def is_sleeping(self, device_id: str) -> bool: ...


class ListenerRegistration:
    """Cancellable handle removing one callback from a listener table."""

    def __init__(
        self,
        table: dict[tuple[str, Capability], list[ValueCallback]],
        key: tuple[str, Capability],
        callback: ValueCallback,
    ) -> None:
        self._table = table
        self._key = key
        self._callback = callback
        self._active = True
        table.setdefault(key, []).append(callback)

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        callbacks = self._table.get(self._key)
        if not callbacks:
            return
        try:
            callbacks.remove(self._callback)
        except ValueError:
            pass
        if not callbacks:
            self._table.pop(self._key, None)


def dispatch(
    table: dict[tuple[str, Capability], list[ValueCallback]],
    device_id: str,
    capability: Capability,
    value: Any,
    logger: logging.Logger | None = None,
) -> int:
    """Invoke every callback registered for ``(device_id, capability)``."""
    log = logger or LOGGER
    callbacks = list(table.get((device_id, capability), ()))
    for callback in callbacks:
        try:
            callback(value)
        except Exception as exc:
            log.error("[devices] Listener for %s/%s failed: %s", device_id, capability.value, exc, exc_info=True)
    return len(callbacks)


_ENTITY_ID_RE = re.compile(r"^[a-z_]+\.[a-z0-9_]+$")


def is_entity_id(device_id: str) -> bool:
    """Whether ``device_id`` looks like a Home Assistant entity id."""
    return bool(_ENTITY_ID_RE.match(device_id))


class CompositeDeviceHub:
    """Route Home Assistant entity ids to the entity source, everything else to the bus."""

    def __init__(self, bus: DeviceHub, entities: DeviceHub | None = None) -> None:
        self.bus = bus
        self.entities = entities

    def _route(self, device_id: str) -> DeviceHub:
        if self.entities is not None and is_entity_id(device_id):
            return self.entities
        return self.bus

    def get_device(self, device_id: str) -> DeviceInfo | None:
        return self._route(device_id).get_device(device_id)

    async def list_overlays(self, device_id: str) -> list[OverlaySlot]:
        return await self._route(device_id).list_overlays(device_id)

    async def read_value(self, device_id: str, capability: Capability, sensor_id: str | None = None) -> Any:
        return await self._route(device_id).read_value(device_id, capability, sensor_id)

    def subscribe(self, device_id: str, capability: Capability, callback: ValueCallback) -> Subscription:
        return self._route(device_id).subscribe(device_id, capability, callback)

    async def set_overlay_text(self, device_id: str, overlay_id: str, text: str) -> None:
        await self._route(device_id).set_overlay_text(device_id, overlay_id, text)

    async def clear_overlay(self, device_id: str, overlay_id: str) -> None:
        await self._route(device_id).clear_overlay(device_id, overlay_id)

    def is_sleeping(self, device_id: str) -> bool:
        return self._route(device_id).is_sleeping(device_id)
