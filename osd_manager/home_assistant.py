"""Home Assistant entities as overlay data sources.

``HomeAssistantClient`` is a small async REST client. ``HomeAssistantDevices``
exposes entities (``sensor.office_temperature``, ``lock.front_door``...) through
the DeviceHub interface so overlays and templates can bind to them. The REST API
has no push channel, so subscriptions are served by one polling loop that
re-reads all states and notifies listeners when a decoded value changes.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from .config import HomeAssistantConfig
from .devices import ListenerRegistration, OsdError, ValueCallback, dispatch
from .models import Capability, DeviceInfo, OverlaySlot, SensorInfo
from .units import local_to_si
from .utils import coerce_float

LOGGER = logging.getLogger(__name__)

ENTRY_DEVICE_CLASSES = frozenset({"door", "window", "opening", "garage_door"})
LOCK_STATES = {"locked": "Locked", "unlocked": "Unlocked", "jammed": "Jammed"}


class HomeAssistantError(OsdError):
    """Generic Home Assistant API failure."""


class HomeAssistantAuthError(HomeAssistantError):
    """Raised when HA returns 401/403."""


@dataclass(slots=True)
class HomeAssistantClient:
    config: HomeAssistantConfig
    timeout: float = 10.0
    _client: httpx.AsyncClient = field(init=False, repr=False)
    _closed: bool = field(init=False, default=True, repr=False)

    def __post_init__(self) -> None:
        if not self.config.base_url:
            raise ValueError("Home Assistant base URL is not configured")
        if not self.config.token:
            raise ValueError("Home Assistant token is not configured")
        base_url = self.config.base_url.rstrip("/")
        headers = {
            "Authorization": f"Bearer {self.config.token}",
            "Content-Type": "application/json",
        }
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=self.timeout,
            verify=self.config.verify_ssl,
            trust_env=False,
        )
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()

    async def get_state(self, entity_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/api/states/{entity_id}")

    async def list_states(self) -> list[dict[str, Any]]:
        """Return all entity state payloads."""
        payload = await self._request("GET", "/api/states")
        if isinstance(payload, list):
            return [item for item in payload if isinstance(item, dict)]
        return []

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as exc:  # pragma: no cover - network errors
            raise HomeAssistantError(f"Failed to contact Home Assistant: {exc}") from exc
        if response.status_code in (401, 403):
            raise HomeAssistantAuthError("Home Assistant rejected the token")
        if response.status_code >= 400:
            raise HomeAssistantError(f"Home Assistant error {response.status_code}: {response.text}")
        if response.headers.get("content-type", "").startswith("application/json"):
            return response.json()
        return response.text


def entity_capabilities(state: dict[str, Any]) -> frozenset[Capability]:
    entity_id = str(state.get("entity_id") or "")
    domain = entity_id.partition(".")[0]
    attrs = state.get("attributes") or {}
    device_class = str(attrs.get("device_class") or "").lower()
    if domain == "lock":
        return frozenset({Capability.LOCK})
    if domain == "binary_sensor":
        if device_class in ENTRY_DEVICE_CLASSES:
            return frozenset({Capability.ENTRY_SENSOR})
        return frozenset({Capability.BINARY_SENSOR})
    if domain == "sensor":
        if device_class == "temperature":
            return frozenset({Capability.THERMOMETER})
        if device_class == "humidity":
            return frozenset({Capability.HUMIDITY_SENSOR})
        if device_class == "battery":
            return frozenset({Capability.BATTERY})
        return frozenset({Capability.SENSORS})
    return frozenset()


def entity_device_info(state: dict[str, Any]) -> DeviceInfo:
    entity_id = str(state.get("entity_id") or "")
    attrs = state.get("attributes") or {}
    name = str(attrs.get("friendly_name") or entity_id)
    unit = attrs.get("unit_of_measurement")
    capabilities = entity_capabilities(state)
    sensors: dict[str, SensorInfo] = {}
    if Capability.SENSORS in capabilities:
        sensors[entity_id] = SensorInfo(name=name, unit=unit, value=_sensor_si_value(state))
    return DeviceInfo(
        id=entity_id,
        name=name,
        interfaces=capabilities,
        sensors=sensors,
        temperature_unit=unit if Capability.THERMOMETER in capabilities else None,
        plugin_id="homeassistant",
    )


def _sensor_si_value(state: dict[str, Any]) -> Any:
    attrs = state.get("attributes") or {}
    reading = coerce_float(state.get("state"))
    if reading is None:
        return None
    return local_to_si(reading, attrs.get("unit_of_measurement"))


def decode_entity_value(state: dict[str, Any], capability: Capability) -> Any:
    """Translate an HA state payload into the reading a capability listener expects."""
    raw = str(state.get("state") or "").strip().lower()
    if raw in {"unavailable", "unknown", ""}:
        return None
    attrs = state.get("attributes") or {}
    if capability is Capability.THERMOMETER:
        reading = coerce_float(raw)
        return local_to_si(reading, attrs.get("unit_of_measurement")) if reading is not None else None
    if capability in (Capability.HUMIDITY_SENSOR, Capability.BATTERY):
        return coerce_float(raw)
    if capability is Capability.LOCK:
        return LOCK_STATES.get(raw, raw)
    if capability in (Capability.ENTRY_SENSOR, Capability.BINARY_SENSOR):
        return raw == "on"
    if capability is Capability.SENSORS:
        entity_id = str(state.get("entity_id") or "")
        return {entity_id: {"value": _sensor_si_value(state), "unit": attrs.get("unit_of_measurement")}}
    return None


class HomeAssistantDevices:
    """DeviceHub adapter serving Home Assistant entities as read-only sources."""

    def __init__(
        self,
        client: HomeAssistantClient,
        poll_seconds: float = 5.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.poll_seconds = poll_seconds
        self.logger = logger or LOGGER
        self._states: dict[str, dict[str, Any]] = {}
        self._listeners: dict[tuple[str, Capability], list[ValueCallback]] = {}
        self._last_dispatched: dict[tuple[str, Capability], Any] = {}
        self._runner: asyncio.Task | None = None

    async def start(self) -> None:
        await self.refresh()
        if self._runner is None:
            self._runner = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        runner = self._runner
        self._runner = None
        if runner:
            runner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await runner
        await self.client.close()

    async def refresh(self) -> None:
        try:
            states = await self.client.list_states()
        except HomeAssistantError as exc:
            self.logger.warning("[home_assistant] Failed to refresh entity states: %s", exc)
            return
        self._states = {str(item.get("entity_id")): item for item in states if item.get("entity_id")}
        self._notify_changes()

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_seconds)
            if not self._listeners:
                continue
            try:
                await self.refresh()
            except Exception:
                self.logger.exception("[home_assistant] Entity poll failed; continuing")

    def _notify_changes(self) -> None:
        for key in list(self._listeners):
            entity_id, capability = key
            state = self._states.get(entity_id)
            if state is None:
                continue
            value = decode_entity_value(state, capability)
            if key in self._last_dispatched and self._last_dispatched[key] == value:
                continue
            self._last_dispatched[key] = value
            dispatch(self._listeners, entity_id, capability, value, self.logger)

    def get_device(self, device_id: str) -> DeviceInfo | None:
        state = self._states.get(device_id)
        if state is None:
            return None
        return entity_device_info(state)

    async def list_overlays(self, device_id: str) -> list[OverlaySlot]:
        return []

    async def read_value(self, device_id: str, capability: Capability, sensor_id: str | None = None) -> Any:
        state = await self.client.get_state(device_id)
        if isinstance(state, dict):
            self._states[device_id] = state
        value = decode_entity_value(self._states.get(device_id) or {}, capability)
        if capability is Capability.SENSORS and sensor_id is not None and isinstance(value, dict):
            return value.get(sensor_id)
        return value

    def subscribe(self, device_id: str, capability: Capability, callback: ValueCallback) -> ListenerRegistration:
        state = self._states.get(device_id)
        if state is not None:
            self._last_dispatched[(device_id, capability)] = decode_entity_value(state, capability)
        return ListenerRegistration(self._listeners, (device_id, capability), callback)

    async def set_overlay_text(self, device_id: str, overlay_id: str, text: str) -> None:
        raise OsdError(f"Home Assistant entity {device_id} has no text overlays")

    async def clear_overlay(self, device_id: str, overlay_id: str) -> None:
        raise OsdError(f"Home Assistant entity {device_id} has no text overlays")

    def is_sleeping(self, device_id: str) -> bool:
        return False
