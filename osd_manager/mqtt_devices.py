"""Camera and sensor devices published on the MQTT bus.

Devices announce themselves with a retained ``<base>/devices/<id>/info``
document (name, interfaces, sensors, overlay slots) and stream readings on
``<base>/devices/<id>/state`` as partial JSON updates. Overlay text is written
back on ``<base>/devices/<id>/overlays/<overlay_id>/set``.

paho delivers messages on its network thread; every message is handed to the
asyncio loop before any state is touched, so listeners always run on the loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from .devices import DeviceNotFoundError, ListenerRegistration, OsdError, ValueCallback, dispatch
from .models import Capability, DeviceInfo, OverlaySlot, SensorInfo
from .mqtt import OsdMqtt

LOGGER = logging.getLogger(__name__)

# State document field -> capability whose listeners receive it.
STATE_FIELDS: dict[str, Capability] = {
    "temperature": Capability.THERMOMETER,
    "humidity": Capability.HUMIDITY_SENSOR,
    "lock_state": Capability.LOCK,
    "entry_open": Capability.ENTRY_SENSOR,
    "binary_state": Capability.BINARY_SENSOR,
    "battery_level": Capability.BATTERY,
    "detections": Capability.OBJECT_DETECTOR,
    "sleeping": Capability.SLEEP,
    "sensors": Capability.SENSORS,
}
CAPABILITY_FIELDS: dict[Capability, str] = {capability: name for name, capability in STATE_FIELDS.items()}

DeviceCallback = Callable[[DeviceInfo], None]


def parse_device_info(device_id: str, payload: dict[str, Any]) -> tuple[DeviceInfo, list[OverlaySlot]]:
    interfaces: set[Capability] = set()
    for raw in payload.get("interfaces") or []:
        try:
            interfaces.add(Capability(str(raw)))
        except ValueError:
            continue

    sensors: dict[str, SensorInfo] = {}
    raw_sensors = payload.get("sensors")
    if isinstance(raw_sensors, dict):
        for sensor_id, item in raw_sensors.items():
            if not isinstance(item, dict):
                continue
            sensors[str(sensor_id)] = SensorInfo(
                name=str(item.get("name") or sensor_id),
                unit=item.get("unit"),
                value=item.get("value"),
            )

    slots: list[OverlaySlot] = []
    raw_overlays = payload.get("overlays")
    if isinstance(raw_overlays, dict):
        for overlay_id, item in raw_overlays.items():
            item = item if isinstance(item, dict) else {}
            slots.append(OverlaySlot(id=str(overlay_id), readonly=bool(item.get("readonly")), text=item.get("text")))

    info = DeviceInfo(
        id=device_id,
        name=str(payload.get("name") or device_id),
        interfaces=frozenset(interfaces),
        sensors=sensors,
        temperature_unit=payload.get("temperature_unit"),
        plugin_id=payload.get("plugin_id"),
    )
    return info, slots


class MqttDeviceHub:
    """DeviceHub adapter for devices reachable over MQTT."""

    def __init__(self, mqtt: OsdMqtt, topic_base: str, logger: logging.Logger | None = None) -> None:
        self.mqtt = mqtt
        self.topic_base = topic_base.rstrip("/")
        self.logger = logger or LOGGER
        self._loop: asyncio.AbstractEventLoop | None = None
        self._devices: dict[str, DeviceInfo] = {}
        self._slots: dict[str, list[OverlaySlot]] = {}
        self._states: dict[str, dict[str, Any]] = {}
        self._listeners: dict[tuple[str, Capability], list[ValueCallback]] = {}
        self._on_device_added: DeviceCallback | None = None
        self._on_device_removed: DeviceCallback | None = None

    def set_device_callbacks(
        self,
        on_added: DeviceCallback | None = None,
        on_removed: DeviceCallback | None = None,
    ) -> None:
        self._on_device_added = on_added
        self._on_device_removed = on_removed

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        """Subscribe to device topics; messages are applied on ``loop``."""
        self._loop = loop
        try:
            self.mqtt.subscribe(f"{self.topic_base}/devices/+/info", self._handle_message)
            self.mqtt.subscribe(f"{self.topic_base}/devices/+/state", self._handle_message)
        except RuntimeError:
            self.logger.warning("[devices] MQTT client not ready; device bus unavailable")

    def devices(self) -> list[DeviceInfo]:
        return list(self._devices.values())

    def _handle_message(self, topic: str, payload: str) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            self.apply_message(topic, payload)
            return
        loop.call_soon_threadsafe(self.apply_message, topic, payload)

    def apply_message(self, topic: str, payload: str) -> None:
        prefix = f"{self.topic_base}/devices/"
        if not topic.startswith(prefix):
            return
        parts = topic[len(prefix) :].split("/")
        if len(parts) != 2 or not parts[0]:
            return
        device_id, channel = parts
        if channel == "info":
            self._apply_info(device_id, payload)
        elif channel == "state":
            self._apply_state(device_id, payload)

    def _apply_info(self, device_id: str, payload: str) -> None:
        if not payload.strip():
            removed = self._devices.pop(device_id, None)
            self._slots.pop(device_id, None)
            self._states.pop(device_id, None)
            if removed is not None:
                self.logger.info("[devices] Device %s (%s) removed", removed.name, device_id)
                if self._on_device_removed:
                    self._on_device_removed(removed)
            return
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            self.logger.warning("[devices] Ignoring malformed info document for %s", device_id)
            return
        if not isinstance(data, dict):
            return
        info, slots = parse_device_info(device_id, data)
        is_new = device_id not in self._devices
        self._devices[device_id] = info
        self._slots[device_id] = slots
        state = self._states.setdefault(device_id, {})
        for sensor_id, sensor in info.sensors.items():
            if sensor.value is not None:
                state.setdefault("sensors", {}).setdefault(sensor_id, {"value": sensor.value, "unit": sensor.unit})
        if is_new:
            self.logger.info("[devices] Discovered device %s (%s) with %d overlay(s)", info.name, device_id, len(slots))
            if self._on_device_added and info.has(Capability.VIDEO_TEXT_OVERLAYS):
                self._on_device_added(info)

    def _apply_state(self, device_id: str, payload: str) -> None:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            self.logger.warning("[devices] Ignoring malformed state update for %s", device_id)
            return
        if not isinstance(data, dict):
            return
        state = self._states.setdefault(device_id, {})
        for field_name, value in data.items():
            capability = STATE_FIELDS.get(field_name)
            if capability is None:
                continue
            if capability is Capability.SENSORS:
                if not isinstance(value, dict):
                    continue
                sensors = state.setdefault("sensors", {})
                changed: dict[str, Any] = {}
                for sensor_id, reading in value.items():
                    if not isinstance(reading, dict):
                        reading = {"value": reading}
                    merged = {**sensors.get(sensor_id, {}), **reading}
                    sensors[sensor_id] = merged
                    changed[sensor_id] = merged
                dispatch(self._listeners, device_id, capability, changed, self.logger)
                continue
            state[field_name] = value
            dispatch(self._listeners, device_id, capability, value, self.logger)

    def get_device(self, device_id: str) -> DeviceInfo | None:
        return self._devices.get(device_id)

    async def list_overlays(self, device_id: str) -> list[OverlaySlot]:
        if device_id not in self._devices:
            raise DeviceNotFoundError(f"Device {device_id} has not announced itself")
        return list(self._slots.get(device_id, []))

    async def read_value(self, device_id: str, capability: Capability, sensor_id: str | None = None) -> Any:
        state = self._states.get(device_id, {})
        field_name = CAPABILITY_FIELDS.get(capability)
        if field_name is None:
            return None
        value = state.get(field_name)
        if capability is Capability.SENSORS and sensor_id is not None:
            reading = dict((value or {}).get(sensor_id) or {})
            info = self._devices.get(device_id)
            sensor = info.sensors.get(sensor_id) if info else None
            if sensor is not None:
                reading.setdefault("unit", sensor.unit)
                reading.setdefault("value", sensor.value)
            return reading or None
        return value

    def subscribe(self, device_id: str, capability: Capability, callback: ValueCallback) -> ListenerRegistration:
        return ListenerRegistration(self._listeners, (device_id, capability), callback)

    def listener_count(self, device_id: str | None = None) -> int:
        return sum(
            len(callbacks)
            for (listener_device, _capability), callbacks in self._listeners.items()
            if device_id is None or listener_device == device_id
        )

    async def set_overlay_text(self, device_id: str, overlay_id: str, text: str) -> None:
        self._publish_overlay(device_id, overlay_id, {"text": text})

    async def clear_overlay(self, device_id: str, overlay_id: str) -> None:
        self._publish_overlay(device_id, overlay_id, {"enabled": False})

    def _publish_overlay(self, device_id: str, overlay_id: str, body: dict[str, Any]) -> None:
        topic = f"{self.topic_base}/devices/{device_id}/overlays/{overlay_id}/set"
        if not self.mqtt.publish(topic, json.dumps(body), qos=1):
            raise OsdError(f"Failed to publish overlay update to {topic}")

    def is_sleeping(self, device_id: str) -> bool:
        return bool(self._states.get(device_id, {}).get("sleeping"))
