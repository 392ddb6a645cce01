"""Domain types shared by the overlay engine."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from .keys import (
    CLOSED_TEXT_KEY,
    JAMMED_TEXT_KEY,
    LOCK_TEXT_KEY,
    OPEN_TEXT_KEY,
    UNLOCK_TEXT_KEY,
    overlay_keys,
    template_keys,
)
from .utils import device_ref_id, load_json, parse_float, parse_int

DEFAULT_FORMAT_EXPRESSION = "${value} ${unit}"
DEFAULT_MAX_DECIMALS = 1
DEFAULT_REFRESH_SECONDS = 5.0


class Capability(str, Enum):
    THERMOMETER = "Thermometer"
    HUMIDITY_SENSOR = "HumiditySensor"
    LOCK = "Lock"
    ENTRY_SENSOR = "EntrySensor"
    BINARY_SENSOR = "BinarySensor"
    SENSORS = "Sensors"
    BATTERY = "Battery"
    OBJECT_DETECTOR = "ObjectDetector"
    VIDEO_TEXT_OVERLAYS = "VideoTextOverlays"
    SLEEP = "Sleep"


# Capabilities that can feed a device-bound overlay or a template.
SOURCE_CAPABILITIES = frozenset(
    {
        Capability.THERMOMETER,
        Capability.HUMIDITY_SENSOR,
        Capability.LOCK,
        Capability.ENTRY_SENSOR,
        Capability.BINARY_SENSOR,
        Capability.SENSORS,
    }
)


class OverlayKind(str, Enum):
    DISABLED = "Disabled"
    STATIC_TEXT = "Text"
    DEVICE_BOUND = "Device"
    TEMPLATE = "Template"
    FACE_DETECTION = "FaceDetection"
    BATTERY_LEVEL = "BatteryLevel"

    @classmethod
    def parse(cls, value: str | None) -> OverlayKind:
        if not value:
            return cls.STATIC_TEXT
        try:
            return cls(value)
        except ValueError:
            return cls.STATIC_TEXT


class ListenerKind(str, Enum):
    NONE = "None"
    SENSORS = "Sensors"
    TEMPERATURE = "Temperature"
    HUMIDITY = "Humidity"
    LOCK = "Lock"
    ENTRY = "Entry"
    BINARY = "Binary"
    FACE = "Face"
    BATTERY = "Battery"
    INTERVAL = "Interval"


class _Disable:
    """Sentinel rendered value that switches an overlay off."""

    _instance: _Disable | None = None

    def __new__(cls) -> _Disable:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DISABLE"


DISABLE = _Disable()

Rendered = str | _Disable | None


class Storage(Protocol):
    def get_item(self, key: str) -> str | None: ...


@dataclass(frozen=True)
class SensorInfo:
    name: str
    unit: str | None = None
    value: Any = None


@dataclass(frozen=True)
class DeviceInfo:
    id: str
    name: str
    interfaces: frozenset[Capability] = frozenset()
    sensors: Mapping[str, SensorInfo] = field(default_factory=dict)
    temperature_unit: str | None = None
    plugin_id: str | None = None

    def has(self, capability: Capability) -> bool:
        return capability in self.interfaces

    def find_sensor(self, sensor_id: str | None, sensor_name: str | None) -> tuple[str, SensorInfo] | None:
        """Locate a sensor by id, falling back to its display name."""
        if sensor_id and sensor_id in self.sensors:
            return sensor_id, self.sensors[sensor_id]
        if sensor_name:
            for candidate_id, sensor in self.sensors.items():
                if sensor.name == sensor_name:
                    return candidate_id, sensor
        return None


@dataclass(frozen=True)
class OverlaySlot:
    """One overlay slot as reported by the camera itself."""

    id: str
    readonly: bool = False
    text: str | None = None


@dataclass(frozen=True)
class PluginTexts:
    lock_text: str = "Locked"
    unlock_text: str = "Unlocked"
    jammed_text: str = "Jammed"
    open_text: str = "Open"
    closed_text: str = "Closed"

    @classmethod
    def from_storage(cls, storage: Storage, defaults: PluginTexts | None = None) -> PluginTexts:
        base = defaults or cls()
        return cls(
            lock_text=storage.get_item(LOCK_TEXT_KEY) or base.lock_text,
            unlock_text=storage.get_item(UNLOCK_TEXT_KEY) or base.unlock_text,
            jammed_text=storage.get_item(JAMMED_TEXT_KEY) or base.jammed_text,
            open_text=storage.get_item(OPEN_TEXT_KEY) or base.open_text,
            closed_text=storage.get_item(CLOSED_TEXT_KEY) or base.closed_text,
        )


@dataclass(frozen=True)
class Overlay:
    id: str
    kind: OverlayKind = OverlayKind.STATIC_TEXT
    text: str | None = None
    source_device_id: str | None = None
    sensor_id: str | None = None
    sensor_name: str | None = None
    unit: str | None = None
    format_expression: str = DEFAULT_FORMAT_EXPRESSION
    max_decimals: int = DEFAULT_MAX_DECIMALS
    max_characters: int | None = None
    template_id: str | None = None
    update_frequency: float | None = None
    current_text: str | None = None

    @classmethod
    def from_storage(cls, storage: Storage, overlay_id: str) -> Overlay:
        keys = overlay_keys(overlay_id)
        max_decimals = parse_int(storage.get_item(keys.max_decimals), DEFAULT_MAX_DECIMALS)
        if max_decimals < 0:
            max_decimals = DEFAULT_MAX_DECIMALS
        max_characters = parse_int(storage.get_item(keys.max_characters), 0) or None
        update_frequency = parse_float(storage.get_item(keys.update_frequency), 0.0) or None
        return cls(
            id=overlay_id,
            kind=OverlayKind.parse(storage.get_item(keys.type)),
            text=storage.get_item(keys.text),
            source_device_id=device_ref_id(storage.get_item(keys.device)),
            sensor_id=storage.get_item(keys.sensor_id) or None,
            sensor_name=storage.get_item(keys.sensor_name) or None,
            unit=storage.get_item(keys.unit) or None,
            format_expression=storage.get_item(keys.regex) or DEFAULT_FORMAT_EXPRESSION,
            max_decimals=max_decimals,
            max_characters=max_characters if max_characters and max_characters > 0 else None,
            template_id=storage.get_item(keys.template) or None,
            update_frequency=update_frequency,
            current_text=storage.get_item(keys.current_text),
        )


@dataclass(frozen=True)
class Template:
    id: str
    source_devices: tuple[str, ...] = ()
    selected_sensors: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    sensor_units: Mapping[str, str] = field(default_factory=dict)
    sensor_decimals: Mapping[str, int] = field(default_factory=dict)
    parser_string: str = ""
    refresh_interval_seconds: float = DEFAULT_REFRESH_SECONDS

    @classmethod
    def from_storage(cls, storage: Storage, template_id: str) -> Template:
        keys = template_keys(template_id)
        devices = string_list(load_json(storage.get_item(keys.devices), []))
        selected: dict[str, tuple[str, ...]] = {}
        units: dict[str, str] = {}
        decimals: dict[str, int] = {}
        for device_id in devices:
            sensors = tuple(string_list(load_json(storage.get_item(keys.sensors_key(device_id)), [])))
            selected[device_id] = sensors
            for sensor_id in sensors:
                unit = storage.get_item(keys.unit_key(sensor_id))
                if unit:
                    units[sensor_id] = unit
                raw_decimals = storage.get_item(keys.max_decimals_key(sensor_id))
                if raw_decimals is not None:
                    decimals[sensor_id] = max(0, parse_int(raw_decimals, DEFAULT_MAX_DECIMALS))
        refresh = parse_float(storage.get_item(keys.refresh_interval), DEFAULT_REFRESH_SECONDS)
        return cls(
            id=template_id,
            source_devices=tuple(devices),
            selected_sensors=selected,
            sensor_units=units,
            sensor_decimals=decimals,
            parser_string=storage.get_item(keys.parser_string) or "",
            refresh_interval_seconds=refresh if refresh > 0 else DEFAULT_REFRESH_SECONDS,
        )


@dataclass(frozen=True)
class ListenerPlan:
    """How one overlay gets its data: event push, interval pull, or nothing."""

    kind: ListenerKind
    device_id: str | None = None
    capability: Capability | None = None
    sensor_id: str | None = None
    interval_seconds: float | None = None
    template_id: str | None = None
    synthetic: Rendered = None


@dataclass(frozen=True)
class SettingDescriptor:
    key: str | None
    title: str
    type: str = "string"
    subgroup: str | None = None
    group: str | None = None
    description: str | None = None
    placeholder: str | None = None
    choices: tuple[str, ...] | None = None
    default_value: Any = None
    value: Any = None
    device_filter: tuple[str, ...] | None = None
    immediate: bool = False
    multiple: bool = False
    combobox: bool = False
    readonly: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"title": self.title, "type": self.type}
        optional = {
            "key": self.key,
            "subgroup": self.subgroup,
            "group": self.group,
            "description": self.description,
            "placeholder": self.placeholder,
            "choices": list(self.choices) if self.choices is not None else None,
            "defaultValue": self.default_value,
            "value": self.value,
            "deviceFilter": list(self.device_filter) if self.device_filter is not None else None,
        }
        payload.update({name: value for name, value in optional.items() if value is not None})
        for flag in ("immediate", "multiple", "combobox", "readonly"):
            if getattr(self, flag):
                payload[flag] = True
        return payload


def string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    result: list[str] = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("id")
        if item:
            result.append(str(item))
    return result
