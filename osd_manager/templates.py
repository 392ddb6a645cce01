"""Multi-device text templates.

A template's parser string references readings as ``{deviceId.sensorId}``.
Every placeholder that can be resolved is replaced (all occurrences); anything
else, including placeholders of devices that have disappeared, is left in the
text untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from .devices import DeviceHub
from .formatting import format_number, format_value, lock_text, open_closed_text
from .models import DEFAULT_MAX_DECIMALS, Capability, DeviceInfo, PluginTexts, Template
from .units import si_to_local
from .utils import coerce_float

LOGGER = logging.getLogger(__name__)

# Placeholder names for devices that report a single measurement per capability.
MEASUREMENT_NAMES: dict[Capability, str] = {
    Capability.THERMOMETER: "temperature",
    Capability.HUMIDITY_SENSOR: "humidity",
    Capability.LOCK: "lock",
    Capability.ENTRY_SENSOR: "entry",
    Capability.BINARY_SENSOR: "binary",
    Capability.BATTERY: "battery",
}


def placeholder(device_id: str, key: str) -> str:
    return f"{{{device_id}.{key}}}"


def substitute(parser_string: str, values: Mapping[str, str]) -> str:
    """Replace every ``{placeholder}`` occurrence whose value is known."""
    text = parser_string
    for name, value in values.items():
        text = text.replace(f"{{{name}}}", value)
    return text


def available_placeholders(template: Template, devices: Callable[[str], DeviceInfo | None]) -> list[str]:
    names: list[str] = []
    for device_id in template.source_devices:
        device = devices(device_id)
        if device is None:
            continue
        for sensor_id in template.selected_sensors.get(device_id, ()):
            names.append(placeholder(device_id, sensor_id))
        for capability, measurement in MEASUREMENT_NAMES.items():
            if device.has(capability):
                names.append(placeholder(device_id, measurement))
    return names


class TemplateRenderer:
    def __init__(
        self,
        hub: DeviceHub,
        texts: Callable[[], PluginTexts],
        logger: logging.Logger | None = None,
    ) -> None:
        self.hub = hub
        self.texts = texts
        self.logger = logger or LOGGER

    async def render(self, template: Template) -> str:
        values: dict[str, str] = {}
        for device_id in template.source_devices:
            device = self.hub.get_device(device_id)
            if device is None:
                self.logger.warning("[templates] Device %s used by template %s not found", device_id, template.id)
                continue
            try:
                values.update(await self._device_values(template, device))
            except Exception as exc:
                self.logger.warning(
                    "[templates] Failed to read %s for template %s: %s", device.name, template.id, exc
                )
        return substitute(template.parser_string, values)

    async def _device_values(self, template: Template, device: DeviceInfo) -> dict[str, str]:
        values: dict[str, str] = {}
        if device.has(Capability.SENSORS):
            for sensor_id in template.selected_sensors.get(device.id, ()):
                reading = await self.hub.read_value(device.id, Capability.SENSORS, sensor_id)
                sensor = device.sensors.get(sensor_id)
                native_unit = _reading_unit(reading) or (sensor.unit if sensor else None)
                unit = template.sensor_units.get(sensor_id) or native_unit
                text = _numeric_text(_reading_value(reading), unit, template.sensor_decimals.get(sensor_id))
                if text is not None:
                    values[f"{device.id}.{sensor_id}"] = text

        texts = self.texts()
        for capability, measurement in MEASUREMENT_NAMES.items():
            if not device.has(capability):
                continue
            reading = await self.hub.read_value(device.id, capability)
            if capability is Capability.THERMOMETER:
                text = _numeric_text(reading, device.temperature_unit, None)
            elif capability in (Capability.HUMIDITY_SENSOR, Capability.BATTERY):
                text = _numeric_text(reading, None, None)
            elif capability is Capability.LOCK:
                text = lock_text(reading, texts)
            else:
                text = open_closed_text(reading, texts)
            if text is not None:
                values[f"{device.id}.{measurement}"] = text
        return values


def _reading_value(reading: Any) -> Any:
    if isinstance(reading, Mapping):
        return reading.get("value")
    return reading


def _reading_unit(reading: Any) -> str | None:
    if isinstance(reading, Mapping):
        unit = reading.get("unit")
        return str(unit) if unit else None
    return None


def _numeric_text(value: Any, unit: str | None, decimals: int | None) -> str | None:
    number = coerce_float(value)
    if number is None:
        return str(value) if value not in (None, "") else None
    local = si_to_local(number, unit)
    return format_number(format_value(local, DEFAULT_MAX_DECIMALS if decimals is None else decimals))
