"""Settings descriptors derived from overlay configuration.

Every function here is pure: the descriptors shown for an overlay are
recomputed from its current configuration and the capabilities of the bound
device whenever they are needed, never patched in place.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Sequence

from .keys import (
    CLOSED_TEXT_KEY,
    DUPLICATE_FROM_DEVICE_KEY,
    JAMMED_TEXT_KEY,
    LOCK_TEXT_KEY,
    OPEN_TEXT_KEY,
    TEMPLATES_KEY,
    UNLOCK_TEXT_KEY,
    overlay_keys,
    template_keys,
)
from .models import (
    DEFAULT_FORMAT_EXPRESSION,
    DEFAULT_MAX_DECIMALS,
    DEFAULT_REFRESH_SECONDS,
    SOURCE_CAPABILITIES,
    Capability,
    DeviceInfo,
    Overlay,
    OverlayKind,
    OverlaySlot,
    PluginTexts,
    SettingDescriptor,
    Template,
)
from .templates import available_placeholders
from .units import get_units

_WIDGET_PREFIX_RE = re.compile(r"^table\.VideoWidget\[\d+\]\.")

SOURCE_DEVICE_FILTER = tuple(sorted(capability.value for capability in SOURCE_CAPABILITIES))
CAMERA_DEVICE_FILTER = (Capability.VIDEO_TEXT_OVERLAYS.value,)


def friendly_title(overlay_id: str) -> str:
    """Human readable overlay name (Amcrest style ids lose their table prefix)."""
    if _WIDGET_PREFIX_RE.match(overlay_id):
        return _WIDGET_PREFIX_RE.sub("", overlay_id)
    return f"Overlay {overlay_id}"


def overlay_settings(
    slot: OverlaySlot,
    overlay: Overlay,
    source: DeviceInfo | None,
    template_ids: Sequence[str],
) -> list[SettingDescriptor]:
    title = friendly_title(slot.id)
    keys = overlay_keys(slot.id)

    if slot.readonly:
        return [
            SettingDescriptor(key=None, title="Readonly", type="boolean", subgroup=title, value=True, readonly=True)
        ]

    settings = [
        SettingDescriptor(
            key=keys.type,
            title="Overlay Type",
            subgroup=title,
            choices=tuple(kind.value for kind in OverlayKind),
            default_value=OverlayKind.STATIC_TEXT.value,
            value=overlay.kind.value,
            immediate=True,
        )
    ]
    kind = overlay.kind
    if kind is OverlayKind.DISABLED:
        return settings

    expression = SettingDescriptor(
        key=keys.regex,
        title="Value Regex",
        description="Expression to generate the text. ${value} contains the value and ${unit} the unit",
        subgroup=title,
        placeholder=DEFAULT_FORMAT_EXPRESSION,
        default_value=DEFAULT_FORMAT_EXPRESSION,
        value=overlay.format_expression,
    )
    precision = SettingDescriptor(
        key=keys.max_decimals,
        title="Max Decimals",
        type="number",
        subgroup=title,
        default_value=DEFAULT_MAX_DECIMALS,
        value=overlay.max_decimals,
    )
    max_characters = SettingDescriptor(
        key=keys.max_characters,
        title="Max Characters",
        description="Longer text is cut and ends with an ellipsis. Leave empty for no limit",
        type="number",
        subgroup=title,
        value=overlay.max_characters,
    )

    if kind is OverlayKind.TEMPLATE:
        settings.append(
            SettingDescriptor(
                key=keys.template,
                title="Template",
                subgroup=title,
                choices=tuple(template_ids),
                value=overlay.template_id,
                immediate=True,
            )
        )
        settings.append(
            SettingDescriptor(
                key=keys.update_frequency,
                title="Update frequency in seconds",
                type="number",
                subgroup=title,
                default_value=DEFAULT_REFRESH_SECONDS,
                value=overlay.update_frequency,
            )
        )
    elif kind is OverlayKind.STATIC_TEXT:
        settings.append(SettingDescriptor(key=keys.text, title="Text", subgroup=title, value=overlay.text))
    elif kind is OverlayKind.DEVICE_BOUND:
        settings.append(
            SettingDescriptor(
                key=keys.device,
                title="Device",
                type="device",
                subgroup=title,
                device_filter=SOURCE_DEVICE_FILTER,
                value=overlay.source_device_id,
                immediate=True,
            )
        )
        settings.extend(_sensor_settings(keys.sensor_name, keys.unit, title, overlay, source))
        settings.extend([expression, precision])
    elif kind is OverlayKind.FACE_DETECTION:
        settings.append(expression)
    elif kind is OverlayKind.BATTERY_LEVEL:
        settings.extend([expression, precision])

    settings.append(max_characters)
    return settings


def _sensor_settings(
    sensor_name_key: str,
    unit_key: str,
    title: str,
    overlay: Overlay,
    source: DeviceInfo | None,
) -> list[SettingDescriptor]:
    if source is None:
        return []
    settings: list[SettingDescriptor] = []
    if source.has(Capability.SENSORS):
        names = tuple(sorted(sensor.name for sensor in source.sensors.values()))
        settings.append(
            SettingDescriptor(
                key=sensor_name_key,
                title="Sensor",
                subgroup=title,
                choices=names,
                value=overlay.sensor_name,
                immediate=True,
            )
        )
        found = source.find_sensor(overlay.sensor_id, overlay.sensor_name)
        if found is not None and found[1].unit:
            settings.append(_unit_setting(unit_key, title, found[1].unit, overlay.unit))
    elif source.has(Capability.THERMOMETER):
        settings.append(_unit_setting(unit_key, title, source.temperature_unit or "°C", overlay.unit))
    return settings


def _unit_setting(key: str, title: str, native_unit: str, selected: str | None) -> SettingDescriptor:
    units = get_units(native_unit)
    return SettingDescriptor(
        key=key,
        title="Unit",
        subgroup=title,
        choices=tuple(units),
        default_value=units[0] if units else None,
        value=selected,
        immediate=True,
    )


def device_settings(
    slots: Iterable[OverlaySlot],
    overlay_for: Callable[[str], Overlay],
    devices: Callable[[str], DeviceInfo | None],
    template_ids: Sequence[str],
) -> list[SettingDescriptor]:
    """All descriptors of one camera: duplicate action plus one block per overlay slot."""
    settings = [
        SettingDescriptor(
            key=DUPLICATE_FROM_DEVICE_KEY,
            title="Duplicate from device",
            description="Duplicate OSD information from another devices enabled on the plugin",
            type="device",
            device_filter=CAMERA_DEVICE_FILTER,
            immediate=True,
        )
    ]
    for slot in slots:
        overlay = overlay_for(slot.id)
        source = devices(overlay.source_device_id) if overlay.source_device_id else None
        settings.extend(overlay_settings(slot, overlay, source, template_ids))
    return settings


def template_settings(template: Template, devices: Callable[[str], DeviceInfo | None]) -> list[SettingDescriptor]:
    keys = template_keys(template.id)
    group = keys.group
    settings = [
        SettingDescriptor(
            key=keys.devices,
            title="Device",
            type="device",
            group=group,
            device_filter=SOURCE_DEVICE_FILTER,
            value=list(template.source_devices),
            multiple=True,
            immediate=True,
        )
    ]
    for device_id in template.source_devices:
        device = devices(device_id)
        if device is None or not device.has(Capability.SENSORS):
            continue
        settings.append(
            SettingDescriptor(
                key=keys.sensors_key(device_id),
                title=f'Available sensors on device "{device.name}"',
                description=(
                    "Select the sensors to make available on the template. "
                    f'Access it on the parser with "{{{device_id}.sensorId}}"'
                ),
                group=group,
                choices=tuple(device.sensors),
                value=list(template.selected_sensors.get(device_id, ())),
                immediate=True,
                combobox=True,
                multiple=True,
            )
        )
        for sensor_id in template.selected_sensors.get(device_id, ()):
            sensor = device.sensors.get(sensor_id)
            if sensor is not None and sensor.unit:
                units = get_units(sensor.unit)
                settings.append(
                    SettingDescriptor(
                        key=keys.unit_key(sensor_id),
                        title="Unit",
                        subgroup=sensor_id,
                        group=group,
                        choices=tuple(units),
                        default_value=units[0],
                        value=template.sensor_units.get(sensor_id),
                        immediate=True,
                    )
                )
            settings.append(
                SettingDescriptor(
                    key=keys.max_decimals_key(sensor_id),
                    title="Max Decimals",
                    type="number",
                    subgroup=sensor_id,
                    group=group,
                    default_value=DEFAULT_MAX_DECIMALS,
                    value=template.sensor_decimals.get(sensor_id),
                )
            )

    placeholders = available_placeholders(template, devices)
    settings.append(
        SettingDescriptor(
            key=keys.parser_string,
            title="Parser",
            description=f"String used to generate the content. Available variables: {', '.join(placeholders)}",
            type="textarea",
            group=group,
            value=template.parser_string,
        )
    )
    settings.append(
        SettingDescriptor(
            key=keys.refresh_interval,
            title="Refresh interval in seconds",
            type="number",
            group=group,
            default_value=DEFAULT_REFRESH_SECONDS,
            value=template.refresh_interval_seconds,
        )
    )
    return settings


def plugin_settings(
    texts: PluginTexts,
    templates: Sequence[Template],
    devices: Callable[[str], DeviceInfo | None],
) -> list[SettingDescriptor]:
    settings = [
        SettingDescriptor(key=LOCK_TEXT_KEY, title="Text to show for Locked state", value=texts.lock_text),
        SettingDescriptor(key=UNLOCK_TEXT_KEY, title="Text to show for Unlocked state", value=texts.unlock_text),
        SettingDescriptor(key=JAMMED_TEXT_KEY, title="Text to show for Jammed state", value=texts.jammed_text),
        SettingDescriptor(key=OPEN_TEXT_KEY, title="Text to show for Open state", value=texts.open_text),
        SettingDescriptor(key=CLOSED_TEXT_KEY, title="Text to show for Closed state", value=texts.closed_text),
        SettingDescriptor(
            key=TEMPLATES_KEY,
            title="Templates",
            description="Define templates from multiple devices",
            value=[template.id for template in templates],
            choices=(),
            default_value=[],
            multiple=True,
            combobox=True,
        ),
    ]
    for template in templates:
        settings.extend(template_settings(template, devices))
    return settings
