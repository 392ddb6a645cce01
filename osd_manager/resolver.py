"""
Overlay resolution: which data source and update mechanism an overlay uses

Given one overlay's configuration and the capabilities of the device it is bound
to, ``resolve`` returns a ``ListenerPlan``:

- Device-bound overlays subscribe to an event stream on the source device. The
  capability is chosen by a fixed priority: selected multi-sensor reading,
  thermometer, humidity, lock, entry, generic binary state.
- Face detection and battery overlays subscribe to the owning camera.
- Template overlays are pulled on an interval.
- Static text and disabled overlays render once from configuration.

Missing or unusable sources resolve to ``ListenerKind.NONE`` without synthetic
data so the overlay keeps whatever it last showed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from .models import (
    DEFAULT_REFRESH_SECONDS,
    DISABLE,
    Capability,
    DeviceInfo,
    ListenerKind,
    ListenerPlan,
    Overlay,
    OverlayKind,
    Template,
)

LOGGER = logging.getLogger(__name__)

CapabilitiesOf = Callable[[str], DeviceInfo | None]
TemplateLookup = Callable[[str], Template | None]

# First match wins, after the multi-sensor check.
_DEVICE_PRIORITY: tuple[tuple[Capability, ListenerKind], ...] = (
    (Capability.THERMOMETER, ListenerKind.TEMPERATURE),
    (Capability.HUMIDITY_SENSOR, ListenerKind.HUMIDITY),
    (Capability.LOCK, ListenerKind.LOCK),
    (Capability.ENTRY_SENSOR, ListenerKind.ENTRY),
    (Capability.BINARY_SENSOR, ListenerKind.BINARY),
)

NO_PLAN = ListenerPlan(kind=ListenerKind.NONE)


def resolve(
    overlay: Overlay,
    owner_id: str,
    capabilities_of: CapabilitiesOf,
    templates: TemplateLookup | None = None,
    logger: logging.Logger | None = None,
) -> ListenerPlan:
    log = logger or LOGGER
    kind = overlay.kind

    if kind is OverlayKind.DISABLED:
        return ListenerPlan(kind=ListenerKind.NONE, synthetic=DISABLE)
    if kind is OverlayKind.STATIC_TEXT:
        return ListenerPlan(kind=ListenerKind.NONE, synthetic=overlay.text or None)
    if kind is OverlayKind.FACE_DETECTION:
        return ListenerPlan(kind=ListenerKind.FACE, device_id=owner_id, capability=Capability.OBJECT_DETECTOR)
    if kind is OverlayKind.BATTERY_LEVEL:
        return ListenerPlan(kind=ListenerKind.BATTERY, device_id=owner_id, capability=Capability.BATTERY)
    if kind is OverlayKind.TEMPLATE:
        return _resolve_template(overlay, owner_id, templates, log)
    return _resolve_device(overlay, capabilities_of, log)


def _resolve_device(overlay: Overlay, capabilities_of: CapabilitiesOf, log: logging.Logger) -> ListenerPlan:
    device_id = overlay.source_device_id
    if not device_id:
        log.debug("[resolver] Overlay %s has no source device selected", overlay.id)
        return NO_PLAN
    device = capabilities_of(device_id)
    if device is None:
        log.warning("[resolver] Source device %s for overlay %s not found", device_id, overlay.id)
        return NO_PLAN

    if device.has(Capability.SENSORS) and (overlay.sensor_id or overlay.sensor_name):
        found = device.find_sensor(overlay.sensor_id, overlay.sensor_name)
        if found is not None:
            sensor_id, _sensor = found
            return ListenerPlan(
                kind=ListenerKind.SENSORS,
                device_id=device_id,
                capability=Capability.SENSORS,
                sensor_id=sensor_id,
            )
        log.warning(
            "[resolver] Sensor %s no longer exists on %s (overlay %s)",
            overlay.sensor_id or overlay.sensor_name,
            device.name,
            overlay.id,
        )

    for capability, listener_kind in _DEVICE_PRIORITY:
        if device.has(capability):
            return ListenerPlan(kind=listener_kind, device_id=device_id, capability=capability)

    log.warning("[resolver] Device %s exposes no supported capability for overlay %s", device.name, overlay.id)
    return NO_PLAN


def _resolve_template(
    overlay: Overlay,
    owner_id: str,
    templates: TemplateLookup | None,
    log: logging.Logger,
) -> ListenerPlan:
    if not overlay.template_id:
        log.warning("[resolver] Template overlay %s has no template selected", overlay.id)
        return NO_PLAN
    template = templates(overlay.template_id) if templates else None
    interval = overlay.update_frequency
    if not interval or interval <= 0:
        interval = template.refresh_interval_seconds if template else DEFAULT_REFRESH_SECONDS
    if interval <= 0:
        interval = DEFAULT_REFRESH_SECONDS
    return ListenerPlan(
        kind=ListenerKind.INTERVAL,
        device_id=owner_id,
        interval_seconds=interval,
        template_id=overlay.template_id,
    )
