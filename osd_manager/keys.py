"""Storage key builders for overlay and template settings."""

from __future__ import annotations

from dataclasses import dataclass

PLUGIN_SCOPE = "plugin"
TEMPLATES_KEY = "templates"
DUPLICATE_FROM_DEVICE_KEY = "duplicateFromDevice"

LOCK_TEXT_KEY = "lockText"
UNLOCK_TEXT_KEY = "unlockText"
JAMMED_TEXT_KEY = "jammedText"
OPEN_TEXT_KEY = "openText"
CLOSED_TEXT_KEY = "closedText"


@dataclass(frozen=True)
class OverlayKeys:
    current_text: str
    text: str
    type: str
    regex: str
    device: str
    template: str
    max_decimals: str
    max_characters: str
    sensor_id: str
    sensor_name: str
    unit: str
    update_frequency: str


def overlay_keys(overlay_id: str) -> OverlayKeys:
    prefix = f"overlay:{overlay_id}"
    return OverlayKeys(
        current_text=f"{prefix}:currentText",
        text=f"{prefix}:text",
        type=f"{prefix}:type",
        regex=f"{prefix}:regex",
        device=f"{prefix}:device",
        template=f"{prefix}:template",
        max_decimals=f"{prefix}:maxDecimals",
        max_characters=f"{prefix}:maxCharacters",
        sensor_id=f"{prefix}:sensorId",
        sensor_name=f"{prefix}:sensorName",
        unit=f"{prefix}:unit",
        update_frequency=f"{prefix}:updateFrequency",
    )


@dataclass(frozen=True)
class TemplateKeys:
    template_id: str
    group: str
    devices: str
    parser_string: str
    refresh_interval: str

    def sensors_key(self, device_id: str) -> str:
        return f"template:{self.template_id}:{device_id}:sensors"

    def unit_key(self, sensor_id: str) -> str:
        return f"template:{self.template_id}:{sensor_id}:unit"

    def max_decimals_key(self, sensor_id: str) -> str:
        return f"template:{self.template_id}:{sensor_id}:maxDecimals"


def template_keys(template_id: str) -> TemplateKeys:
    prefix = f"template:{template_id}"
    return TemplateKeys(
        template_id=template_id,
        group=f"Template: {template_id}",
        devices=f"{prefix}:devices",
        parser_string=f"{prefix}:parserString",
        refresh_interval=f"{prefix}:refreshInterval",
    )


def overlay_id_from_key(key: str) -> str | None:
    """Return the overlay id encoded in an ``overlay:<id>:<field>`` key."""
    if not key.startswith("overlay:"):
        return None
    body = key[len("overlay:") :]
    overlay_id, sep, _field = body.rpartition(":")
    if not sep or not overlay_id:
        return None
    return overlay_id
