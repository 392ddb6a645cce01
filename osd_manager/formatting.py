"""
Value formatting for overlay text

Pure helpers that turn raw device readings into display text:
- format_value: floor a number to N decimals (2.999 -> 2.99, never 3.0)
- format_number: print numbers the way a person expects (55.0 -> "55")
- limit_text: cap rendered text with an ellipsis
- apply_expression: substitute ${value} / ${unit} in a format expression
- lock_text / open_closed_text / face_label: map states to configured phrases
- render_reading: the full raw value -> display text pipeline per listener kind
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any

from .models import (
    DEFAULT_FORMAT_EXPRESSION,
    DeviceInfo,
    ListenerKind,
    Overlay,
    PluginTexts,
)
from .units import si_to_local
from .utils import coerce_float

ELLIPSIS = "..."
DEFAULT_TEMPERATURE_UNIT = "°C"


def format_value(value: Any, max_decimals: int) -> float:
    """Floor ``value`` to ``max_decimals`` places: floor(v * 10^n) / 10^n.

    The computation runs on the decimal form of the number so that values such
    as 0.29 are not pushed down by binary float error.
    """
    number = coerce_float(value)
    if number is None:
        number = 0.0
    decimals = max(0, int(max_decimals))
    try:
        quantum = Decimal(1).scaleb(-decimals)
        floored = Decimal(repr(number)).quantize(quantum, rounding=ROUND_FLOOR)
    except InvalidOperation:
        return number
    return float(floored)


def format_number(value: float) -> str:
    if value != value or value in (float("inf"), float("-inf")):
        return str(value)
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def limit_text(text: str, max_characters: int | None) -> str:
    """Truncate ``text`` to ``max_characters`` including a trailing ellipsis."""
    if not max_characters or max_characters <= 0:
        return text
    if len(text) <= max_characters:
        return text
    keep = max(0, max_characters - len(ELLIPSIS))
    return text[:keep] + ELLIPSIS


def apply_expression(expression: str | None, value: Any, unit: str | None) -> str:
    template = expression or DEFAULT_FORMAT_EXPRESSION
    if isinstance(value, float):
        value_text = format_number(value)
    elif value is None:
        value_text = ""
    else:
        value_text = str(value)
    return template.replace("${value}", value_text, 1).replace("${unit}", unit or "", 1)


def lock_text(state: Any, texts: PluginTexts) -> str | None:
    if state is None:
        return None
    normalized = str(state).strip().lower()
    if normalized == "locked":
        return texts.lock_text
    if normalized == "unlocked":
        return texts.unlock_text
    if normalized == "jammed":
        return texts.jammed_text
    return None


def open_closed_text(state: Any, texts: PluginTexts) -> str | None:
    """Map an entry/binary reading to text: truthy is open, falsy is closed."""
    if state is None:
        return None
    if isinstance(state, str):
        normalized = state.strip().lower()
        if normalized in {"on", "open", "true", "1"}:
            return texts.open_text
        if normalized in {"off", "closed", "false", "0"}:
            return texts.closed_text
        return None
    return texts.open_text if state else texts.closed_text


def face_label(detections: Any) -> str | None:
    """Return the label of the first detected face, if any."""
    if isinstance(detections, Mapping):
        detections = detections.get("detections")
    if not isinstance(detections, list):
        return None
    for detection in detections:
        if isinstance(detection, Mapping) and detection.get("className") == "face":
            label = detection.get("label")
            return str(label) if label else None
    return None


def render_reading(
    kind: ListenerKind,
    data: Any,
    overlay: Overlay,
    texts: PluginTexts,
    source: DeviceInfo | None = None,
) -> str | None:
    """Turn a raw reading into overlay text, or None when nothing should be shown."""
    value: Any = None
    unit: str | None = None

    if kind is ListenerKind.FACE:
        value = face_label(data)
    elif kind is ListenerKind.TEMPERATURE:
        unit = overlay.unit or (source.temperature_unit if source else None) or DEFAULT_TEMPERATURE_UNIT
        reading = coerce_float(data)
        if reading is not None:
            value = format_value(si_to_local(reading, unit), overlay.max_decimals)
    elif kind in (ListenerKind.HUMIDITY, ListenerKind.BATTERY):
        reading = coerce_float(data)
        if reading is not None:
            value = format_value(reading, overlay.max_decimals)
            unit = "%"
    elif kind is ListenerKind.LOCK:
        value = lock_text(data, texts)
    elif kind in (ListenerKind.ENTRY, ListenerKind.BINARY):
        value = open_closed_text(data, texts)
    elif kind is ListenerKind.SENSORS:
        raw_value = data.get("value") if isinstance(data, Mapping) else data
        native_unit = data.get("unit") if isinstance(data, Mapping) else None
        unit = overlay.unit or native_unit
        reading = coerce_float(raw_value)
        if reading is not None:
            value = format_value(si_to_local(reading, unit), overlay.max_decimals)
        elif raw_value is not None:
            value = str(raw_value)

    if value is None or value == "":
        return None
    return apply_expression(overlay.format_expression, value, unit)
