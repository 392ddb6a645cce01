"""Tests for value formatting (osd_manager/formatting.py)."""

from __future__ import annotations

import pytest

from osd_manager.formatting import (
    apply_expression,
    face_label,
    format_number,
    format_value,
    limit_text,
    lock_text,
    open_closed_text,
    render_reading,
)
from osd_manager.models import Capability, DeviceInfo, ListenerKind, Overlay, OverlayKind, PluginTexts


@pytest.fixture
def texts():
    return PluginTexts(
        lock_text="Closed tight",
        unlock_text="Open sesame",
        jammed_text="Stuck",
        open_text="Ajar",
        closed_text="Shut",
    )


def device_overlay(**kwargs) -> Overlay:
    return Overlay(id="1", kind=OverlayKind.DEVICE_BOUND, **kwargs)


class TestFormatValue:
    """Floor rounding to a number of decimals."""

    def test_floors_instead_of_rounding(self):
        assert format_value(2.999, 2) == 2.99

    def test_exact_decimal_values_are_kept(self):
        """0.29 must not become 0.28 because of binary float error."""
        assert format_value(0.29, 2) == 0.29
        assert format_value(1.1, 1) == 1.1

    def test_zero_decimals(self):
        assert format_value(21.96, 0) == 21.0

    def test_negative_values_floor_downwards(self):
        assert format_value(-2.55, 1) == -2.6

    def test_integers_unchanged(self):
        assert format_value(55, 1) == 55.0

    def test_numeric_strings_are_parsed(self):
        assert format_value("21.37", 1) == 21.3

    @pytest.mark.parametrize("value", [None, "n/a", True])
    def test_non_numeric_values_format_as_zero(self, value):
        assert format_value(value, 2) == 0.0

    def test_negative_precision_treated_as_zero(self):
        assert format_value(3.7, -1) == 3.0


class TestFormatNumber:
    def test_integral_floats_drop_fraction(self):
        assert format_number(55.0) == "55"

    def test_fraction_kept(self):
        assert format_number(21.3) == "21.3"


class TestLimitText:
    """Truncation with an ellipsis."""

    def test_truncates_to_max_characters(self):
        """The first max - 3 characters plus the ellipsis, so the result is exactly the limit.

        Keeping one more character ("Temperat...") would overrun the limit by one.
        """
        result = limit_text("Temperature: 21.5C", 10)
        assert result == "Tempera..."
        assert len(result) == 10

    def test_short_text_untouched(self):
        assert limit_text("21.5C", 10) == "21.5C"

    def test_exact_length_untouched(self):
        assert limit_text("0123456789", 10) == "0123456789"

    @pytest.mark.parametrize("limit", [None, 0, -4])
    def test_no_limit(self, limit):
        assert limit_text("Temperature: 21.5C", limit) == "Temperature: 21.5C"

    def test_tiny_limit_keeps_only_ellipsis(self):
        assert limit_text("Temperature", 2) == "..."


class TestApplyExpression:
    def test_default_expression(self):
        assert apply_expression(None, 21.5, "°C") == "21.5 °C"

    def test_custom_expression(self):
        assert apply_expression("Temp: ${value}${unit}", 21.0, "°F") == "Temp: 21°F"

    def test_only_first_occurrence_replaced(self):
        assert apply_expression("${value}/${value}", "a", None) == "a/${value}"

    def test_missing_unit_renders_empty(self):
        assert apply_expression("${value} ${unit}", "Open", None) == "Open "


class TestStateMapping:
    def test_lock_states(self, texts):
        assert lock_text("Locked", texts) == "Closed tight"
        assert lock_text("unlocked", texts) == "Open sesame"
        assert lock_text("jammed", texts) == "Stuck"

    def test_unknown_lock_state(self, texts):
        assert lock_text("tampered", texts) is None
        assert lock_text(None, texts) is None

    def test_open_closed_polarity(self, texts):
        assert open_closed_text(True, texts) == "Ajar"
        assert open_closed_text(False, texts) == "Shut"

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("on", "Ajar"), ("open", "Ajar"), ("off", "Shut"), ("closed", "Shut"), ("unknown", None)],
    )
    def test_open_closed_strings(self, texts, raw, expected):
        assert open_closed_text(raw, texts) == expected

    def test_face_label_picks_first_face(self):
        detections = {
            "detections": [
                {"className": "person", "label": "Someone"},
                {"className": "face", "label": "Alice"},
                {"className": "face", "label": "Bob"},
            ]
        }
        assert face_label(detections) == "Alice"

    def test_face_label_without_faces(self):
        assert face_label({"detections": [{"className": "car"}]}) is None
        assert face_label(None) is None


class TestRenderReading:
    """Raw reading -> display text per listener kind."""

    def test_lock_uses_configured_phrases(self, texts):
        overlay = device_overlay(format_expression="${value}")
        assert render_reading(ListenerKind.LOCK, "Locked", overlay, texts) == "Closed tight"
        assert render_reading(ListenerKind.LOCK, "Jammed", overlay, texts) == "Stuck"

    def test_temperature_in_celsius_by_default(self, texts):
        overlay = device_overlay()
        assert render_reading(ListenerKind.TEMPERATURE, 21.37, overlay, texts) == "21.3 °C"

    def test_temperature_follows_source_unit(self, texts):
        source = DeviceInfo(
            id="t", name="Thermo", interfaces=frozenset({Capability.THERMOMETER}), temperature_unit="°F"
        )
        overlay = device_overlay()
        assert render_reading(ListenerKind.TEMPERATURE, 20.0, overlay, texts, source) == "68 °F"

    def test_overlay_unit_overrides_source_unit(self, texts):
        source = DeviceInfo(id="t", name="Thermo", temperature_unit="°F")
        overlay = device_overlay(unit="K", max_decimals=2)
        assert render_reading(ListenerKind.TEMPERATURE, 0.0, overlay, texts, source) == "273.15 K"

    def test_humidity_and_battery_use_percent(self, texts):
        overlay = device_overlay(max_decimals=0)
        assert render_reading(ListenerKind.HUMIDITY, 55.8, overlay, texts) == "55 %"
        assert render_reading(ListenerKind.BATTERY, 80, overlay, texts) == "80 %"

    def test_entry_and_binary(self, texts):
        overlay = device_overlay(format_expression="Door: ${value}")
        assert render_reading(ListenerKind.ENTRY, True, overlay, texts) == "Door: Ajar"
        assert render_reading(ListenerKind.BINARY, False, overlay, texts) == "Door: Shut"

    def test_sensor_reading_uses_native_unit(self, texts):
        overlay = device_overlay(max_decimals=1)
        data = {"value": 101325.0, "unit": "Pa"}
        assert render_reading(ListenerKind.SENSORS, data, overlay, texts) == "101325 Pa"

    def test_sensor_reading_converted_to_overlay_unit(self, texts):
        overlay = device_overlay(unit="hPa", max_decimals=1)
        data = {"value": 101325.0, "unit": "Pa"}
        assert render_reading(ListenerKind.SENSORS, data, overlay, texts) == "1013.2 hPa"

    def test_face(self, texts):
        overlay = Overlay(id="1", kind=OverlayKind.FACE_DETECTION, format_expression="Hi ${value}")
        data = {"detections": [{"className": "face", "label": "Alice"}]}
        assert render_reading(ListenerKind.FACE, data, overlay, texts) == "Hi Alice"

    def test_nothing_to_render(self, texts):
        overlay = device_overlay()
        assert render_reading(ListenerKind.LOCK, "weird", overlay, texts) is None
        assert render_reading(ListenerKind.HUMIDITY, None, overlay, texts) is None
        assert render_reading(ListenerKind.FACE, {"detections": []}, overlay, texts) is None
