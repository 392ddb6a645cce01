"""
Unit conversion between SI base units and their local display variants

Each measurement family has one SI base unit; every other unit in the family is
described by a linear transform ``local = si * factor + offset``. Values coming
from devices are in the base unit (Celsius for temperature), and the overlay
configuration picks the unit used for display.

Unknown units pass through unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class _UnitTransform:
    family: str
    factor: float
    offset: float = 0.0


_FAMILIES: dict[str, dict[str, _UnitTransform]] = {}


def _register(family: str, units: dict[str, tuple[float, float]]) -> None:
    _FAMILIES[family] = {unit: _UnitTransform(family, factor, offset) for unit, (factor, offset) in units.items()}


_register(
    "temperature",
    {
        "°C": (1.0, 0.0),
        "°F": (9 / 5, 32.0),
        "K": (1.0, 273.15),
    },
)
_register("humidity", {"%": (1.0, 0.0)})
_register(
    "pressure",
    {
        "Pa": (1.0, 0.0),
        "hPa": (0.01, 0.0),
        "kPa": (0.001, 0.0),
        "mbar": (0.01, 0.0),
        "bar": (0.00001, 0.0),
        "psi": (1 / 6894.757293168, 0.0),
        "inHg": (1 / 3386.389, 0.0),
        "mmHg": (1 / 133.322387415, 0.0),
    },
)
_register(
    "speed",
    {
        "m/s": (1.0, 0.0),
        "km/h": (3.6, 0.0),
        "mph": (1 / 0.44704, 0.0),
        "kn": (1 / 0.514444, 0.0),
    },
)
_register(
    "length",
    {
        "m": (1.0, 0.0),
        "km": (0.001, 0.0),
        "cm": (100.0, 0.0),
        "mm": (1000.0, 0.0),
        "in": (1 / 0.0254, 0.0),
        "ft": (1 / 0.3048, 0.0),
        "mi": (1 / 1609.344, 0.0),
    },
)
_register("power", {"W": (1.0, 0.0), "kW": (0.001, 0.0)})
_register("energy", {"Wh": (1.0, 0.0), "kWh": (0.001, 0.0), "MWh": (0.000001, 0.0)})

# Spellings devices commonly report for the same unit.
_ALIASES: dict[str, str] = {
    "C": "°C",
    "c": "°C",
    "celsius": "°C",
    "F": "°F",
    "f": "°F",
    "fahrenheit": "°F",
    "kelvin": "K",
    "ºC": "°C",
    "ºF": "°F",
    "kmh": "km/h",
    "knots": "kn",
}


def normalize_unit(unit: str | None) -> str | None:
    """Map common unit spellings to the canonical unit symbol."""
    if unit is None:
        return None
    stripped = unit.strip()
    return _ALIASES.get(stripped, stripped)


def _lookup(unit: str | None) -> _UnitTransform | None:
    canonical = normalize_unit(unit)
    if not canonical:
        return None
    for units in _FAMILIES.values():
        transform = units.get(canonical)
        if transform is not None:
            return transform
    return None


def unit_family(unit: str | None) -> str | None:
    """Return the measurement family a unit belongs to, if known."""
    transform = _lookup(unit)
    return transform.family if transform else None


def get_units(unit: str | None) -> list[str]:
    """Return every unit sharing a family with ``unit`` (base unit first)."""
    transform = _lookup(unit)
    if transform is None:
        return [unit] if unit else []
    return list(_FAMILIES[transform.family])


def si_to_local(value: float | None, unit: str | None) -> float | None:
    """Convert a value expressed in its family's SI base unit to ``unit``."""
    if value is None:
        return None
    transform = _lookup(unit)
    if transform is None:
        return value
    return value * transform.factor + transform.offset


def local_to_si(value: float | None, unit: str | None) -> float | None:
    """Convert a value expressed in ``unit`` back to its family's SI base unit."""
    if value is None:
        return None
    transform = _lookup(unit)
    if transform is None:
        return value
    return (value - transform.offset) / transform.factor
