"""
OSD manager - text overlays for cameras driven by device readings

Keeps the on-screen text of cameras in sync with the devices they are bound to.
Each camera gets its own reconciler that rebuilds its subscriptions from the
stored overlay configuration and pushes fresh text whenever a source changes.

Core modules:
- reconciler: per-camera reconciliation loop and subscription lifecycle
- resolver: decides the data source and update mechanism of one overlay
- formatting / units: value rounding, unit conversion, text truncation
- templates: multi-device ``{deviceId.sensorId}`` text templates
- sink: overlay writes back to the camera
- manager / settings_bridge: plugin settings, templates and the MQTT settings surface
- mqtt_devices / home_assistant: device adapters (MQTT bus, Home Assistant entities)
"""

__version__ = "0.1.0"
