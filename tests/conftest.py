"""Shared test fixtures and configuration for the OSD manager test suite.

This module provides reusable fixtures for common test scenarios including:
- An in-memory DeviceHub double with recorded overlay writes
- Settings store scopes without a backing file
- MQTT client mocking
- Configuration objects
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from unittest.mock import AsyncMock, Mock

import httpx
import paho.mqtt.client as mqtt
import pytest

from osd_manager.config import HomeAssistantConfig, MqttConfig
from osd_manager.devices import DeviceNotFoundError, ListenerRegistration, OsdError, ValueCallback, dispatch
from osd_manager.models import Capability, DeviceInfo, OverlaySlot, SensorInfo
from osd_manager.settings_store import SettingsStore

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing.

    Returns a Mock with spec=logging.Logger to ensure only valid
    logger methods can be called.
    """
    return Mock(spec=logging.Logger)


# ============================================================================
# Device Hub Fixtures
# ============================================================================


class FakeDeviceHub:
    """In-memory DeviceHub recording every overlay write.

    ``writes`` holds ``(device_id, overlay_id, text)`` tuples; a cleared overlay
    is recorded with ``text=None``.
    """

    def __init__(self) -> None:
        self.devices: dict[str, DeviceInfo] = {}
        self.slots: dict[str, list[OverlaySlot]] = {}
        self.values: dict[tuple[str, Capability, str | None], Any] = {}
        self.sleeping: set[str] = set()
        self.listeners: dict[tuple[str, Capability], list[ValueCallback]] = {}
        self.writes: list[tuple[str, str, str | None]] = []
        self.fail_writes: set[str] = set()
        self.list_overlays_calls = 0
        self.gate: asyncio.Event | None = None

    def add_device(
        self,
        device_id: str,
        *capabilities: Capability,
        name: str | None = None,
        sensors: dict[str, SensorInfo] | None = None,
        temperature_unit: str | None = None,
        slots: list[OverlaySlot] | None = None,
    ) -> DeviceInfo:
        info = DeviceInfo(
            id=device_id,
            name=name or device_id,
            interfaces=frozenset(capabilities),
            sensors=sensors or {},
            temperature_unit=temperature_unit,
        )
        self.devices[device_id] = info
        if slots is not None:
            self.slots[device_id] = slots
        return info

    def set_value(self, device_id: str, capability: Capability, value: Any, sensor_id: str | None = None) -> None:
        self.values[(device_id, capability, sensor_id)] = value

    def emit(self, device_id: str, capability: Capability, value: Any) -> int:
        return dispatch(self.listeners, device_id, capability, value)

    def listener_count(self, device_id: str | None = None) -> int:
        return sum(
            len(callbacks)
            for (listener_device, _capability), callbacks in self.listeners.items()
            if device_id is None or listener_device == device_id
        )

    def texts_for(self, device_id: str, overlay_id: str) -> list[str | None]:
        return [text for device, overlay, text in self.writes if device == device_id and overlay == overlay_id]

    def get_device(self, device_id: str) -> DeviceInfo | None:
        return self.devices.get(device_id)

    async def list_overlays(self, device_id: str) -> list[OverlaySlot]:
        self.list_overlays_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if device_id not in self.devices:
            raise DeviceNotFoundError(device_id)
        return list(self.slots.get(device_id, []))

    async def read_value(self, device_id: str, capability: Capability, sensor_id: str | None = None) -> Any:
        return self.values.get((device_id, capability, sensor_id))

    def subscribe(self, device_id: str, capability: Capability, callback: ValueCallback) -> ListenerRegistration:
        return ListenerRegistration(self.listeners, (device_id, capability), callback)

    async def set_overlay_text(self, device_id: str, overlay_id: str, text: str) -> None:
        if overlay_id in self.fail_writes:
            raise OsdError(f"write to {overlay_id} failed")
        self.writes.append((device_id, overlay_id, text))

    async def clear_overlay(self, device_id: str, overlay_id: str) -> None:
        if overlay_id in self.fail_writes:
            raise OsdError(f"clear of {overlay_id} failed")
        self.writes.append((device_id, overlay_id, None))

    def is_sleeping(self, device_id: str) -> bool:
        return device_id in self.sleeping


@pytest.fixture
def fake_hub():
    """Create an empty in-memory device hub."""
    return FakeDeviceHub()


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture
def settings_store():
    """Create a settings store that never touches the filesystem."""
    return SettingsStore(path=None)


# ============================================================================
# Home Assistant Fixtures
# ============================================================================


@pytest.fixture
def ha_config():
    """Create a basic Home Assistant configuration for testing."""
    return HomeAssistantConfig(
        base_url="http://homeassistant.local:8123",
        token="test_token_123",
        verify_ssl=True,
        poll_seconds=5.0,
    )


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx.AsyncClient for Home Assistant tests."""
    client = AsyncMock(spec=httpx.AsyncClient)
    client.headers = {}
    client.base_url = httpx.URL("http://homeassistant.local:8123")
    return client


# ============================================================================
# MQTT Fixtures
# ============================================================================


@pytest.fixture
def mqtt_config():
    """Create a basic MQTT configuration for testing."""
    return MqttConfig(
        host="localhost",
        port=1883,
        topic_base="osd",
        username=None,
        password=None,
        tls_enabled=False,
        ca_cert=None,
        cert=None,
        key=None,
    )


@pytest.fixture
def mock_mqtt_client():
    """Create a mock paho MQTT client.

    Provides common MQTT client methods as mocks for testing
    MQTT interactions without a real broker.
    """
    client = Mock(spec=mqtt.Client)
    client.connect = Mock()
    client.disconnect = Mock()
    client.subscribe = Mock(return_value=(mqtt.MQTT_ERR_SUCCESS, 1))
    client.unsubscribe = Mock()

    message_info = Mock(spec=mqtt.MQTTMessageInfo)
    message_info.rc = mqtt.MQTT_ERR_SUCCESS
    message_info.mid = 1
    client.publish = Mock(return_value=message_info)

    client.loop_start = Mock()
    client.loop_stop = Mock()
    client.is_connected = Mock(return_value=True)
    return client
