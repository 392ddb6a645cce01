"""Tests for Home Assistant entities as data sources."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from osd_manager.devices import OsdError
from osd_manager.home_assistant import (
    HomeAssistantAuthError,
    HomeAssistantClient,
    HomeAssistantDevices,
    HomeAssistantError,
    decode_entity_value,
    entity_capabilities,
    entity_device_info,
)
from osd_manager.models import Capability

# Mark all tests in this module as anyio
pytestmark = pytest.mark.anyio

LOCK = {"entity_id": "lock.front_door", "state": "locked", "attributes": {"friendly_name": "Front Door"}}
DOOR = {"entity_id": "binary_sensor.garage", "state": "on", "attributes": {"device_class": "garage_door"}}
MOTION = {"entity_id": "binary_sensor.hall_motion", "state": "off", "attributes": {"device_class": "motion"}}
OUTSIDE = {
    "entity_id": "sensor.outside_temperature",
    "state": "68",
    "attributes": {"device_class": "temperature", "unit_of_measurement": "°F"},
}
PRESSURE = {
    "entity_id": "sensor.pressure",
    "state": "1013.2",
    "attributes": {"device_class": "pressure", "unit_of_measurement": "hPa"},
}


@pytest.fixture
def ha_client():
    client = Mock(spec=HomeAssistantClient)
    client.list_states = AsyncMock(return_value=[LOCK, DOOR, OUTSIDE, PRESSURE])
    client.get_state = AsyncMock(return_value=LOCK)
    client.close = AsyncMock()
    return client


@pytest.fixture
def entities(ha_client, mock_logger):
    return HomeAssistantDevices(ha_client, poll_seconds=3600, logger=mock_logger)


class TestHomeAssistantClientInit:
    """Test Home Assistant client initialization."""

    def test_init_success(self, ha_config):
        client = HomeAssistantClient(ha_config)
        assert client.config == ha_config
        assert client.timeout == 10.0
        assert not client._closed

    def test_init_sets_auth_header(self, ha_config):
        client = HomeAssistantClient(ha_config)
        assert client._client.headers["Authorization"] == "Bearer test_token_123"

    def test_init_strips_trailing_slash(self, ha_config):
        client = HomeAssistantClient(replace(ha_config, base_url="http://homeassistant.local:8123/"))
        assert client._client.base_url == httpx.URL("http://homeassistant.local:8123")

    def test_init_missing_base_url(self, ha_config):
        with pytest.raises(ValueError, match="base URL is not configured"):
            HomeAssistantClient(replace(ha_config, base_url=""))

    def test_init_missing_token(self, ha_config):
        with pytest.raises(ValueError, match="token is not configured"):
            HomeAssistantClient(replace(ha_config, token=""))

    async def test_close_idempotent(self, ha_config):
        client = HomeAssistantClient(ha_config)
        await client.close()
        await client.close()
        assert client._closed


class TestHomeAssistantClientRequests:
    async def test_get_state(self, ha_config):
        with patch.object(HomeAssistantClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = LOCK
            client = HomeAssistantClient(ha_config)
            result = await client.get_state("lock.front_door")
            mock_request.assert_called_once_with("GET", "/api/states/lock.front_door")
            assert result["state"] == "locked"

    async def test_list_states_filters_non_dict(self, ha_config):
        with patch.object(HomeAssistantClient, "_request", new_callable=AsyncMock) as mock_request:
            mock_request.return_value = [LOCK, "invalid_item", DOOR]
            client = HomeAssistantClient(ha_config)
            assert await client.list_states() == [LOCK, DOOR]

    async def test_request_auth_error(self, ha_config, mock_httpx_client):
        mock_httpx_client.request.return_value = httpx.Response(401)
        client = HomeAssistantClient(ha_config)
        client._client = mock_httpx_client
        with pytest.raises(HomeAssistantAuthError):
            await client.get_state("lock.front_door")

    async def test_request_server_error(self, ha_config, mock_httpx_client):
        mock_httpx_client.request.return_value = httpx.Response(500, text="boom")
        client = HomeAssistantClient(ha_config)
        client._client = mock_httpx_client
        with pytest.raises(HomeAssistantError, match="500"):
            await client.list_states()

    async def test_request_json_body(self, ha_config, mock_httpx_client):
        mock_httpx_client.request.return_value = httpx.Response(200, json=LOCK)
        client = HomeAssistantClient(ha_config)
        client._client = mock_httpx_client
        assert await client.get_state("lock.front_door") == LOCK


class TestEntityMapping:
    @pytest.mark.parametrize(
        ("state", "expected"),
        [
            (LOCK, Capability.LOCK),
            (DOOR, Capability.ENTRY_SENSOR),
            (MOTION, Capability.BINARY_SENSOR),
            (OUTSIDE, Capability.THERMOMETER),
            (PRESSURE, Capability.SENSORS),
        ],
    )
    def test_capabilities(self, state, expected):
        assert entity_capabilities(state) == frozenset({expected})

    def test_unsupported_domain(self):
        assert entity_capabilities({"entity_id": "light.kitchen", "state": "on"}) == frozenset()

    def test_device_info_for_generic_sensor(self):
        info = entity_device_info(PRESSURE)
        assert info.name == "sensor.pressure"
        assert info.sensors["sensor.pressure"].unit == "hPa"
        assert info.sensors["sensor.pressure"].value == pytest.approx(101320.0)

    def test_device_info_for_thermometer(self):
        info = entity_device_info(OUTSIDE)
        assert info.temperature_unit == "°F"
        assert info.sensors == {}


class TestDecodeEntityValue:
    def test_lock_state(self):
        assert decode_entity_value(LOCK, Capability.LOCK) == "Locked"

    def test_binary_states(self):
        assert decode_entity_value(DOOR, Capability.ENTRY_SENSOR) is True
        assert decode_entity_value(MOTION, Capability.BINARY_SENSOR) is False

    def test_temperature_converted_to_celsius(self):
        assert decode_entity_value(OUTSIDE, Capability.THERMOMETER) == pytest.approx(20.0)

    def test_generic_sensor_keyed_by_entity(self):
        value = decode_entity_value(PRESSURE, Capability.SENSORS)
        assert value["sensor.pressure"]["unit"] == "hPa"
        assert value["sensor.pressure"]["value"] == pytest.approx(101320.0)

    @pytest.mark.parametrize("raw", ["unavailable", "unknown", ""])
    def test_unavailable_is_none(self, raw):
        assert decode_entity_value({**LOCK, "state": raw}, Capability.LOCK) is None


class TestHomeAssistantDevices:
    async def test_refresh_populates_devices(self, entities):
        await entities.refresh()
        assert entities.get_device("lock.front_door").name == "Front Door"
        assert entities.get_device("light.none") is None

    async def test_refresh_failure_logged(self, entities, ha_client, mock_logger):
        ha_client.list_states.side_effect = HomeAssistantError("offline")
        await entities.refresh()
        mock_logger.warning.assert_called_once()

    async def test_listener_notified_on_change_only(self, entities, ha_client):
        await entities.refresh()
        received = Mock()
        entities.subscribe("lock.front_door", Capability.LOCK, received)

        await entities.refresh()
        received.assert_not_called()

        ha_client.list_states.return_value = [{**LOCK, "state": "unlocked"}]
        await entities.refresh()
        received.assert_called_once_with("Unlocked")

    async def test_read_value_fetches_state(self, entities, ha_client):
        assert await entities.read_value("lock.front_door", Capability.LOCK) == "Locked"
        ha_client.get_state.assert_awaited_once_with("lock.front_door")

    async def test_read_sensor_value(self, entities, ha_client):
        ha_client.get_state.return_value = PRESSURE
        reading = await entities.read_value("sensor.pressure", Capability.SENSORS, "sensor.pressure")
        assert reading["unit"] == "hPa"

    async def test_entities_have_no_overlays(self, entities):
        assert await entities.list_overlays("lock.front_door") == []
        assert entities.is_sleeping("lock.front_door") is False
        with pytest.raises(OsdError):
            await entities.set_overlay_text("lock.front_door", "1", "x")

    async def test_start_and_stop(self, entities, ha_client):
        await entities.start()
        runner = entities._runner
        assert runner is not None

        await entities.stop()

        await asyncio.sleep(0)
        assert runner.cancelled()
        ha_client.close.assert_awaited_once()
