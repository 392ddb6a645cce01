"""Tests for the MQTT settings surface (osd_manager/settings_bridge.py)."""

from __future__ import annotations

import json
from unittest.mock import Mock

import pytest

from osd_manager.keys import PLUGIN_SCOPE
from osd_manager.manager import OsdManager
from osd_manager.models import SettingDescriptor
from osd_manager.settings_bridge import SettingsBridge


@pytest.fixture
def mqtt_client():
    client = Mock()
    client.publish.return_value = True
    return client


@pytest.fixture
def manager():
    return Mock(spec=OsdManager)


@pytest.fixture
def bridge(mqtt_client, manager, mock_logger):
    return SettingsBridge(mqtt_client, manager, "osd/", mock_logger)


def send(bridge, scope, body):
    bridge.apply_message(f"osd/settings/{scope}/set", json.dumps(body))


class TestStart:
    def test_wires_manager_and_subscribes(self, bridge, manager, mqtt_client):
        bridge.start(Mock())

        manager.set_schema_callback.assert_called_once_with(bridge.publish_schema)
        mqtt_client.subscribe.assert_called_once_with("osd/settings/+/set", bridge._handle_message)
        manager.publish_plugin_schema.assert_called_once()

    def test_start_without_connection_warns(self, bridge, mqtt_client, mock_logger):
        mqtt_client.subscribe.side_effect = RuntimeError("not connected")
        bridge.start(Mock())
        mock_logger.warning.assert_called_once()

    def test_messages_marshalled_to_loop(self, bridge):
        loop = Mock()
        loop.is_closed.return_value = False
        bridge.start(loop)
        bridge._handle_message("osd/settings/cam1/set", "{}")
        loop.call_soon_threadsafe.assert_called_once_with(bridge.apply_message, "osd/settings/cam1/set", "{}")


class TestPublishSchema:
    def test_retained_json_list(self, bridge, mqtt_client):
        descriptor = SettingDescriptor(key="lockText", title="Lock Text", value="Locked")
        bridge.publish_schema("cam1", [descriptor])

        topic, payload = mqtt_client.publish.call_args.args
        assert topic == "osd/settings/cam1/schema"
        assert json.loads(payload) == [descriptor.to_dict()]
        assert mqtt_client.publish.call_args.kwargs == {"retain": True, "qos": 1}


class TestApplyMessage:
    def test_key_value_write(self, bridge, manager):
        send(bridge, "cam1", {"key": "overlay:1:text", "value": "Hello"})
        manager.put_setting.assert_called_once_with("cam1", "overlay:1:text", "Hello")

    def test_missing_key_warns(self, bridge, manager, mock_logger):
        send(bridge, "cam1", {"value": "Hello"})
        manager.put_setting.assert_not_called()
        mock_logger.warning.assert_called_once()

    def test_refresh_camera(self, bridge, manager):
        send(bridge, "cam1", {"action": "refresh"})
        manager.refresh.assert_called_once_with("cam1")

    def test_refresh_plugin_republishes_and_refreshes_all(self, bridge, manager):
        send(bridge, PLUGIN_SCOPE, {"action": "refresh"})
        manager.publish_plugin_schema.assert_called_once()
        manager.refresh.assert_called_once_with(reason="refresh")

    def test_duplicate_accepts_device_reference(self, bridge, manager):
        send(bridge, "cam1", {"action": "duplicate", "source": {"id": "cam2"}})
        manager.duplicate_from_device.assert_called_once_with("cam1", "cam2")

    @pytest.mark.parametrize(("scope", "body"), [("plugin", {"source": "cam2"}), ("cam1", {})])
    def test_duplicate_rejected(self, bridge, manager, mock_logger, scope, body):
        send(bridge, scope, {"action": "duplicate", **body})
        manager.duplicate_from_device.assert_not_called()
        mock_logger.warning.assert_called_once()

    def test_unknown_action_warns(self, bridge, manager, mock_logger):
        send(bridge, "cam1", {"action": "explode"})
        mock_logger.warning.assert_called_once()

    @pytest.mark.parametrize("payload", ["{not json", "[1, 2]"])
    def test_malformed_payload_ignored(self, bridge, manager, mock_logger, payload):
        bridge.apply_message("osd/settings/cam1/set", payload)
        manager.put_setting.assert_not_called()
        mock_logger.warning.assert_called_once()

    @pytest.mark.parametrize("topic", ["osd/settings/cam1/schema", "osd/settings/a/b/set", "other/settings/cam1/set"])
    def test_unrelated_topics_ignored(self, bridge, manager, topic):
        bridge.apply_message(topic, json.dumps({"key": "k", "value": 1}))
        manager.put_setting.assert_not_called()

    def test_manager_failure_logged(self, bridge, manager, mock_logger):
        manager.put_setting.side_effect = ValueError("bad value")
        send(bridge, "cam1", {"key": "k", "value": 1})
        mock_logger.exception.assert_called_once()
