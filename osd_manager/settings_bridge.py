"""MQTT surface for overlay settings.

Schemas are published retained on ``<base>/settings/<scope>/schema`` where the
scope is a camera id or ``plugin``. Writes arrive on ``<base>/settings/<scope>/set``:

- ``{"key": "...", "value": ...}`` stores a setting
- ``{"action": "refresh"}`` forces a reconciliation pass
- ``{"action": "duplicate", "source": "<device id>"}`` copies overlay bindings
"""

from __future__ import annotations

import asyncio
import json
import logging

from .keys import PLUGIN_SCOPE
from .manager import OsdManager
from .models import SettingDescriptor
from .mqtt import OsdMqtt
from .utils import device_ref_id

LOGGER = logging.getLogger(__name__)


class SettingsBridge:
    def __init__(
        self,
        mqtt: OsdMqtt,
        manager: OsdManager,
        topic_base: str,
        logger: logging.Logger | None = None,
    ) -> None:
        self.mqtt = mqtt
        self.manager = manager
        self.topic_base = topic_base.rstrip("/")
        self.logger = logger or LOGGER
        self._loop: asyncio.AbstractEventLoop | None = None

    def schema_topic(self, scope: str) -> str:
        return f"{self.topic_base}/settings/{scope}/schema"

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self.manager.set_schema_callback(self.publish_schema)
        try:
            self.mqtt.subscribe(f"{self.topic_base}/settings/+/set", self._handle_message)
        except RuntimeError:
            self.logger.warning("[settings] MQTT client not ready; settings writes unavailable")
        self.manager.publish_plugin_schema()

    def publish_schema(self, scope: str, descriptors: list[SettingDescriptor]) -> None:
        payload = json.dumps([descriptor.to_dict() for descriptor in descriptors])
        if not self.mqtt.publish(self.schema_topic(scope), payload, retain=True, qos=1):
            self.logger.debug("[settings] Schema for %s not published (MQTT unavailable)", scope)

    def _handle_message(self, topic: str, payload: str) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            self.apply_message(topic, payload)
            return
        loop.call_soon_threadsafe(self.apply_message, topic, payload)

    def apply_message(self, topic: str, payload: str) -> None:
        prefix = f"{self.topic_base}/settings/"
        if not topic.startswith(prefix) or not topic.endswith("/set"):
            return
        scope = topic[len(prefix) : -len("/set")]
        if not scope or "/" in scope:
            return
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            self.logger.warning("[settings] Ignoring malformed settings message for %s", scope)
            return
        if not isinstance(data, dict):
            self.logger.warning("[settings] Ignoring settings message for %s: expected an object", scope)
            return

        try:
            self._apply(scope, data)
        except Exception:
            self.logger.exception("[settings] Failed to apply settings message for %s", scope)

    def _apply(self, scope: str, data: dict) -> None:
        action = data.get("action")
        if action == "refresh":
            if scope == PLUGIN_SCOPE:
                self.manager.publish_plugin_schema()
                self.manager.refresh(reason="refresh")
            else:
                self.manager.refresh(scope)
            return
        if action == "duplicate":
            source_id = device_ref_id(data.get("source"))
            if scope == PLUGIN_SCOPE or not source_id:
                self.logger.warning("[settings] Duplicate needs a camera scope and a source device")
                return
            self.manager.duplicate_from_device(scope, source_id)
            return
        if action is not None:
            self.logger.warning("[settings] Unknown settings action %r for %s", action, scope)
            return

        key = data.get("key")
        if not isinstance(key, str) or not key:
            self.logger.warning("[settings] Settings message for %s has no key", scope)
            return
        self.manager.put_setting(scope, key, data.get("value"))
