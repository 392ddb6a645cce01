"""Plugin-level orchestration of overlay reconcilers.

``OsdManager`` owns one ``OverlayReconciler`` per camera, the plugin-scoped
settings (state texts and templates), and the settings write path. Every
settings write lands in the store first and then asks the affected
reconciler(s) for a pass; reconcilers coalesce bursts of writes on their own.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from .devices import DeviceHub, Subscription
from .keys import DUPLICATE_FROM_DEVICE_KEY, PLUGIN_SCOPE, TEMPLATES_KEY, overlay_id_from_key, overlay_keys
from .models import Capability, DeviceInfo, PluginTexts, SettingDescriptor, Template, string_list
from .reconciler import OverlayReconciler
from .settings_schema import plugin_settings
from .settings_store import SettingsStore
from .sink import OverlaySink
from .templates import TemplateRenderer
from .utils import device_ref_id, load_json

LOGGER = logging.getLogger(__name__)

SchemaCallback = Callable[[str, list[SettingDescriptor]], None]

# Overlay fields copied by "duplicate from device".
DUPLICATED_FIELDS = ("device", "type", "regex", "max_decimals")


class OsdManager:
    def __init__(
        self,
        hub: DeviceHub,
        store: SettingsStore,
        *,
        default_texts: PluginTexts | None = None,
        check_interval: float = 10.0,
        startup_delay: float = 2.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.hub = hub
        self.store = store
        self.default_texts = default_texts or PluginTexts()
        self.check_interval = check_interval
        self.startup_delay = startup_delay
        self.logger = logger or LOGGER
        self.plugin_storage = store.scope(PLUGIN_SCOPE)
        self.sink = OverlaySink(hub, self.logger)
        self.renderer = TemplateRenderer(hub, self.texts, self.logger)
        self.reconcilers: dict[str, OverlayReconciler] = {}
        self._wake_watches: dict[str, Subscription] = {}
        self._sleeping: dict[str, bool] = {}
        self._on_schema: SchemaCallback | None = None

    def set_schema_callback(self, callback: SchemaCallback | None) -> None:
        """Set callback receiving ``(scope, descriptors)`` whenever a schema is rebuilt."""
        self._on_schema = callback

    # ------------------------------------------------------------------
    # Plugin scope
    # ------------------------------------------------------------------

    def texts(self) -> PluginTexts:
        return PluginTexts.from_storage(self.plugin_storage, self.default_texts)

    def template_ids(self) -> list[str]:
        return string_list(load_json(self.plugin_storage.get_item(TEMPLATES_KEY), []))

    def template(self, template_id: str) -> Template | None:
        if template_id not in self.template_ids():
            return None
        return Template.from_storage(self.plugin_storage, template_id)

    def templates(self) -> list[Template]:
        return [Template.from_storage(self.plugin_storage, template_id) for template_id in self.template_ids()]

    def plugin_settings(self) -> list[SettingDescriptor]:
        return plugin_settings(self.texts(), self.templates(), self.hub.get_device)

    def device_settings(self, device_id: str) -> list[SettingDescriptor]:
        reconciler = self.reconcilers.get(device_id)
        if reconciler is None:
            return []
        return reconciler.descriptors()

    def publish_plugin_schema(self) -> None:
        self._publish_schema(PLUGIN_SCOPE, self.plugin_settings())

    def _publish_schema(self, scope: str, descriptors: list[SettingDescriptor]) -> None:
        if self._on_schema is not None:
            self._on_schema(scope, descriptors)

    # ------------------------------------------------------------------
    # Camera lifecycle
    # ------------------------------------------------------------------

    def attach(self, device_id: str) -> OverlayReconciler:
        existing = self.reconcilers.get(device_id)
        if existing is not None:
            return existing
        reconciler = OverlayReconciler(
            device_id,
            hub=self.hub,
            storage=self.store.scope(device_id),
            sink=self.sink,
            renderer=self.renderer,
            texts=self.texts,
            template_lookup=self.template,
            template_ids=self.template_ids,
            check_interval=self.check_interval,
            startup_delay=self.startup_delay,
            on_schema=self._publish_schema,
            logger=self.logger,
        )
        self.reconcilers[device_id] = reconciler
        self._sleeping[device_id] = bool(self.hub.is_sleeping(device_id))
        self._wake_watches[device_id] = self.hub.subscribe(
            device_id, Capability.SLEEP, lambda sleeping, r=reconciler: self._on_sleep_change(r, sleeping)
        )
        reconciler.start()
        self.logger.info("[manager] Managing overlays of %s", device_id)
        return reconciler

    def _on_sleep_change(self, reconciler: OverlayReconciler, sleeping: object) -> None:
        """Run a pass when the camera goes from sleeping to awake; repeated readings are ignored."""
        was_sleeping = self._sleeping.get(reconciler.device_id, False)
        self._sleeping[reconciler.device_id] = bool(sleeping)
        if was_sleeping and not sleeping:
            reconciler.request_reconcile("wake")

    async def detach(self, device_id: str) -> None:
        self._sleeping.pop(device_id, None)
        watch = self._wake_watches.pop(device_id, None)
        if watch is not None:
            watch.cancel()
        reconciler = self.reconcilers.pop(device_id, None)
        if reconciler is not None:
            await reconciler.release()

    def handle_device_added(self, device: DeviceInfo) -> None:
        if device.has(Capability.VIDEO_TEXT_OVERLAYS):
            self.attach(device.id)

    async def release_all(self) -> None:
        for device_id in list(self.reconcilers):
            await self.detach(device_id)

    # ------------------------------------------------------------------
    # Settings writes and actions
    # ------------------------------------------------------------------

    def put_setting(self, scope: str, key: str, value: object) -> None:
        if scope != PLUGIN_SCOPE and key == DUPLICATE_FROM_DEVICE_KEY:
            source_id = device_ref_id(value)
            if source_id:
                self.duplicate_from_device(scope, source_id)
            return

        self.store.scope(scope).set_item(key, value)
        self.logger.debug("[manager] %s: %s updated", scope, key)
        if scope == PLUGIN_SCOPE:
            self.publish_plugin_schema()
            self.refresh(reason="plugin settings")
            return
        reconciler = self.reconcilers.get(scope)
        if reconciler is not None:
            reconciler.request_reconcile(f"setting {key}")

    def refresh(self, device_id: str | None = None, reason: str = "refresh") -> None:
        if device_id is None:
            for reconciler in self.reconcilers.values():
                reconciler.request_reconcile(reason)
            return
        reconciler = self.reconcilers.get(device_id)
        if reconciler is None:
            self.logger.warning("[manager] Refresh requested for unmanaged device %s", device_id)
            return
        reconciler.request_reconcile(reason)

    def duplicate_from_device(self, target_id: str, source_id: str) -> int:
        """Copy overlay bindings from ``source_id`` for overlay ids both cameras share."""
        if source_id == target_id:
            return 0
        source = self.store.scope(source_id)
        target = self.store.scope(target_id)
        target_ids = set(self._overlay_ids(target_id))
        shared = [overlay_id for overlay_id in self._overlay_ids(source_id) if overlay_id in target_ids]

        for overlay_id in shared:
            keys = overlay_keys(overlay_id)
            for field_name in DUPLICATED_FIELDS:
                key = getattr(keys, field_name)
                target.set_item(key, source.get_item(key))

        self.logger.info("[manager] Duplicated %d overlay(s) from %s to %s", len(shared), source_id, target_id)
        self.refresh(target_id, reason="duplicate")
        return len(shared)

    def _overlay_ids(self, device_id: str) -> list[str]:
        reconciler = self.reconcilers.get(device_id)
        if reconciler is not None and reconciler.slots:
            return [slot.id for slot in reconciler.slots]
        ids: list[str] = []
        for key in self.store.scope(device_id).items():
            overlay_id = overlay_id_from_key(key)
            if overlay_id and overlay_id not in ids:
                ids.append(overlay_id)
        return ids
