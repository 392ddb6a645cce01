"""
Per-camera overlay reconciliation

One ``OverlayReconciler`` owns every live subscription of one camera. A pass
re-reads the overlay slots the camera reports, republishes the settings schema,
tears down all existing subscriptions, and rebuilds them from configuration:

- static text / disabled overlays render once
- event-bound overlays subscribe, render the current value, then every event
- template overlays run an interval task rendering immediately and per tick;
  a task whose plan is unchanged survives the pass untouched

Passes are triggered by start-up, a periodic check timer, settings writes and
the explicit refresh action. Only one pass runs at a time; triggers arriving
during a pass are coalesced into exactly one follow-up pass.

While the camera reports it is sleeping, renders are skipped but subscriptions
stay registered. ``release()`` cancels everything and is safe to call twice.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .devices import DeviceHub, Subscription
from .formatting import limit_text, render_reading
from .keys import overlay_keys
from .models import (
    ListenerKind,
    ListenerPlan,
    Overlay,
    OverlaySlot,
    PluginTexts,
    Rendered,
    SettingDescriptor,
    Template,
)
from .resolver import resolve
from .settings_schema import device_settings
from .settings_store import DeviceStorage
from .sink import OverlaySink
from .templates import TemplateRenderer

LOGGER = logging.getLogger(__name__)

SchemaCallback = Callable[[str, list[SettingDescriptor]], None]


class ReconcilerState(str, Enum):
    IDLE = "idle"
    RECONCILING = "reconciling"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class ActiveSubscription:
    overlay_id: str
    listener_kind: ListenerKind
    device_id: str | None
    registration: Subscription | None = None
    task: asyncio.Task | None = None
    plan: ListenerPlan | None = None

    def cancel(self) -> None:
        if self.registration is not None:
            self.registration.cancel()
            self.registration = None
        if self.task is not None:
            self.task.cancel()
            self.task = None


class OverlayReconciler:
    def __init__(
        self,
        device_id: str,
        *,
        hub: DeviceHub,
        storage: DeviceStorage,
        sink: OverlaySink,
        renderer: TemplateRenderer,
        texts: Callable[[], PluginTexts],
        template_lookup: Callable[[str], Template | None],
        template_ids: Callable[[], list[str]],
        check_interval: float = 10.0,
        startup_delay: float = 2.0,
        on_schema: SchemaCallback | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.device_id = device_id
        self.hub = hub
        self.storage = storage
        self.sink = sink
        self.renderer = renderer
        self.texts = texts
        self.template_lookup = template_lookup
        self.template_ids = template_ids
        self.check_interval = check_interval
        self.startup_delay = startup_delay
        self.on_schema = on_schema
        self.logger = logger or LOGGER

        self._state = ReconcilerState.IDLE
        self._slots: list[OverlaySlot] = []
        self._subscriptions: dict[str, ActiveSubscription] = {}
        self._ticker: asyncio.Task | None = None
        self._pass_task: asyncio.Task | None = None
        self._pending = False
        self._render_tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> ReconcilerState:
        return self._state

    @property
    def slots(self) -> list[OverlaySlot]:
        return list(self._slots)

    @property
    def active_subscriptions(self) -> dict[str, ActiveSubscription]:
        return dict(self._subscriptions)

    def start(self) -> None:
        """Schedule the initial pass and the periodic check timer."""
        if self._state is ReconcilerState.STOPPED or self._ticker is not None:
            return
        self._ticker = asyncio.create_task(self._tick_loop())

    async def _tick_loop(self) -> None:
        await asyncio.sleep(self.startup_delay)
        reason = "init"
        while self._state is not ReconcilerState.STOPPED:
            self.request_reconcile(reason)
            reason = "timer"
            await asyncio.sleep(self.check_interval)

    def request_reconcile(self, reason: str = "settings") -> asyncio.Task | None:
        """Run a pass now, or once more after the pass in flight."""
        if self._state is ReconcilerState.STOPPED:
            return None
        if self._pass_task is not None and not self._pass_task.done():
            self._pending = True
            self.logger.debug("[reconciler] %s: pass in flight, queued %s trigger", self.device_id, reason)
            return self._pass_task
        self._pass_task = asyncio.create_task(self._run_passes(reason))
        return self._pass_task

    async def _run_passes(self, reason: str) -> None:
        while True:
            self._pending = False
            try:
                await self._reconcile_once(reason)
            except Exception:
                self.logger.exception("[reconciler] %s: reconciliation pass failed", self.device_id)
            if not self._pending or self._state is ReconcilerState.STOPPED:
                return
            reason = "coalesced"

    async def _reconcile_once(self, reason: str) -> None:
        self.logger.debug("[reconciler] %s: reconciling (%s)", self.device_id, reason)
        self._state = ReconcilerState.RECONCILING
        self._slots = await self._read_slots()
        if self._state is ReconcilerState.STOPPED:
            return
        self._publish_schema()
        retained = self._detach_intervals()
        self._teardown()

        self._state = ReconcilerState.RUNNING
        initial: list[Awaitable[Any]] = []
        for slot in self._slots:
            if slot.readonly:
                continue
            try:
                render = self._activate(slot.id, retained)
            except Exception:
                self.logger.exception("[reconciler] %s: failed to set up overlay %s", self.device_id, slot.id)
                continue
            if render is not None:
                initial.append(render)
        for leftover in retained.values():
            leftover.cancel()
        if initial:
            await asyncio.gather(*initial, return_exceptions=True)

    async def _read_slots(self) -> list[OverlaySlot]:
        if self.hub.is_sleeping(self.device_id):
            return self._slots
        try:
            return await self.hub.list_overlays(self.device_id)
        except Exception as exc:
            self.logger.warning("[reconciler] %s: could not read overlay slots: %s", self.device_id, exc)
            return self._slots

    def descriptors(self) -> list[SettingDescriptor]:
        return device_settings(
            self._slots,
            lambda overlay_id: Overlay.from_storage(self.storage, overlay_id),
            self.hub.get_device,
            self.template_ids(),
        )

    def _publish_schema(self) -> None:
        if self.on_schema is None:
            return
        try:
            self.on_schema(self.device_id, self.descriptors())
        except Exception:
            self.logger.exception("[reconciler] %s: failed to publish settings schema", self.device_id)

    def _activate(self, overlay_id: str, retained: dict[str, ActiveSubscription]) -> Awaitable[Any] | None:
        overlay = Overlay.from_storage(self.storage, overlay_id)
        plan = resolve(overlay, self.device_id, self.hub.get_device, self.template_lookup, self.logger)

        if plan.kind is ListenerKind.NONE:
            if plan.synthetic is None:
                return None
            return self._render(overlay_id, plan.synthetic, overlay)

        if plan.kind is ListenerKind.INTERVAL:
            previous = retained.pop(overlay_id, None)
            if previous is not None and previous.plan == plan and previous.task and not previous.task.done():
                # Unchanged plan: keep the running task and its cadence.
                self._subscriptions[overlay_id] = previous
                return None
            if previous is not None:
                previous.cancel()
            task = asyncio.create_task(self._interval_loop(overlay_id, plan))
            self._subscriptions[overlay_id] = ActiveSubscription(
                overlay_id, plan.kind, plan.device_id, task=task, plan=plan
            )
            return None

        if plan.device_id is None or plan.capability is None:
            self.logger.warning("[reconciler] %s: overlay %s has no source", self.device_id, overlay_id)
            return None
        registration = self.hub.subscribe(
            plan.device_id,
            plan.capability,
            lambda value, oid=overlay_id, p=plan: self._on_event(oid, p, value),
        )
        self._subscriptions[overlay_id] = ActiveSubscription(
            overlay_id, plan.kind, plan.device_id, registration=registration, plan=plan
        )
        return self._render_current(overlay_id, plan)

    def _on_event(self, overlay_id: str, plan: ListenerPlan, value: Any) -> None:
        if self._state is ReconcilerState.STOPPED:
            return
        if self.hub.is_sleeping(self.device_id):
            self.logger.debug("[reconciler] %s: sleeping, ignoring update for %s", self.device_id, overlay_id)
            return
        if plan.kind is ListenerKind.SENSORS and plan.sensor_id is not None:
            if not isinstance(value, dict) or plan.sensor_id not in value:
                return
            value = value[plan.sensor_id]
        self.logger.debug(
            "[reconciler] %s: update for overlay %s from %s (%s): %r",
            self.device_id,
            overlay_id,
            plan.device_id,
            plan.kind.value,
            value,
        )
        task = asyncio.create_task(self._render_value(overlay_id, plan, value))
        self._render_tasks.add(task)
        task.add_done_callback(self._render_tasks.discard)

    async def _render_current(self, overlay_id: str, plan: ListenerPlan) -> None:
        if plan.device_id is None or plan.capability is None:
            self.logger.debug("[reconciler] %s: overlay %s has no source to read", self.device_id, overlay_id)
            return
        try:
            value = await self.hub.read_value(plan.device_id, plan.capability, plan.sensor_id)
        except Exception as exc:
            self.logger.warning(
                "[reconciler] %s: could not read current value for overlay %s: %s", self.device_id, overlay_id, exc
            )
            return
        if value is None:
            return
        await self._render_value(overlay_id, plan, value)

    async def _render_value(self, overlay_id: str, plan: ListenerPlan, value: Any) -> None:
        try:
            overlay = Overlay.from_storage(self.storage, overlay_id)
            source = self.hub.get_device(plan.device_id) if plan.device_id else None
            text = render_reading(plan.kind, value, overlay, self.texts(), source)
        except Exception:
            self.logger.exception("[reconciler] %s: failed to format overlay %s", self.device_id, overlay_id)
            return
        await self._render(overlay_id, text, overlay)

    async def _interval_loop(self, overlay_id: str, plan: ListenerPlan) -> None:
        interval = plan.interval_seconds or 5.0
        while self._state is not ReconcilerState.STOPPED:
            await self._render_template(overlay_id, plan)
            await asyncio.sleep(interval)

    async def _render_template(self, overlay_id: str, plan: ListenerPlan) -> None:
        if self.hub.is_sleeping(self.device_id):
            return
        template = self.template_lookup(plan.template_id) if plan.template_id else None
        if template is None:
            self.logger.debug(
                "[reconciler] %s: template %s for overlay %s is gone", self.device_id, plan.template_id, overlay_id
            )
            return
        try:
            text = await self.renderer.render(template)
        except Exception:
            self.logger.exception("[reconciler] %s: template %s failed to render", self.device_id, template.id)
            return
        await self._render(overlay_id, text or None)

    async def _render(self, overlay_id: str, rendered: Rendered, overlay: Overlay | None = None) -> bool:
        if self._state is ReconcilerState.STOPPED:
            return False
        if self.hub.is_sleeping(self.device_id):
            return False
        if overlay is None:
            overlay = Overlay.from_storage(self.storage, overlay_id)
        written = await self.sink.apply(self.device_id, overlay_id, rendered, overlay.max_characters)
        if written and isinstance(rendered, str):
            self.storage.set_item(overlay_keys(overlay_id).current_text, limit_text(rendered, overlay.max_characters))
        return written

    def _detach_intervals(self) -> dict[str, ActiveSubscription]:
        """Take interval subscriptions out of the active set so a pass can keep unchanged ones."""
        intervals = {
            overlay_id: subscription
            for overlay_id, subscription in self._subscriptions.items()
            if subscription.listener_kind is ListenerKind.INTERVAL
        }
        for overlay_id in intervals:
            del self._subscriptions[overlay_id]
        return intervals

    def _teardown(self) -> None:
        for subscription in self._subscriptions.values():
            subscription.cancel()
        self._subscriptions.clear()

    async def release(self) -> None:
        if self._state is ReconcilerState.STOPPED:
            return
        self._state = ReconcilerState.STOPPED
        self._teardown()
        current = asyncio.current_task()
        tasks = [task for task in (self._ticker, self._pass_task, *self._render_tasks) if task is not None]
        self._ticker = None
        self._pass_task = None
        self._render_tasks.clear()
        for task in tasks:
            if task is not current and not task.done():
                task.cancel()
        for task in tasks:
            if task is not current:
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task
        self.logger.info("[reconciler] %s: released", self.device_id)
