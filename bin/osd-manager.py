#!/usr/bin/env python3
"""OSD manager daemon."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal

from osd_manager.config import OsdConfig
from osd_manager.devices import CompositeDeviceHub
from osd_manager.home_assistant import HomeAssistantClient, HomeAssistantDevices
from osd_manager.manager import OsdManager
from osd_manager.models import DeviceInfo
from osd_manager.mqtt import OsdMqtt
from osd_manager.mqtt_devices import MqttDeviceHub
from osd_manager.settings_bridge import SettingsBridge
from osd_manager.settings_store import SettingsStore

LOGGER = logging.getLogger("osd-manager")


class OsdDaemon:
    def __init__(self, config: OsdConfig) -> None:
        self.config = config
        self.store = SettingsStore(
            config.engine.settings_file,
            debounce_seconds=config.engine.settings_debounce_seconds,
        )
        self.mqtt = OsdMqtt(config.mqtt)
        self.bus = MqttDeviceHub(self.mqtt, config.mqtt.topic_base)
        self.entities: HomeAssistantDevices | None = None
        if config.home_assistant.enabled:
            client = HomeAssistantClient(config.home_assistant)
            self.entities = HomeAssistantDevices(client, poll_seconds=config.home_assistant.poll_seconds)
        self.hub = CompositeDeviceHub(self.bus, self.entities)
        self.manager = OsdManager(
            self.hub,
            self.store,
            default_texts=config.texts,
            check_interval=config.engine.check_interval_seconds,
            startup_delay=config.engine.startup_delay_seconds,
        )
        self.bridge = SettingsBridge(self.mqtt, self.manager, config.mqtt.topic_base)
        self._shutdown = asyncio.Event()
        self._detach_tasks: set[asyncio.Task] = set()

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        self.store.load()
        self.mqtt.connect()
        if self.entities is not None:
            await self.entities.start()
        self.bus.set_device_callbacks(on_added=self.manager.handle_device_added, on_removed=self._handle_device_removed)
        self.bus.start(loop)
        self.bridge.start(loop)
        LOGGER.info(
            "OSD manager ready (topic base %s, Home Assistant %s)",
            self.config.mqtt.topic_base,
            "enabled" if self.entities is not None else "disabled",
        )
        await self._shutdown.wait()

    def _handle_device_removed(self, device: DeviceInfo) -> None:
        task = asyncio.create_task(self.manager.detach(device.id))
        self._detach_tasks.add(task)
        task.add_done_callback(self._detach_tasks.discard)

    async def shutdown(self) -> None:
        self._shutdown.set()
        await self.manager.release_all()
        if self.entities is not None:
            await self.entities.stop()
        self.mqtt.disconnect()
        self.store.stop()


async def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    config = OsdConfig.from_env()
    daemon = OsdDaemon(config)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    run_task = asyncio.create_task(daemon.run())
    await stop_event.wait()
    await daemon.shutdown()
    run_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await run_task


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
