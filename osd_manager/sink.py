"""Write rendered overlay text to the camera."""

from __future__ import annotations

import logging

from .devices import DeviceHub
from .formatting import limit_text
from .models import DISABLE, Rendered

LOGGER = logging.getLogger(__name__)


class OverlaySink:
    """Push text or the disable signal to one overlay slot.

    A failed write is logged and reported as ``False``; the next event, timer
    tick, or reconciliation pass is the retry.
    """

    def __init__(self, hub: DeviceHub, logger: logging.Logger | None = None) -> None:
        self.hub = hub
        self.logger = logger or LOGGER

    async def apply(
        self,
        device_id: str,
        overlay_id: str,
        rendered: Rendered,
        max_characters: int | None = None,
    ) -> bool:
        try:
            if rendered is DISABLE:
                await self.hub.clear_overlay(device_id, overlay_id)
                self.logger.debug("[sink] Disabled overlay %s on %s", overlay_id, device_id)
                return True
            if not rendered:
                return False
            text = limit_text(str(rendered), max_characters)
            await self.hub.set_overlay_text(device_id, overlay_id, text)
            self.logger.debug("[sink] Overlay %s on %s set to %r", overlay_id, device_id, text)
            return True
        except Exception as exc:
            self.logger.warning("[sink] Failed to update overlay %s on %s: %s", overlay_id, device_id, exc)
            return False
