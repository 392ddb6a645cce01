"""Tests for overlay writes (osd_manager/sink.py)."""

from __future__ import annotations

import pytest

from osd_manager.models import DISABLE
from osd_manager.sink import OverlaySink

pytestmark = pytest.mark.anyio


@pytest.fixture
def sink(fake_hub, mock_logger):
    return OverlaySink(fake_hub, mock_logger)


async def test_text_is_written(sink, fake_hub):
    assert await sink.apply("cam", "1", "21.3 °C") is True
    assert fake_hub.writes == [("cam", "1", "21.3 °C")]


async def test_text_is_truncated(sink, fake_hub):
    assert await sink.apply("cam", "1", "Temperature: 21.5C", max_characters=10) is True
    assert fake_hub.writes == [("cam", "1", "Tempera...")]


async def test_disable_clears_overlay(sink, fake_hub):
    assert await sink.apply("cam", "1", DISABLE) is True
    assert fake_hub.writes == [("cam", "1", None)]


@pytest.mark.parametrize("rendered", [None, ""])
async def test_nothing_rendered_means_no_write(sink, fake_hub, rendered):
    assert await sink.apply("cam", "1", rendered) is False
    assert fake_hub.writes == []


async def test_failed_write_is_logged_not_raised(sink, fake_hub, mock_logger):
    fake_hub.fail_writes.add("1")
    assert await sink.apply("cam", "1", "text") is False
    mock_logger.warning.assert_called_once()


async def test_failure_does_not_affect_other_overlays(sink, fake_hub):
    fake_hub.fail_writes.add("1")
    assert await sink.apply("cam", "1", "one") is False
    assert await sink.apply("cam", "2", "two") is True
    assert fake_hub.writes == [("cam", "2", "two")]
