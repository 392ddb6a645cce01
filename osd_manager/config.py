"""Configuration helpers for the OSD manager daemon."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from osd_manager.models import PluginTexts
from osd_manager.utils import parse_bool, parse_float, parse_int


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


DEFAULT_TOPIC_BASE = "osd"
DEFAULT_SETTINGS_FILE = "/var/lib/osd-manager/settings.json"


@dataclass(frozen=True)
class MqttConfig:
    host: str | None
    port: int
    username: str | None
    password: str | None
    tls_enabled: bool
    cert: str | None
    key: str | None
    ca_cert: str | None
    topic_base: str


@dataclass(frozen=True)
class HomeAssistantConfig:
    base_url: str | None
    token: str | None
    verify_ssl: bool
    poll_seconds: float

    @property
    def enabled(self) -> bool:
        return bool(self.base_url and self.token)


@dataclass(frozen=True)
class EngineConfig:
    check_interval_seconds: float
    startup_delay_seconds: float
    settings_file: Path
    settings_debounce_seconds: float


@dataclass(frozen=True)
class OsdConfig:
    mqtt: MqttConfig
    home_assistant: HomeAssistantConfig
    engine: EngineConfig
    texts: PluginTexts

    @staticmethod
    def from_env(env: dict[str, str] | None = None) -> OsdConfig:
        source = env if env is not None else os.environ

        topic_base = (source.get("OSD_TOPIC_BASE") or DEFAULT_TOPIC_BASE).strip().rstrip("/") or DEFAULT_TOPIC_BASE
        mqtt = MqttConfig(
            host=_strip_or_none(source.get("MQTT_HOST")),
            port=parse_int(source.get("MQTT_PORT"), 1883),
            username=_strip_or_none(source.get("MQTT_USER") or source.get("MQTT_USERNAME")),
            password=_strip_or_none(source.get("MQTT_PASS") or source.get("MQTT_PASSWORD")),
            tls_enabled=parse_bool(source.get("MQTT_TLS_ENABLED"), False),
            cert=_strip_or_none(source.get("MQTT_CERT")),
            key=_strip_or_none(source.get("MQTT_KEY")),
            ca_cert=_strip_or_none(source.get("MQTT_CA_CERT")),
            topic_base=topic_base,
        )

        ha_base_url = _strip_or_none(source.get("HOME_ASSISTANT_BASE_URL"))
        if ha_base_url:
            ha_base_url = ha_base_url.rstrip("/")
        home_assistant = HomeAssistantConfig(
            base_url=ha_base_url,
            token=_strip_or_none(source.get("HOME_ASSISTANT_TOKEN") or source.get("HOME_ASSISTANT_LONG_LIVED_TOKEN")),
            verify_ssl=parse_bool(source.get("HOME_ASSISTANT_VERIFY_SSL"), True),
            poll_seconds=max(1.0, parse_float(source.get("HOME_ASSISTANT_POLL_SECONDS"), 5.0)),
        )

        engine = EngineConfig(
            check_interval_seconds=max(1.0, parse_float(source.get("OSD_CHECK_INTERVAL_SECONDS"), 10.0)),
            startup_delay_seconds=max(0.0, parse_float(source.get("OSD_STARTUP_DELAY_SECONDS"), 2.0)),
            settings_file=Path(source.get("OSD_SETTINGS_FILE") or DEFAULT_SETTINGS_FILE),
            settings_debounce_seconds=max(0.0, parse_float(source.get("OSD_SETTINGS_DEBOUNCE_SECONDS"), 2.0)),
        )

        defaults = PluginTexts()
        texts = PluginTexts(
            lock_text=_strip_or_none(source.get("OSD_LOCK_TEXT")) or defaults.lock_text,
            unlock_text=_strip_or_none(source.get("OSD_UNLOCK_TEXT")) or defaults.unlock_text,
            jammed_text=_strip_or_none(source.get("OSD_JAMMED_TEXT")) or defaults.jammed_text,
            open_text=_strip_or_none(source.get("OSD_OPEN_TEXT")) or defaults.open_text,
            closed_text=_strip_or_none(source.get("OSD_CLOSED_TEXT")) or defaults.closed_text,
        )

        return OsdConfig(mqtt=mqtt, home_assistant=home_assistant, engine=engine, texts=texts)
