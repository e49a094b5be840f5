"""Persisted user preferences (``QSettings``)."""

import logging
from typing import Optional

from PySide6.QtCore import QSettings

from .models import (
    DEFAULT_COUNTDOWN_SECONDS,
    DEFAULT_PIPELINE_TIMEOUT_S,
    DEFAULT_POLL_INTERVAL_MS,
    VOLUME_MAX,
    VOLUME_MIN,
    AudioSource,
    ExportFormat,
    ExportQuality,
)
from .utils import clamp

logger = logging.getLogger(__name__)


def _to_bool(value: object, default: bool) -> bool:
    # INI backends hand booleans back as strings
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    if value is None:
        return default
    return bool(value)


class Preferences:
    """Typed accessors over ``QSettings("ClipFlow", "ClipFlow")``.

    Invalid stored values fall back to their defaults instead of raising.
    """

    def __init__(self, settings: Optional[QSettings] = None) -> None:
        self._settings = settings if settings is not None else QSettings("ClipFlow", "ClipFlow")

    @property
    def settings(self) -> QSettings:
        return self._settings

    def sync(self) -> None:
        self._settings.sync()

    # ── helpers ─────────────────────────────────────────────────────

    def _int(self, key: str, default: int) -> int:
        raw = self._settings.value(key, default)
        try:
            return int(raw)
        except (TypeError, ValueError):
            logger.warning("Bad %s in settings: %r, using %s", key, raw, default)
            return default

    def _float(self, key: str, default: float) -> float:
        raw = self._settings.value(key, default)
        try:
            return float(raw)
        except (TypeError, ValueError):
            logger.warning("Bad %s in settings: %r, using %s", key, raw, default)
            return default

    def _enum(self, key: str, enum_cls, default):
        raw = self._settings.value(key, default.value)
        try:
            return enum_cls(str(raw))
        except ValueError:
            logger.warning("Bad %s in settings: %r, using %s", key, raw, default.value)
            return default

    # ── recording ───────────────────────────────────────────────────

    @property
    def countdown_seconds(self) -> int:
        value = self._int("countdownSeconds", DEFAULT_COUNTDOWN_SECONDS)
        return value if value >= 0 else DEFAULT_COUNTDOWN_SECONDS

    @countdown_seconds.setter
    def countdown_seconds(self, seconds: int) -> None:
        self._settings.setValue("countdownSeconds", max(0, int(seconds)))

    @property
    def poll_interval_ms(self) -> int:
        value = self._int("pollIntervalMs", DEFAULT_POLL_INTERVAL_MS)
        return value if value > 0 else DEFAULT_POLL_INTERVAL_MS

    # ── export ──────────────────────────────────────────────────────

    @property
    def watermark(self) -> bool:
        return _to_bool(self._settings.value("watermark", True), True)

    @watermark.setter
    def watermark(self, enabled: bool) -> None:
        self._settings.setValue("watermark", bool(enabled))

    @property
    def export_format(self) -> ExportFormat:
        return self._enum("exportFormat", ExportFormat, ExportFormat.MP4)

    @export_format.setter
    def export_format(self, fmt: ExportFormat) -> None:
        self._settings.setValue("exportFormat", fmt.value)

    @property
    def export_quality(self) -> ExportQuality:
        return self._enum("exportQuality", ExportQuality, ExportQuality.MEDIUM)

    @export_quality.setter
    def export_quality(self, quality: ExportQuality) -> None:
        self._settings.setValue("exportQuality", quality.value)

    @property
    def pipeline_timeout_s(self) -> float:
        value = self._float("pipelineTimeoutS", DEFAULT_PIPELINE_TIMEOUT_S)
        return value if value > 0 else DEFAULT_PIPELINE_TIMEOUT_S

    # ── audio ───────────────────────────────────────────────────────

    @property
    def system_volume(self) -> float:
        return clamp(self._float("systemVolume", 1.0), VOLUME_MIN, VOLUME_MAX)

    @system_volume.setter
    def system_volume(self, volume: float) -> None:
        self._settings.setValue("systemVolume", clamp(float(volume), VOLUME_MIN, VOLUME_MAX))

    @property
    def mic_volume(self) -> float:
        return clamp(self._float("micVolume", 1.0), VOLUME_MIN, VOLUME_MAX)

    @mic_volume.setter
    def mic_volume(self, volume: float) -> None:
        self._settings.setValue("micVolume", clamp(float(volume), VOLUME_MIN, VOLUME_MAX))

    @property
    def audio_source(self) -> AudioSource:
        return self._enum("audioSource", AudioSource, AudioSource.NONE)

    @audio_source.setter
    def audio_source(self, source: AudioSource) -> None:
        self._settings.setValue("audioSource", source.value)

    # ── backend ─────────────────────────────────────────────────────

    @property
    def backend_path(self) -> str:
        return str(self._settings.value("backendPath", "") or "")

    @backend_path.setter
    def backend_path(self, path: str) -> None:
        self._settings.setValue("backendPath", path)
