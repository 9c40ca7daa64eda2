from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

from petwatch.errors import ConfigurationError
from petwatch.util.logging import get_logger
from petwatch.util.paths import bootstrap_config_path, ensure_data_tree, resolve_data_dir

from .defaults import APP_VERSION, default_data_dir
from .schema import AppSettings, DetectionSettings, merge_config

logger = get_logger(__name__)


class SettingsStore:
    def __init__(self, cli_data_dir: str | None = None) -> None:
        self._lock = threading.RLock()
        self.bootstrap_path = bootstrap_config_path()
        self.bootstrap_path.parent.mkdir(parents=True, exist_ok=True)
        bootstrap = self._read_json(self.bootstrap_path, default={})

        configured = bootstrap.get("data_dir")
        chosen_dir = resolve_data_dir(cli_data_dir or configured or str(default_data_dir()))
        self._data_tree = ensure_data_tree(chosen_dir)

        self.settings_path = self._data_tree["config"] / "settings.json"
        raw_settings = self._read_json(self.settings_path, default={})
        migrated = migrate_settings(raw_settings, str(chosen_dir))
        self._settings = AppSettings.model_validate(migrated)
        self._settings.data_dir = str(chosen_dir)
        self.save()
        self._write_json(self.bootstrap_path, {"data_dir": str(chosen_dir)})

    @property
    def settings(self) -> AppSettings:
        return self._settings

    @property
    def data_tree(self) -> dict[str, Path]:
        return self._data_tree

    def update(self, **changes: Any) -> AppSettings:
        with self._lock:
            self._settings = merge_config(self._settings, changes)
            self.save()
            return self._settings

    def update_detection(self, detection: DetectionSettings) -> AppSettings:
        try:
            return self.update(detection=detection.model_dump())
        except ConfigurationError:
            logger.exception("rejected detection settings while persisting")
            raise

    def save(self) -> None:
        with self._lock:
            payload = self._settings.model_dump(mode="json")
            self._write_json(self.settings_path, payload)

    @staticmethod
    def _read_json(path: Path, default: dict[str, Any]) -> dict[str, Any]:
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("ignoring unreadable settings file: %s", path)
            return default

    @staticmethod
    def _write_json(path: Path, payload: dict[str, Any]) -> None:
        path.write_text(json.dumps(payload, ensure_ascii=True, indent=2), encoding="utf-8")


def migrate_settings(raw: dict[str, Any], data_dir: str) -> dict[str, Any]:
    if not raw:
        return {
            "version": APP_VERSION,
            "data_dir": data_dir,
            "detection": DetectionSettings().model_dump(),
        }

    raw.setdefault("version", APP_VERSION)
    raw.setdefault("data_dir", data_dir)
    raw.setdefault("detection", DetectionSettings().model_dump())
    for section in ("policy", "motion", "sound", "recording", "camera", "channel"):
        if not isinstance(raw.get(section), dict):
            raw.pop(section, None)
    return raw
