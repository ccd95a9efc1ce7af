from __future__ import annotations

import json
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

from .paths import get_backups_dir, get_default_settings_paths, get_store_db_path
from .settings_schema import SETTINGS_VALIDATOR

__all__ = [
    "DEFAULT_SETTINGS",
    "SETTINGS_VERSION",
    "SettingsProvider",
    "load_settings",
    "merge_defaults",
    "save_settings",
]

SETTINGS_VERSION = 2

MAX_BACKUP_FILES_LIMIT = 100
MAX_AUTO_BACKUP_INTERVAL_HOURS = 168
_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


DEFAULT_SETTINGS: Dict[str, Any] = {
    "version": SETTINGS_VERSION,
    "store_db": None,
    "backup": {
        "directory": None,
        "max_backup_files": 30,
        "file_prefix": "Lab",
        "file_extension": "db",
        "pre_restore_backup": True,
        "lock_timeout_s": 120,
        "auto_backup": {
            "enabled": True,
            "interval_hours": 24,
        },
    },
    "logging": {
        "level": "INFO",
    },
}


def merge_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    def _merge(default: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, value in default.items():
            if isinstance(value, dict):
                current = payload.get(key)
                if isinstance(current, dict):
                    result[key] = _merge(value, current)
                else:
                    result[key] = _merge(value, {})
            else:
                result[key] = payload.get(key, value)
        for key, value in payload.items():
            if key not in result:
                result[key] = value
        return result

    return _merge(DEFAULT_SETTINGS, data or {})


def _apply_migrations(settings: Dict[str, Any]) -> Dict[str, Any]:
    version = settings.get("version")
    try:
        version_int = int(version)
    except (TypeError, ValueError):
        version_int = 0
    if version_int < 2:
        # v1 kept the backup location and retention count at the top level.
        backup = settings.get("backup")
        if not isinstance(backup, dict):
            backup = settings["backup"] = {}
        legacy_path = settings.pop("backup_path", None)
        if legacy_path and not backup.get("directory"):
            backup["directory"] = legacy_path
        legacy_max = settings.pop("max_backup_files", None)
        if legacy_max is not None:
            backup["max_backup_files"] = legacy_max
    settings["version"] = SETTINGS_VERSION
    return settings


def _log_unknown_keys(settings: Dict[str, Any], working_dir: Path) -> None:
    unknown = list(SETTINGS_VALIDATOR.unknown_keys(settings))
    if not unknown:
        return
    logs_dir = working_dir / "logs"
    payload = {
        "ts": time.time(),
        "unknown": unknown,
    }
    target = logs_dir / "settings_unknown.json"
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
    except OSError:
        return


def load_settings(working_dir: Path) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for candidate in get_default_settings_paths(working_dir):
        try:
            with open(candidate, "r", encoding="utf-8") as handle:
                loaded = json.load(handle)
        except FileNotFoundError:
            continue
        except json.JSONDecodeError:
            continue
        except OSError:
            continue
        if isinstance(loaded, dict):
            data = loaded
            break
    merged = merge_defaults(_apply_migrations(dict(data)))
    merged.setdefault("working_dir", str(working_dir))
    _log_unknown_keys(merged, working_dir)
    return merged


def save_settings(settings: Dict[str, Any], working_dir: Path) -> None:
    merged = merge_defaults(_apply_migrations(dict(settings)))
    merged.setdefault("working_dir", str(working_dir))
    path = working_dir / "settings.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(merged, handle, ensure_ascii=False, indent=2)


def _clamp_int(value: Any, default: int, *, minimum: int, maximum: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(minimum, min(maximum, number))


class SettingsProvider:
    """Typed read access to the ``backup`` settings block."""

    def __init__(self, working_dir: Path, settings: Optional[Dict[str, Any]] = None) -> None:
        self._working_dir = Path(working_dir)
        if settings is None:
            settings = load_settings(self._working_dir)
        self._settings = merge_defaults(dict(settings))

    @property
    def working_dir(self) -> Path:
        return self._working_dir

    @property
    def raw(self) -> Dict[str, Any]:
        return self._settings

    def _backup(self) -> Dict[str, Any]:
        block = self._settings.get("backup")
        return block if isinstance(block, dict) else {}

    def _resolve(self, value: str) -> Path:
        path = Path(os.path.expandvars(os.path.expanduser(value)))
        if not path.is_absolute():
            path = self._working_dir / path
        return path

    def get_store_path(self) -> Path:
        value = self._settings.get("store_db")
        if isinstance(value, str) and value.strip():
            return self._resolve(value.strip())
        return get_store_db_path(self._working_dir)

    def get_backup_directory(self) -> Path:
        value = self._backup().get("directory")
        if isinstance(value, str) and value.strip():
            return self._resolve(value.strip())
        return get_backups_dir(self._working_dir)

    def get_max_backup_files(self) -> int:
        default = DEFAULT_SETTINGS["backup"]["max_backup_files"]
        return _clamp_int(
            self._backup().get("max_backup_files"),
            default,
            minimum=1,
            maximum=MAX_BACKUP_FILES_LIMIT,
        )

    def get_file_prefix(self) -> str:
        value = self._backup().get("file_prefix")
        return str(value).strip() if value else DEFAULT_SETTINGS["backup"]["file_prefix"]

    def get_file_extension(self) -> str:
        value = self._backup().get("file_extension")
        text = str(value).strip().lstrip(".") if value else ""
        return text or DEFAULT_SETTINGS["backup"]["file_extension"]

    def pre_restore_backup_enabled(self) -> bool:
        return bool(self._backup().get("pre_restore_backup", True))

    def get_lock_timeout(self) -> float:
        try:
            timeout = float(self._backup().get("lock_timeout_s"))
        except (TypeError, ValueError):
            return float(DEFAULT_SETTINGS["backup"]["lock_timeout_s"])
        return timeout if timeout > 0 else float(DEFAULT_SETTINGS["backup"]["lock_timeout_s"])

    def auto_backup_enabled(self) -> bool:
        auto = self._backup().get("auto_backup")
        return bool(auto.get("enabled", True)) if isinstance(auto, dict) else True

    def get_auto_backup_interval_hours(self) -> int:
        auto = self._backup().get("auto_backup")
        value = auto.get("interval_hours") if isinstance(auto, dict) else None
        return _clamp_int(value, 24, minimum=1, maximum=MAX_AUTO_BACKUP_INTERVAL_HOURS)

    def set_auto_backup(self, enabled: bool, interval_hours: int) -> None:
        auto = self._backup().setdefault("auto_backup", {})
        auto["enabled"] = bool(enabled)
        auto["interval_hours"] = _clamp_int(
            interval_hours, 24, minimum=1, maximum=MAX_AUTO_BACKUP_INTERVAL_HOURS
        )
        save_settings(self._settings, self._working_dir)

    def get_log_level(self) -> str:
        block = self._settings.get("logging")
        value = block.get("level") if isinstance(block, dict) else None
        level = str(value or "").strip().upper()
        return level if level in _LOG_LEVELS else DEFAULT_SETTINGS["logging"]["level"]

    def set_backup_directory(self, path: Path) -> None:
        self._backup()["directory"] = str(path)
        save_settings(self._settings, self._working_dir)
