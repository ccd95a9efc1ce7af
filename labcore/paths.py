from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

__all__ = [
    "get_backups_dir",
    "get_catalog_db_path",
    "get_data_dir",
    "get_default_settings_paths",
    "get_logs_dir",
    "get_store_db_path",
    "resolve_working_dir",
]

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_DEFAULT_HOME = ".labbackup"


def _expand_path(value: str) -> Path:
    expanded = os.path.expandvars(os.path.expanduser(value))
    return Path(expanded).resolve()


def _ensure_writable_dir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    test_file = path / f".write_test_{os.getpid()}"
    try:
        with open(test_file, "w", encoding="utf-8") as handle:
            handle.write("ok")
        test_file.unlink(missing_ok=True)
        return True
    except OSError:
        try:
            if test_file.exists():
                test_file.unlink()
        except OSError:  # pragma: no cover - best effort cleanup
            pass
        return False


def _prepare_working_dir(candidate: Path) -> Optional[Path]:
    if not _ensure_writable_dir(candidate):
        return None
    try:
        get_data_dir(candidate).mkdir(parents=True, exist_ok=True)
        return candidate
    except OSError:
        return None


def resolve_working_dir() -> Path:
    """Resolve the working directory, creating it if required."""

    env_home = os.environ.get("LABBACKUP_HOME")
    if env_home:
        try:
            env_path: Optional[Path] = _expand_path(env_home)
        except (OSError, RuntimeError):
            env_path = None
        if env_path:
            prepared = _prepare_working_dir(env_path)
            if prepared is not None:
                return prepared

    prepared = _prepare_working_dir(Path.home() / _DEFAULT_HOME)
    if prepared is not None:
        return prepared

    fallback = _PROJECT_ROOT / "work"
    get_data_dir(fallback).mkdir(parents=True, exist_ok=True)
    return fallback


def get_data_dir(working_dir: Path) -> Path:
    return working_dir / "data"


def get_store_db_path(working_dir: Path) -> Path:
    return get_data_dir(working_dir) / "lab.db"


def get_catalog_db_path(working_dir: Path) -> Path:
    return get_data_dir(working_dir) / "backup_catalog.db"


def get_logs_dir(working_dir: Path) -> Path:
    return working_dir / "logs"


def get_backups_dir(working_dir: Path) -> Path:
    return working_dir / "Backups"


def get_default_settings_paths(working_dir: Path) -> list[Path]:
    """Return the search order for settings.json files."""

    return [working_dir / "settings.json", _PROJECT_ROOT / "settings.json"]
