from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from labbackup.api import BackupService
from labbackup.catalog import BackupCatalog
from labbackup.logs import BackupLogger
from labcore.db import LiveStore
from labcore.settings import SettingsProvider


class StepClock:
    """Deterministic clock advancing one minute per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        value = self.current
        self.current = value + timedelta(minutes=1)
        return value


def init_store(path: Path, rows: int = 3) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        conn.execute("CREATE TABLE IF NOT EXISTS patients(id INTEGER PRIMARY KEY, name TEXT)")
        conn.execute("CREATE TABLE IF NOT EXISTS results(id INTEGER PRIMARY KEY, value REAL)")
        for index in range(rows):
            conn.execute("INSERT INTO patients(name) VALUES (?)", (f"patient-{index}",))
            conn.execute("INSERT INTO results(value) VALUES (?)", (index * 1.5,))
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def working_dir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def store_path(working_dir: Path) -> Path:
    path = working_dir / "data" / "lab.db"
    init_store(path)
    return path


@pytest.fixture
def live_store(store_path: Path):
    store = LiveStore(store_path)
    store.open()
    yield store
    store.close()


@pytest.fixture
def settings(working_dir: Path) -> SettingsProvider:
    return SettingsProvider(
        working_dir,
        {"backup": {"max_backup_files": 5, "lock_timeout_s": 5}},
    )


@pytest.fixture
def catalog():
    memory = BackupCatalog(sqlite3.connect(":memory:", check_same_thread=False))
    yield memory
    memory.close()


@pytest.fixture
def logger(working_dir: Path) -> BackupLogger:
    return BackupLogger(working_dir)


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def service(live_store, working_dir, settings, catalog, logger, clock) -> BackupService:
    return BackupService(
        live_store,
        working_dir=working_dir,
        settings=settings,
        catalog=catalog,
        logger=logger,
        clock=clock,
    )


@pytest.fixture
def make_store():
    return init_store
