import sqlite3

import pytest

from labcore.db import LiveStore, connect, count_user_rows


def test_live_store_open_close_idempotent(store_path):
    store = LiveStore(store_path)

    first = store.open()
    assert store.open() is first
    assert store.is_open
    assert store.probe() == 2

    store.close()
    store.close()
    assert not store.is_open
    assert store.connection is not None
    store.close()


def test_live_store_stays_single_file(store_path):
    with LiveStore(store_path) as store:
        store.connection.execute("INSERT INTO patients(name) VALUES ('x')")
        mode = store.connection.execute("PRAGMA journal_mode").fetchone()[0]

    assert mode.lower() != "wal"
    assert not store_path.with_name(store_path.name + "-wal").exists()


def test_read_only_connection_rejects_writes(store_path):
    conn = connect(store_path, read_only=True)
    try:
        assert count_user_rows(conn) == 6
        with pytest.raises(sqlite3.OperationalError):
            conn.execute("INSERT INTO patients(name) VALUES ('nope')")
    finally:
        conn.close()
