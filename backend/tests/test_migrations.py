from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy import inspect, text

from taskdesk.backups import is_snapshot_name
from taskdesk.config import Settings
from taskdesk.database import RecordStore
from taskdesk.main import create_app
from taskdesk.migrations import SCHEMA_VERSION, apply_migrations

LEGACY_SCHEMA = (
    """
    CREATE TABLE clients (
        id VARCHAR(36) PRIMARY KEY,
        name VARCHAR(200) NOT NULL UNIQUE,
        created_at DATETIME NOT NULL,
        updated_at DATETIME NOT NULL
    )
    """,
    """
    CREATE TABLE activities (
        id VARCHAR(36) PRIMARY KEY,
        date DATE NOT NULL,
        client_id VARCHAR(36),
        title VARCHAR(300) NOT NULL,
        description TEXT,
        minutes INTEGER NOT NULL,
        reference_verbale VARCHAR(120),
        resource_icon VARCHAR(120),
        tags TEXT,
        in_gestore BOOLEAN NOT NULL DEFAULT 0,
        created_at DATETIME NOT NULL,
        updated_at DATETIME NOT NULL
    )
    """,
    """
    INSERT INTO activities (id, date, title, minutes, in_gestore, created_at, updated_at)
    VALUES ('a1', '2025-11-03', 'Vecchia', 30, 1, '2025-11-03 08:00:00', '2025-11-03 08:00:00')
    """,
)


def _legacy_store(path) -> RecordStore:
    store = RecordStore(path)
    with store.engine.begin() as connection:
        for statement in LEGACY_SCHEMA:
            connection.execute(text(statement))
    return store


def test_fresh_database_skips_checkpoint(tmp_path):
    calls = []
    store = RecordStore(tmp_path / "nuovo.sqlite")
    try:
        assert apply_migrations(store, lambda: calls.append(1), existed=False) == SCHEMA_VERSION
        assert calls == []
        assert "activity_templates" in inspect(store.engine).get_table_names()
    finally:
        store.close()


def test_legacy_database_is_upgraded_once(tmp_path):
    calls = []
    store = _legacy_store(tmp_path / "vecchio.sqlite")
    try:
        apply_migrations(store, lambda: calls.append(1))
        assert calls == [1]
        columns = {column["name"] for column in inspect(store.engine).get_columns("activities")}
        assert {"status", "verbale_done"} <= columns
        with store.engine.connect() as connection:
            status = connection.execute(text("SELECT status FROM activities WHERE id = 'a1'")).scalar()
        assert status == "submitted"

        apply_migrations(store, lambda: calls.append(1))
        assert calls == [1]
    finally:
        store.close()


def test_startup_takes_migration_checkpoint(tmp_path):
    app_settings = Settings(sqlite_path=tmp_path / "data" / "taskdesk.sqlite", export_dir=tmp_path / "exports")
    app_settings.sqlite_path.parent.mkdir(parents=True)
    _legacy_store(app_settings.sqlite_path).close()

    app = create_app(app_settings)
    app.state.store.close()

    names = {path.name for path in app_settings.backup_dir.iterdir()}
    checkpoints = [name for name in names if is_snapshot_name(name) and name.startswith("taskdesk-migration-")]
    assert len(checkpoints) == 1
    assert {checkpoints[0] + "-wal", checkpoints[0] + "-shm"} <= names


def test_restoring_legacy_checkpoint_migrates_live_store(tmp_path):
    app_settings = Settings(sqlite_path=tmp_path / "data" / "taskdesk.sqlite", export_dir=tmp_path / "exports")
    app_settings.sqlite_path.parent.mkdir(parents=True)
    _legacy_store(app_settings.sqlite_path).close()

    app = create_app(app_settings)
    try:
        with TestClient(app) as client:
            checkpoint = next(
                item["name"] for item in client.get("/backups").json() if item["name"].startswith("taskdesk-migration-")
            )
            restored = client.post("/backups/restore", json={"name": checkpoint})
            assert restored.status_code == 200, restored.text
            assert restored.json()["daily_target_minutes"] == app_settings.daily_target_minutes

            daily = client.get("/summaries/daily", params={"day": "2025-11-03"})
            assert daily.status_code == 200, daily.text
            assert daily.json()["total_minutes"] == 30
            created = client.post("/activities", json={"date": "2025-11-04", "title": "Nuova", "minutes": 15})
            assert created.status_code == 201, created.text
    finally:
        app.state.store.close()

    store = RecordStore(app_settings.sqlite_path)
    try:
        with store.engine.connect() as connection:
            version = connection.execute(text("SELECT version FROM schema_version WHERE id = 1")).scalar()
    finally:
        store.close()
    assert version == SCHEMA_VERSION
