from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import Callable, Generator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from taskdesk.config import Settings
from taskdesk.database import RecordStore
from taskdesk.main import create_app
from taskdesk.migrations import apply_migrations
from taskdesk.records import ActivityRow


@pytest.fixture()
def app_settings(tmp_path: Path) -> Settings:
    return Settings(
        sqlite_path=tmp_path / "data" / "taskdesk.sqlite",
        export_dir=tmp_path / "exports",
        backup_dir_override=None,
        daily_target_minutes=480,
        working_days_per_week=5,
    )


@pytest.fixture()
def store(app_settings: Settings) -> Generator[RecordStore, None, None]:
    record_store = RecordStore(app_settings.sqlite_path)
    apply_migrations(record_store, existed=False)
    try:
        yield record_store
    finally:
        record_store.close()


@pytest.fixture()
def session(store: RecordStore) -> Generator[Session, None, None]:
    db = store.new_session()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(app_settings: Settings) -> Generator[TestClient, None, None]:
    app = create_app(app_settings)
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.state.store.close()


@pytest.fixture()
def make_row() -> Callable[..., ActivityRow]:
    def _make_row(
        date: dt.date | str,
        minutes: int,
        title: str = "Attività",
        client_name: Optional[str] = None,
        reference_verbale: Optional[str] = None,
        resource_icon: Optional[str] = None,
        description: Optional[str] = None,
        in_gestore: bool = False,
        verbale_done: bool = False,
    ) -> ActivityRow:
        if isinstance(date, str):
            date = dt.date.fromisoformat(date)
        return ActivityRow(
            date=date,
            client_name=client_name,
            title=title,
            description=description,
            minutes=minutes,
            reference_verbale=reference_verbale,
            resource_icon=resource_icon,
            in_gestore=in_gestore,
            verbale_done=verbale_done,
        )

    return _make_row
