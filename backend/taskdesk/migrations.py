from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import inspect, text

from . import models
from .database import RecordStore

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 4

# Columns added after the first releases; older files get them via ALTER TABLE.
LEGACY_COLUMNS: Dict[str, List[Tuple[str, str]]] = {
    "activities": [
        ("status", "VARCHAR(20) NOT NULL DEFAULT 'draft'"),
        ("in_gestore", "BOOLEAN NOT NULL DEFAULT 0"),
        ("verbale_done", "BOOLEAN NOT NULL DEFAULT 0"),
    ],
    "clients": [
        ("last_used_at", "DATETIME"),
    ],
}


def _current_version(store: RecordStore) -> int:
    inspector = inspect(store.engine)
    if "schema_version" not in inspector.get_table_names():
        return 0
    with store.engine.connect() as connection:
        value = connection.execute(text("SELECT version FROM schema_version WHERE id = 1")).scalar()
    return int(value or 0)


def _pending_column_statements(store: RecordStore) -> List[str]:
    inspector = inspect(store.engine)
    tables = set(inspector.get_table_names())
    statements: List[str] = []
    for table, columns in LEGACY_COLUMNS.items():
        if table not in tables:
            continue
        existing = {column["name"] for column in inspector.get_columns(table)}
        for name, ddl in columns:
            if name not in existing:
                statements.append(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}")
    return statements


def apply_migrations(
    store: RecordStore,
    checkpoint: Optional[Callable[[], object]] = None,
    *,
    existed: bool = True,
) -> int:
    """Bring the schema up to ``SCHEMA_VERSION``.

    ``checkpoint`` runs once before any change to a database that already
    existed on disk.
    """
    version = _current_version(store)
    if version >= SCHEMA_VERSION:
        return version

    has_tables = bool(inspect(store.engine).get_table_names())
    if existed and has_tables and checkpoint is not None:
        checkpoint()

    statements = _pending_column_statements(store)
    if statements:
        with store.engine.begin() as connection:
            for statement in statements:
                logger.info("Applying migration: %s", statement)
                connection.execute(text(statement))
        if any(statement.startswith("ALTER TABLE activities ADD COLUMN status") for statement in statements):
            with store.engine.begin() as connection:
                connection.execute(text("UPDATE activities SET status = 'submitted' WHERE in_gestore = 1"))

    models.Base.metadata.create_all(bind=store.engine)
    with store.engine.begin() as connection:
        connection.execute(
            text("INSERT OR IGNORE INTO schema_version (id, version) VALUES (1, 0)")
        )
        connection.execute(
            text("UPDATE schema_version SET version = :version WHERE id = 1"),
            {"version": SCHEMA_VERSION},
        )
    logger.info("Schema migrated from version %d to %d", version, SCHEMA_VERSION)
    return SCHEMA_VERSION
