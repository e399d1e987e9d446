from __future__ import annotations

import csv
import datetime as dt
import io
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from .backups import BackupManager
from .database import RecordStore
from .migrations import apply_migrations
from .models import (
    ACTIVITY_STATUSES,
    Activity,
    ActivityHistory,
    ActivityTemplate,
    Client,
    utcnow,
)
from .records import ActivityRow, row_from_model
from .state import RuntimeState
from .utils import blank_to_none, normalize_client_name, normalize_tags, parse_tags

logger = logging.getLogger(__name__)

MIN_ACTIVITY_MINUTES = 5
MAX_ACTIVITY_MINUTES = 12 * 60
RECENT_CLIENTS_LIMIT = 8
CLIENT_SEARCH_LIMIT = 20
ACTIVITY_SEARCH_LIMIT = 500
HISTORY_LIMIT = 5
DURATION_PATTERN_DAYS = 45
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def coerce_day(value: dt.date | str) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        raise _bad_request("Data non valida. Usa il formato YYYY-MM-DD.")
    try:
        return dt.date.fromisoformat(value)
    except ValueError as exc:
        raise _bad_request("Data non valida. Usa il formato YYYY-MM-DD.") from exc


def _validate_title(value: Optional[str]) -> str:
    if not value or not value.strip():
        raise _bad_request("Titolo obbligatorio.")
    return value


def _validate_minutes(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _bad_request("Minuti non validi.")
    if isinstance(value, float):
        if not value.is_integer():
            raise _bad_request("Minuti devono essere un numero intero.")
        value = int(value)
    if value < MIN_ACTIVITY_MINUTES or value > MAX_ACTIVITY_MINUTES:
        raise _bad_request(
            f"Minuti devono essere tra {MIN_ACTIVITY_MINUTES} e {MAX_ACTIVITY_MINUTES}."
        )
    return value


def _validate_status(value: str) -> str:
    if value not in ACTIVITY_STATUSES:
        raise _bad_request("Stato non valido.")
    return value


# ----------------------------------------------------------------------
# Clients
# ----------------------------------------------------------------------


def upsert_client(db: Session, name: str) -> Client:
    normalized = normalize_client_name(name)
    if not normalized:
        raise _bad_request("Nome cliente obbligatorio.")
    now = utcnow()
    client = db.query(Client).filter(func.lower(Client.name) == normalized.lower()).one_or_none()
    if client is None:
        client = Client(name=normalized, created_at=now, updated_at=now, last_used_at=now)
        db.add(client)
    else:
        client.updated_at = now
        client.last_used_at = now
    db.flush()
    return client


def list_clients(db: Session) -> List[Client]:
    return db.query(Client).order_by(Client.name.asc()).all()


def search_clients(db: Session, term: str) -> List[Client]:
    return (
        db.query(Client)
        .filter(Client.name.ilike(f"%{term}%"))
        .order_by(Client.name.asc())
        .limit(CLIENT_SEARCH_LIMIT)
        .all()
    )


def list_recent_clients(db: Session) -> List[Client]:
    return (
        db.query(Client)
        .filter(Client.last_used_at.isnot(None))
        .order_by(Client.last_used_at.desc())
        .limit(RECENT_CLIENTS_LIMIT)
        .all()
    )


def _read_csv(content: str) -> Tuple[List[str], List[Dict[str, str]]]:
    reader = csv.DictReader(io.StringIO(content.lstrip("﻿")))
    rows = [row for row in reader if any((value or "").strip() for value in row.values() if isinstance(value, str))]
    return list(reader.fieldnames or []), rows


def inspect_csv(content: str) -> Dict[str, Any]:
    headers, rows = _read_csv(content)
    sample = [{header: str(row.get(header) or "") for header in headers} for row in rows[:5]]
    return {"headers": headers, "sample": sample}


def import_clients_from_csv(db: Session, content: str, column: str) -> Dict[str, int]:
    headers, rows = _read_csv(content)
    if column not in headers:
        raise _bad_request(f"Colonna non trovata: {column}")
    inserted = 0
    skipped = 0
    seen: set[str] = set()
    for row in rows:
        normalized = normalize_client_name(row.get(column))
        if not normalized or normalized.lower() in seen:
            skipped += 1
            continue
        seen.add(normalized.lower())
        upsert_client(db, normalized)
        inserted += 1
    db.commit()
    return {"inserted": inserted, "skipped": skipped}


# ----------------------------------------------------------------------
# Activities
# ----------------------------------------------------------------------


def _activity_query(db: Session):
    return db.query(Activity).options(joinedload(Activity.client))


def get_activity(db: Session, activity_id: str) -> Activity:
    activity = _activity_query(db).filter(Activity.id == activity_id).one_or_none()
    if not activity:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attività non trovata")
    return activity


def create_activity(
    db: Session,
    day: dt.date | str,
    title: str,
    minutes: int,
    client_name: Optional[str] = None,
    description: Optional[str] = None,
    reference_verbale: Optional[str] = None,
    resource_icon: Optional[str] = None,
    tags: Optional[Iterable[str]] = None,
    status_value: Optional[str] = None,
    in_gestore: Optional[bool] = None,
    verbale_done: bool = False,
) -> Activity:
    activity_day = coerce_day(day)
    _validate_title(title)
    minutes = _validate_minutes(minutes)
    if status_value is None:
        status_value = "submitted" if in_gestore else "draft"
    _validate_status(status_value)
    if in_gestore is None:
        in_gestore = status_value == "submitted"

    client = upsert_client(db, client_name) if normalize_client_name(client_name) else None
    activity = Activity(
        date=activity_day,
        client_id=client.id if client else None,
        title=title,
        description=description,
        minutes=minutes,
        reference_verbale=reference_verbale,
        resource_icon=resource_icon,
        tags=normalize_tags(tags),
        status=status_value,
        in_gestore=bool(in_gestore),
        verbale_done=bool(verbale_done),
    )
    db.add(activity)
    db.commit()
    return get_activity(db, activity.id)


def _change_summary(previous: Dict[str, Any], current: Dict[str, Any]) -> Optional[str]:
    changes: List[str] = []
    if previous["title"] != current["title"]:
        changes.append("titolo")
    if (previous["description"] or "") != (current["description"] or ""):
        changes.append("descrizione")
    if previous["minutes"] != current["minutes"]:
        changes.append("minuti")
    if (previous["reference_verbale"] or "") != (current["reference_verbale"] or ""):
        changes.append("rif verbale")
    if (previous["resource_icon"] or "") != (current["resource_icon"] or ""):
        changes.append("risorsa")
    if previous["status"] != current["status"]:
        changes.append(f"stato {previous['status']}->{current['status']}")
    if previous["in_gestore"] != current["in_gestore"]:
        before = "SI" if previous["in_gestore"] else "NO"
        after = "SI" if current["in_gestore"] else "NO"
        changes.append(f"gestore {before}->{after}")
    if previous["verbale_done"] != current["verbale_done"]:
        changes.append("verbale")
    if not changes:
        return None
    return f"Aggiornato: {', '.join(changes)}"


_TRACKED_FIELDS = (
    "title",
    "description",
    "minutes",
    "reference_verbale",
    "resource_icon",
    "status",
    "in_gestore",
    "verbale_done",
)


def update_activity(db: Session, activity_id: str, updates: Dict[str, Any]) -> Activity:
    """Apply a partial update; keys absent from ``updates`` stay unchanged."""
    activity = get_activity(db, activity_id)
    previous = {name: getattr(activity, name) for name in _TRACKED_FIELDS}

    if updates.get("date") is not None:
        activity.date = coerce_day(updates["date"])
    if updates.get("title") is not None:
        activity.title = _validate_title(updates["title"])
    if updates.get("minutes") is not None:
        activity.minutes = _validate_minutes(updates["minutes"])
    if normalize_client_name(updates.get("client_name")):
        activity.client_id = upsert_client(db, updates["client_name"]).id
    for name in ("description", "reference_verbale", "resource_icon"):
        if name in updates:
            setattr(activity, name, updates[name])
    if updates.get("tags") is not None:
        activity.tags = normalize_tags(updates["tags"])

    requested_status = updates.get("status")
    requested_gestore = updates.get("in_gestore")
    if requested_status is not None:
        activity.status = _validate_status(requested_status)
    elif requested_gestore:
        activity.status = "submitted"
    if requested_gestore is not None:
        activity.in_gestore = bool(requested_gestore)
    elif requested_status is not None:
        activity.in_gestore = requested_status == "submitted"
    if updates.get("verbale_done") is not None:
        activity.verbale_done = bool(updates["verbale_done"])

    current = {name: getattr(activity, name) for name in _TRACKED_FIELDS}
    summary = _change_summary(previous, current)
    if summary:
        db.add(ActivityHistory(activity_id=activity.id, summary=summary, changed_at=utcnow()))
    activity.updated_at = utcnow()
    db.commit()
    return get_activity(db, activity_id)


def delete_activity(db: Session, activity_id: str) -> None:
    activity = get_activity(db, activity_id)
    db.delete(activity)
    db.commit()


def list_activities_by_date(db: Session, day: dt.date) -> List[Activity]:
    return (
        _activity_query(db)
        .filter(Activity.date == day)
        .order_by(Activity.created_at.asc())
        .all()
    )


def list_activity_history(db: Session, activity_id: str, limit: int = HISTORY_LIMIT) -> List[ActivityHistory]:
    return (
        db.query(ActivityHistory)
        .filter(ActivityHistory.activity_id == activity_id)
        .order_by(ActivityHistory.changed_at.desc())
        .limit(limit)
        .all()
    )


def search_activities(
    db: Session,
    text: Optional[str] = None,
    client: Optional[str] = None,
    status_value: Optional[str] = None,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    only_not_inserted: bool = False,
) -> List[Activity]:
    query = _activity_query(db).outerjoin(Client, Activity.client_id == Client.id)
    if start_date:
        query = query.filter(Activity.date >= start_date)
    if end_date:
        query = query.filter(Activity.date <= end_date)
    if text:
        like = f"%{text}%"
        query = query.filter(
            or_(
                Activity.title.ilike(like),
                Activity.description.ilike(like),
                Activity.reference_verbale.ilike(like),
            )
        )
    if client:
        query = query.filter(Client.name.ilike(f"%{client}%"))
    if status_value and status_value != "all":
        query = query.filter(Activity.status == _validate_status(status_value))
    if only_not_inserted:
        query = query.filter(Activity.in_gestore.is_(False))
    return (
        query.order_by(Activity.date.desc(), Activity.created_at.desc())
        .limit(ACTIVITY_SEARCH_LIMIT)
        .all()
    )


def duration_patterns(db: Session, days: int = DURATION_PATTERN_DAYS, today: Optional[dt.date] = None) -> List[int]:
    """Logged durations, most frequent first."""
    since = (today or dt.date.today()) - dt.timedelta(days=days)
    counts = func.count(Activity.id)
    rows = (
        db.query(Activity.minutes, counts)
        .filter(Activity.date >= since)
        .group_by(Activity.minutes)
        .order_by(counts.desc(), Activity.minutes.asc())
        .all()
    )
    return [int(minutes) for minutes, _count in rows]


def fetch_activity_rows(db: Session, start: dt.date, end: dt.date) -> List[ActivityRow]:
    activities = (
        _activity_query(db)
        .filter(Activity.date >= start, Activity.date <= end)
        .order_by(Activity.date.asc(), Activity.created_at.asc(), Activity.id.asc())
        .all()
    )
    return [row_from_model(activity) for activity in activities]


def activity_tags(activity: Activity) -> List[str]:
    return parse_tags(activity.tags)


# ----------------------------------------------------------------------
# Templates
# ----------------------------------------------------------------------


def list_templates(db: Session) -> List[ActivityTemplate]:
    return (
        db.query(ActivityTemplate)
        .order_by(
            func.coalesce(ActivityTemplate.last_used_at, ActivityTemplate.updated_at).desc(),
            ActivityTemplate.title.asc(),
        )
        .all()
    )


def get_template(db: Session, template_id: str) -> ActivityTemplate:
    template = db.query(ActivityTemplate).filter(ActivityTemplate.id == template_id).one_or_none()
    if not template:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Preset non trovato")
    return template


def create_template(
    db: Session,
    title: str,
    minutes: int,
    client_name: Optional[str] = None,
    description: Optional[str] = None,
    reference_verbale: Optional[str] = None,
    resource_icon: Optional[str] = None,
    tags: Optional[Iterable[str]] = None,
) -> ActivityTemplate:
    _validate_title(title)
    minutes = _validate_minutes(minutes)
    template = ActivityTemplate(
        title=title,
        client_name=normalize_client_name(client_name),
        description=description,
        minutes=minutes,
        reference_verbale=reference_verbale,
        resource_icon=resource_icon,
        tags=normalize_tags(tags),
        used_count=0,
    )
    db.add(template)
    db.commit()
    db.refresh(template)
    return template


def delete_template(db: Session, template_id: str) -> None:
    template = get_template(db, template_id)
    db.delete(template)
    db.commit()


def use_template(db: Session, template_id: str) -> ActivityTemplate:
    template = get_template(db, template_id)
    template.used_count = (template.used_count or 0) + 1
    template.last_used_at = utcnow()
    db.commit()
    db.refresh(template)
    return template


# ----------------------------------------------------------------------
# Settings
# ----------------------------------------------------------------------


def update_runtime_settings(db: Session, state: RuntimeState, updates: dict) -> dict:
    normalized = dict(updates)
    if "backup_dir" in normalized:
        normalized["backup_dir"] = blank_to_none(normalized["backup_dir"])
    if normalized.get("working_days_per_week") is not None and int(normalized["working_days_per_week"]) not in (5, 6, 7):
        raise _bad_request("Giorni lavorativi devono essere 5, 6 o 7.")
    state.apply(normalized)
    snapshot = state.snapshot()
    state.persist(db, {key: snapshot[key] for key in normalized if key in snapshot})
    return snapshot


# ----------------------------------------------------------------------
# Backups
# ----------------------------------------------------------------------


def restore_database(store: RecordStore, manager: BackupManager, snapshot: Path) -> Path:
    """Swap the live database for ``snapshot`` and reopen the store handle.

    Older snapshots are brought up to the current schema once reopened.
    """
    snapshot = Path(snapshot)
    if not snapshot.is_file():
        return manager.restore_backup(snapshot)
    store.close()
    try:
        restored = manager.restore_backup(snapshot)
    finally:
        store.open()
    logger.info("Record store reopened after restore from %s", snapshot.name)
    apply_migrations(store, lambda: manager.create_checkpoint("migration"), existed=True)
    return restored
