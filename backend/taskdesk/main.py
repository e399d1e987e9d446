from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, PlainTextResponse
from sqlalchemy.orm import Session

from .backups import BackupError, BackupManager, RetentionPolicy, is_snapshot_name, snapshot_instant
from .config import Settings, ensure_directories, settings
from .database import RecordStore, get_db, get_store
from .exports import export_range, gestore_text, get_export
from .migrations import apply_migrations
from .schemas import (
    ActivityCreateRequest,
    ActivityHistoryResponse,
    ActivityResponse,
    ActivityUpdateRequest,
    BackupResponse,
    BackupRestoreRequest,
    ClientCreateRequest,
    ClientImportPreview,
    ClientImportRequest,
    ClientImportResult,
    ClientResponse,
    DailySummaryResponse,
    ExportRequest,
    ExportResponse,
    GapReportResponse,
    RangeSummaryResponse,
    RotationResponse,
    SettingsResponse,
    SettingsUpdateRequest,
    SlotSuggestionResponse,
    TemplateCreateRequest,
    TemplateResponse,
)
from .services import (
    create_activity,
    create_template,
    delete_activity,
    delete_template,
    duration_patterns,
    fetch_activity_rows,
    import_clients_from_csv,
    inspect_csv,
    list_activities_by_date,
    list_activity_history,
    list_clients,
    list_recent_clients,
    list_templates,
    restore_database,
    search_activities,
    search_clients,
    update_activity,
    update_runtime_settings,
    upsert_client,
    use_template,
)
from .state import RuntimeState
from .summaries import get_daily_summary, get_monthly_summary, get_range_summary, get_weekly_summary, month_bounds
from .targets import HORIZONS, build_gap_report, day_gap, horizon_bounds, smart_slots

logger = logging.getLogger(__name__)

router = APIRouter()

EXPORT_MEDIA_TYPES = {
    "pdf": "application/pdf",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "txt": "text/plain; charset=utf-8",
}


def get_runtime_state(request: Request) -> RuntimeState:
    return request.app.state.runtime_state


def get_backup_manager(request: Request) -> BackupManager:
    app_settings: Settings = request.app.state.settings
    state = get_runtime_state(request)
    return BackupManager(
        get_store(request).path,
        state.effective_backup_dir,
        policy=retention_policy(app_settings),
    )


def retention_policy(app_settings: Settings) -> RetentionPolicy:
    return RetentionPolicy(
        daily_keep=app_settings.backup_daily_keep,
        weekly_keep=app_settings.backup_weekly_keep,
        monthly_keep=app_settings.backup_monthly_keep,
    )


def _settings_response(state: RuntimeState) -> SettingsResponse:
    snapshot = state.snapshot()
    return SettingsResponse(**snapshot, effective_backup_dir=str(state.effective_backup_dir))


def _month_range(month: str) -> tuple[dt.date, dt.date]:
    try:
        return month_bounds(month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Mese non valido. Usa il formato YYYY-MM.") from exc


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


# ----------------------------------------------------------------------
# Clients
# ----------------------------------------------------------------------


@router.get("/clients", response_model=list[ClientResponse])
def clients_list(db: Session = Depends(get_db)) -> list[ClientResponse]:
    return list_clients(db)


@router.post("/clients", response_model=ClientResponse, status_code=status.HTTP_201_CREATED)
def clients_create(payload: ClientCreateRequest, db: Session = Depends(get_db)) -> ClientResponse:
    client = upsert_client(db, payload.name)
    db.commit()
    db.refresh(client)
    return client


@router.get("/clients/recent", response_model=list[ClientResponse])
def clients_recent(db: Session = Depends(get_db)) -> list[ClientResponse]:
    return list_recent_clients(db)


@router.get("/clients/search", response_model=list[ClientResponse])
def clients_search(q: str = "", db: Session = Depends(get_db)) -> list[ClientResponse]:
    return search_clients(db, q)


@router.post("/clients/import/preview", response_model=ClientImportPreview)
def clients_import_preview(payload: ClientImportRequest) -> ClientImportPreview:
    return ClientImportPreview(**inspect_csv(payload.content))


@router.post("/clients/import", response_model=ClientImportResult)
def clients_import(payload: ClientImportRequest, db: Session = Depends(get_db)) -> ClientImportResult:
    if not payload.column:
        raise HTTPException(status_code=400, detail="Colonna obbligatoria.")
    return ClientImportResult(**import_clients_from_csv(db, payload.content, payload.column))


# ----------------------------------------------------------------------
# Activities
# ----------------------------------------------------------------------


@router.get("/activities", response_model=list[ActivityResponse])
def activities_for_day(day: dt.date, db: Session = Depends(get_db)) -> list[ActivityResponse]:
    return list_activities_by_date(db, day)


@router.post("/activities", response_model=ActivityResponse, status_code=status.HTTP_201_CREATED)
def activities_create(payload: ActivityCreateRequest, db: Session = Depends(get_db)) -> ActivityResponse:
    return create_activity(
        db,
        payload.date,
        payload.title,
        payload.minutes,
        client_name=payload.client_name,
        description=payload.description,
        reference_verbale=payload.reference_verbale,
        resource_icon=payload.resource_icon,
        tags=payload.tags,
        status_value=payload.status,
        in_gestore=payload.in_gestore,
        verbale_done=payload.verbale_done,
    )


@router.get("/activities/search", response_model=list[ActivityResponse])
def activities_search(
    text: Optional[str] = None,
    client: Optional[str] = None,
    status_filter: Optional[str] = Query(default=None, alias="status"),
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    only_not_inserted: bool = False,
    db: Session = Depends(get_db),
) -> list[ActivityResponse]:
    return search_activities(db, text, client, status_filter, start_date, end_date, only_not_inserted)


@router.patch("/activities/{activity_id}", response_model=ActivityResponse)
def activities_update(
    activity_id: str,
    payload: ActivityUpdateRequest,
    db: Session = Depends(get_db),
) -> ActivityResponse:
    return update_activity(db, activity_id, payload.model_dump(exclude_unset=True))


@router.delete("/activities/{activity_id}", status_code=status.HTTP_204_NO_CONTENT)
def activities_delete(activity_id: str, db: Session = Depends(get_db)) -> Response:
    delete_activity(db, activity_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/activities/{activity_id}/history", response_model=list[ActivityHistoryResponse])
def activities_history(activity_id: str, db: Session = Depends(get_db)) -> list[ActivityHistoryResponse]:
    return list_activity_history(db, activity_id)


# ----------------------------------------------------------------------
# Templates
# ----------------------------------------------------------------------


@router.get("/templates", response_model=list[TemplateResponse])
def templates_list(db: Session = Depends(get_db)) -> list[TemplateResponse]:
    return list_templates(db)


@router.post("/templates", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
def templates_create(payload: TemplateCreateRequest, db: Session = Depends(get_db)) -> TemplateResponse:
    return create_template(
        db,
        payload.title,
        payload.minutes,
        client_name=payload.client_name,
        description=payload.description,
        reference_verbale=payload.reference_verbale,
        resource_icon=payload.resource_icon,
        tags=payload.tags,
    )


@router.delete("/templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
def templates_delete(template_id: str, db: Session = Depends(get_db)) -> Response:
    delete_template(db, template_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/templates/{template_id}/use", response_model=TemplateResponse)
def templates_use(template_id: str, db: Session = Depends(get_db)) -> TemplateResponse:
    return use_template(db, template_id)


# ----------------------------------------------------------------------
# Summaries and gaps
# ----------------------------------------------------------------------


@router.get("/summaries/daily", response_model=DailySummaryResponse)
def summaries_daily(day: dt.date, db: Session = Depends(get_db)) -> DailySummaryResponse:
    return get_daily_summary(db, day)


@router.get("/summaries/weekly", response_model=RangeSummaryResponse)
def summaries_weekly(day: dt.date, db: Session = Depends(get_db)) -> RangeSummaryResponse:
    return get_weekly_summary(db, day)


@router.get("/summaries/monthly", response_model=RangeSummaryResponse)
def summaries_monthly(month: str, db: Session = Depends(get_db)) -> RangeSummaryResponse:
    _month_range(month)
    return get_monthly_summary(db, month)


@router.get("/summaries/range", response_model=RangeSummaryResponse)
def summaries_range(start_date: dt.date, end_date: dt.date, db: Session = Depends(get_db)) -> RangeSummaryResponse:
    if end_date < start_date:
        raise HTTPException(status_code=400, detail="Intervallo di date non valido")
    return get_range_summary(db, start_date, end_date)


@router.get("/gaps/{horizon}", response_model=GapReportResponse)
def gaps(
    horizon: str,
    day: dt.date,
    request: Request,
    db: Session = Depends(get_db),
) -> GapReportResponse:
    if horizon not in HORIZONS:
        raise HTTPException(status_code=404, detail="Orizzonte non supportato")
    state = get_runtime_state(request)
    start, end = horizon_bounds(horizon, day)
    summary = get_range_summary(db, start, end)
    return build_gap_report(horizon, summary, state.daily_target_minutes, state.working_days_per_week)


@router.get("/suggestions/slots", response_model=SlotSuggestionResponse)
def suggestions_slots(day: dt.date, request: Request, db: Session = Depends(get_db)) -> SlotSuggestionResponse:
    state = get_runtime_state(request)
    gap = day_gap(state.daily_target_minutes, get_daily_summary(db, day))
    patterns = duration_patterns(db, today=day)
    return SlotSuggestionResponse(gap_minutes=gap, slots=smart_slots(gap, patterns), patterns=patterns)


# ----------------------------------------------------------------------
# Exports
# ----------------------------------------------------------------------


@router.get("/exports/gestore", response_class=PlainTextResponse)
def exports_gestore(month: str, db: Session = Depends(get_db)) -> PlainTextResponse:
    start, end = _month_range(month)
    return PlainTextResponse(gestore_text(fetch_activity_rows(db, start, end)))


@router.post("/exports", response_model=ExportResponse, status_code=status.HTTP_201_CREATED)
def exports_create(payload: ExportRequest, request: Request, db: Session = Depends(get_db)) -> ExportResponse:
    app_settings: Settings = request.app.state.settings
    return export_range(db, app_settings.export_dir, payload.start_date, payload.end_date, payload.format)


@router.get("/exports/{export_id}")
def exports_download(export_id: int, db: Session = Depends(get_db)) -> Response:
    export = get_export(db, export_id)
    path = Path(export.path)
    if not path.exists():
        raise HTTPException(status_code=404, detail="File di export mancante")
    return FileResponse(path, media_type=EXPORT_MEDIA_TYPES.get(export.format), filename=path.name)


# ----------------------------------------------------------------------
# Backups
# ----------------------------------------------------------------------


@router.get("/backups", response_model=list[BackupResponse])
def backups_list(manager: BackupManager = Depends(get_backup_manager)) -> list[BackupResponse]:
    return manager.list_backups()


@router.post("/backups", response_model=BackupResponse, status_code=status.HTTP_201_CREATED)
def backups_create(manager: BackupManager = Depends(get_backup_manager)) -> BackupResponse:
    try:
        path = manager.create_backup()
    except BackupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return BackupResponse(name=path.name, path=str(path), created_at=snapshot_instant(path))


@router.post("/backups/rotate", response_model=RotationResponse)
def backups_rotate(manager: BackupManager = Depends(get_backup_manager)) -> RotationResponse:
    result = manager.rotate()
    return RotationResponse(
        kept={path.name: tier for path, tier in result.kept.items()},
        deleted=[path.name for path in result.deleted],
        failed=[path.name for path in result.failed],
    )


@router.post("/backups/restore", response_model=SettingsResponse)
def backups_restore(
    payload: BackupRestoreRequest,
    request: Request,
    manager: BackupManager = Depends(get_backup_manager),
) -> SettingsResponse:
    if not is_snapshot_name(payload.name):
        raise HTTPException(status_code=400, detail="Nome del backup non valido")
    store = get_store(request)
    try:
        restore_database(store, manager, manager.backup_dir / payload.name)
    except BackupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    state = get_runtime_state(request)
    with store.session() as session:
        state.load_from_db(session)
    return _settings_response(state)


# ----------------------------------------------------------------------
# Settings
# ----------------------------------------------------------------------


@router.get("/settings", response_model=SettingsResponse)
def read_settings(request: Request) -> SettingsResponse:
    return _settings_response(get_runtime_state(request))


@router.put("/settings", response_model=SettingsResponse)
def write_settings(payload: SettingsUpdateRequest, request: Request, db: Session = Depends(get_db)) -> SettingsResponse:
    state = get_runtime_state(request)
    update_runtime_settings(db, state, payload.model_dump(exclude_unset=True))
    return _settings_response(state)


def create_app(app_settings: Settings = settings) -> FastAPI:
    ensure_directories(app_settings)
    existed = app_settings.sqlite_path.exists()
    store = RecordStore(app_settings.sqlite_path)
    startup_backups = BackupManager(
        app_settings.sqlite_path,
        app_settings.backup_dir,
        policy=retention_policy(app_settings),
    )
    apply_migrations(store, lambda: startup_backups.create_checkpoint("migration"), existed=existed)

    runtime_state = RuntimeState(app_settings)
    with store.session() as session:
        runtime_state.load_from_db(session)

    app = FastAPI(title=app_settings.app_name)
    app.state.settings = app_settings
    app.state.store = store
    app.state.runtime_state = runtime_state
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://127.0.0.1:5173", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)

    logger.info("TaskDesk ready on %s", app_settings.sqlite_path)
    return app
