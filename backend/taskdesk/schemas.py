from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional

from typing_extensions import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_serializer

from .utils import parse_tags


def _serialize_datetime(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


def _serialize_optional(value: Optional[dt.datetime]) -> Optional[str]:
    return _serialize_datetime(value) if value else None


class ClientResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    name: str
    last_used_at: Optional[dt.datetime] = None

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "last_used_at": _serialize_optional(self.last_used_at),
        }


class ClientCreateRequest(BaseModel):
    name: str


class ClientImportRequest(BaseModel):
    content: str
    column: Optional[str] = None


class ClientImportPreview(BaseModel):
    headers: List[str]
    sample: List[Dict[str, str]]


class ClientImportResult(BaseModel):
    inserted: int
    skipped: int


class ActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    date: dt.date
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    title: str
    description: Optional[str] = None
    minutes: int
    reference_verbale: Optional[str] = None
    resource_icon: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    status: Literal["draft", "submitted"]
    in_gestore: bool
    verbale_done: bool
    created_at: dt.datetime
    updated_at: dt.datetime

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, value: Any) -> List[str]:
        if isinstance(value, str) or value is None:
            return parse_tags(value)
        return list(value)

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "client_id": self.client_id,
            "client_name": self.client_name,
            "title": self.title,
            "description": self.description,
            "minutes": self.minutes,
            "reference_verbale": self.reference_verbale,
            "resource_icon": self.resource_icon,
            "tags": self.tags,
            "status": self.status,
            "in_gestore": self.in_gestore,
            "verbale_done": self.verbale_done,
            "created_at": _serialize_datetime(self.created_at),
            "updated_at": _serialize_datetime(self.updated_at),
        }


class ActivityCreateRequest(BaseModel):
    date: str
    title: str
    minutes: int
    client_name: Optional[str] = None
    description: Optional[str] = None
    reference_verbale: Optional[str] = None
    resource_icon: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    status: Optional[Literal["draft", "submitted"]] = None
    in_gestore: Optional[bool] = None
    verbale_done: bool = False


class ActivityUpdateRequest(BaseModel):
    date: Optional[str] = None
    title: Optional[str] = None
    minutes: Optional[int] = None
    client_name: Optional[str] = None
    description: Optional[str] = None
    reference_verbale: Optional[str] = None
    resource_icon: Optional[str] = None
    tags: Optional[List[str]] = None
    status: Optional[Literal["draft", "submitted"]] = None
    in_gestore: Optional[bool] = None
    verbale_done: Optional[bool] = None


class ActivityHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    activity_id: str
    summary: str
    changed_at: dt.datetime

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "activity_id": self.activity_id,
            "summary": self.summary,
            "changed_at": _serialize_datetime(self.changed_at),
        }


class TemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    title: str
    client_name: Optional[str] = None
    description: Optional[str] = None
    minutes: int
    reference_verbale: Optional[str] = None
    resource_icon: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    used_count: int
    last_used_at: Optional[dt.datetime] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, value: Any) -> List[str]:
        if isinstance(value, str) or value is None:
            return parse_tags(value)
        return list(value)


class TemplateCreateRequest(BaseModel):
    title: str
    minutes: int
    client_name: Optional[str] = None
    description: Optional[str] = None
    reference_verbale: Optional[str] = None
    resource_icon: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class DailySummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    date: dt.date
    total_minutes: int
    total_entries: int


class ClientTotalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    client_name: str
    total_minutes: int
    total_entries: int


class GroupTotalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    client_name: str
    label: str
    total_minutes: int
    total_entries: int


class RangeSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    start_date: dt.date
    end_date: dt.date
    total_minutes: int
    total_entries: int
    by_day: List[DailySummaryResponse]
    by_client: List[ClientTotalResponse]
    groups: List[GroupTotalResponse]


class DayRowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    date: dt.date
    total_minutes: int
    total_entries: int
    gap_minutes: int
    is_working_day: bool


class GapReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    horizon: Literal["day", "week", "month"]
    start_date: dt.date
    end_date: dt.date
    target_minutes_per_day: int
    working_days: int
    target_minutes: int
    actual_minutes: int
    gap_minutes: int
    incomplete_working_days: int
    suggested_daily_minutes: int
    progress_percent: float
    days: List[DayRowResponse] = Field(default_factory=list)


class SlotSuggestionResponse(BaseModel):
    gap_minutes: int
    slots: List[int]
    patterns: List[int]


class ExportRequest(BaseModel):
    format: Literal["xlsx", "pdf", "txt"]
    start_date: dt.date
    end_date: dt.date


class ExportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    format: str
    range_start: dt.date
    range_end: dt.date
    path: str
    checksum: str
    created_at: dt.datetime

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "format": self.format,
            "range_start": self.range_start.isoformat(),
            "range_end": self.range_end.isoformat(),
            "path": self.path,
            "checksum": self.checksum,
            "created_at": _serialize_datetime(self.created_at),
        }


class BackupResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    name: str
    path: str
    created_at: dt.datetime

    @field_validator("path", mode="before")
    @classmethod
    def _path_to_str(cls, value: Any) -> str:
        return str(value)


class BackupRestoreRequest(BaseModel):
    name: str


class RotationResponse(BaseModel):
    kept: Dict[str, str]
    deleted: List[str]
    failed: List[str]


class SettingsResponse(BaseModel):
    daily_target_minutes: int
    working_days_per_week: Literal[5, 6, 7]
    theme: Literal["light", "dark", "system"]
    gap_reminder_minutes: int
    backup_dir: Optional[str]
    effective_backup_dir: str
    auto_start: bool
    tray_enabled: bool
    hotkey_enabled: bool


class SettingsUpdateRequest(BaseModel):
    daily_target_minutes: Optional[int] = Field(default=None, ge=0, le=24 * 60)
    working_days_per_week: Optional[Literal[5, 6, 7]] = None
    theme: Optional[Literal["light", "dark", "system"]] = None
    gap_reminder_minutes: Optional[int] = Field(default=None, ge=0)
    backup_dir: Optional[str] = None
    auto_start: Optional[bool] = None
    tray_enabled: Optional[bool] = None
    hotkey_enabled: Optional[bool] = None
