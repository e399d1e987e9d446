from __future__ import annotations

from pathlib import Path
from threading import RLock
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from .config import Settings
from .models import AppSetting

THEMES = ("light", "dark", "system")
WORKING_DAY_POLICIES = (5, 6, 7)
BOOLEAN_KEYS = ("auto_start", "tray_enabled", "hotkey_enabled")
INTEGER_KEYS = ("daily_target_minutes", "working_days_per_week", "gap_reminder_minutes")
SETTING_KEYS = INTEGER_KEYS + BOOLEAN_KEYS + ("theme", "backup_dir")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "si"}
    return bool(value)


class RuntimeState:
    """User preferences stored in ``app_settings`` and adjustable at runtime."""

    def __init__(self, base_settings: Settings):
        self._lock = RLock()
        self._base_backup_dir: Path = base_settings.backup_dir
        self.daily_target_minutes: int = base_settings.daily_target_minutes
        self.working_days_per_week: int = base_settings.working_days_per_week
        self.gap_reminder_minutes: int = base_settings.gap_reminder_minutes
        self.theme: str = "system"
        self.backup_dir: Optional[str] = None
        self.auto_start: bool = False
        self.tray_enabled: bool = True
        self.hotkey_enabled: bool = True

    @property
    def effective_backup_dir(self) -> Path:
        with self._lock:
            if self.backup_dir:
                return Path(self.backup_dir)
            return self._base_backup_dir

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "daily_target_minutes": self.daily_target_minutes,
                "working_days_per_week": self.working_days_per_week,
                "theme": self.theme,
                "gap_reminder_minutes": self.gap_reminder_minutes,
                "backup_dir": self.backup_dir,
                "auto_start": self.auto_start,
                "tray_enabled": self.tray_enabled,
                "hotkey_enabled": self.hotkey_enabled,
            }

    def apply(self, updates: Dict[str, Any]) -> None:
        with self._lock:
            if updates.get("daily_target_minutes") is not None:
                self.daily_target_minutes = max(0, int(updates["daily_target_minutes"]))
            if updates.get("working_days_per_week") is not None:
                value = int(updates["working_days_per_week"])
                if value in WORKING_DAY_POLICIES:
                    self.working_days_per_week = value
            if updates.get("gap_reminder_minutes") is not None:
                self.gap_reminder_minutes = max(0, int(updates["gap_reminder_minutes"]))
            if updates.get("theme") in THEMES:
                self.theme = updates["theme"]
            if "backup_dir" in updates:
                value = updates.get("backup_dir")
                self.backup_dir = value.strip() if isinstance(value, str) and value.strip() else None
            for key in BOOLEAN_KEYS:
                if updates.get(key) is not None:
                    setattr(self, key, _as_bool(updates[key]))

    def load_from_db(self, session: Session) -> None:
        """Read stored preferences, seeding missing keys with the defaults."""
        records = {record.key: record.value for record in session.query(AppSetting).all()}
        decoded: Dict[str, Any] = {}
        for key, value in records.items():
            if key in INTEGER_KEYS:
                try:
                    decoded[key] = int(value)
                except ValueError:
                    continue
            elif key in BOOLEAN_KEYS:
                decoded[key] = value == "1"
            elif key == "theme":
                decoded["theme"] = value
            elif key == "backup_dir":
                decoded["backup_dir"] = value or None
        if decoded:
            self.apply(decoded)
        missing = {key: value for key, value in self.snapshot().items() if key not in records}
        if missing:
            self.persist(session, missing)

    def persist(self, session: Session, updates: Dict[str, Any]) -> None:
        for key, value in updates.items():
            if key not in SETTING_KEYS:
                continue
            if key in BOOLEAN_KEYS:
                value = "1" if _as_bool(value) else "0"
            elif value is None:
                value = ""
            else:
                value = str(value)
            record = session.query(AppSetting).filter(AppSetting.key == key).one_or_none()
            if record:
                record.value = value
            else:
                session.add(AppSetting(key=key, value=value))
        session.commit()
