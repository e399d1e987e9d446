from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic import computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_name: str = "TaskDesk"
    environment: str = "development"
    host: str = os.getenv("TD_HOST", "127.0.0.1")
    port: int = int(os.getenv("TD_PORT", "8080"))

    sqlite_path: Path = Path(os.getenv("TD_SQLITE_PATH", "./data/taskdesk.sqlite"))
    backup_dir_override: Optional[Path] = (
        Path(os.getenv("TD_BACKUP_DIR")) if os.getenv("TD_BACKUP_DIR") else None
    )
    export_dir: Path = Path(os.getenv("TD_EXPORT_DIR", "./data/exports"))

    locale: str = os.getenv("TD_LOCALE", "it-IT")
    timezone: str = os.getenv("TZ", "Europe/Rome")

    daily_target_minutes: int = int(os.getenv("TD_DAILY_TARGET_MINUTES", "480"))
    working_days_per_week: int = int(os.getenv("TD_WORKING_DAYS_PER_WEEK", "5"))
    gap_reminder_minutes: int = int(os.getenv("TD_GAP_REMINDER_MINUTES", "60"))

    backup_daily_keep: int = int(os.getenv("TD_BACKUP_DAILY_KEEP", "7"))
    backup_weekly_keep: int = int(os.getenv("TD_BACKUP_WEEKLY_KEEP", "4"))
    backup_monthly_keep: int = int(os.getenv("TD_BACKUP_MONTHLY_KEEP", "6"))

    log_level: str = os.getenv("TD_LOG_LEVEL", "INFO")

    @field_validator("working_days_per_week")
    @classmethod
    def _check_working_days(cls, value: int) -> int:
        if value not in (5, 6, 7):
            raise ValueError("working_days_per_week must be 5, 6 or 7")
        return value

    @field_validator("backup_daily_keep", "backup_weekly_keep", "backup_monthly_keep")
    @classmethod
    def _check_keep(cls, value: int) -> int:
        return max(0, value)

    @computed_field
    def backup_dir(self) -> Path:
        if self.backup_dir_override is not None:
            return self.backup_dir_override
        return self.sqlite_path.parent / "backups"


def ensure_directories(config: Settings) -> None:
    config.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    config.export_dir.mkdir(parents=True, exist_ok=True)


settings = Settings()
