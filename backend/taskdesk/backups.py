"""Database snapshots with generational (daily/weekly/monthly) retention."""

from __future__ import annotations

import datetime as dt
import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "taskdesk-backup"
MIGRATION_PREFIX = "taskdesk-migration"
RESTORE_PREFIX = "taskdesk-prerestore"
SNAPSHOT_PREFIXES = (BACKUP_PREFIX, MIGRATION_PREFIX, RESTORE_PREFIX)
SNAPSHOT_SUFFIX = ".sqlite"
SIDECAR_SUFFIXES = ("-wal", "-shm")
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

_SNAPSHOT_NAME = re.compile(
    r"^(?P<prefix>"
    + "|".join(re.escape(prefix) for prefix in SNAPSHOT_PREFIXES)
    + r")-(?P<stamp>\d{8}-\d{6})(?:-(?P<counter>\d+))?\.sqlite$"
)

CHECKPOINT_PREFIXES = {
    "migration": MIGRATION_PREFIX,
    "restore": RESTORE_PREFIX,
}


class BackupError(Exception):
    """Base class for backup failures the caller has to act on."""


class BackupSourceMissing(BackupError, FileNotFoundError):
    def __init__(self, path: Path):
        super().__init__(f"Database non trovato: {path}")
        self.path = path


class SnapshotMissing(BackupError, FileNotFoundError):
    def __init__(self, path: Path):
        super().__init__(f"File di backup non trovato: {path}")
        self.path = path


@dataclass(slots=True)
class RetentionPolicy:
    daily_keep: int = 7
    weekly_keep: int = 4
    monthly_keep: int = 6

    @property
    def capacity(self) -> int:
        return self.daily_keep + self.weekly_keep + self.monthly_keep


@dataclass(slots=True)
class BackupInfo:
    path: Path
    name: str
    created_at: dt.datetime


@dataclass(slots=True)
class RotationResult:
    kept: Dict[Path, str] = field(default_factory=dict)
    deleted: List[Path] = field(default_factory=list)
    failed: List[Path] = field(default_factory=list)


def is_snapshot_name(name: str) -> bool:
    return _SNAPSHOT_NAME.match(name) is not None


def parse_snapshot_timestamp(name: str) -> Optional[dt.datetime]:
    """Local time encoded in a snapshot file name, or None for foreign names."""
    match = _SNAPSHOT_NAME.match(name)
    if not match:
        return None
    try:
        return dt.datetime.strptime(match.group("stamp"), TIMESTAMP_FORMAT)
    except ValueError:
        return None


def _mtime(path: Path) -> Optional[dt.datetime]:
    try:
        return dt.datetime.fromtimestamp(path.stat().st_mtime)
    except OSError:
        return None


def snapshot_instant(path: Path) -> dt.datetime:
    """Name timestamp first, then modification time, then the epoch."""
    parsed = parse_snapshot_timestamp(path.name)
    if parsed is not None:
        return parsed
    modified = _mtime(path)
    if modified is not None:
        return modified
    return dt.datetime.fromtimestamp(0)


def sidecar_paths(path: Path) -> List[Path]:
    return [path.with_name(path.name + suffix) for suffix in SIDECAR_SUFFIXES]


def _bucket_keys(instant: dt.datetime) -> Tuple[str, str, str]:
    iso_year, iso_week, _ = instant.isocalendar()
    return (
        instant.date().isoformat(),
        f"{iso_year:04d}-W{iso_week:02d}",
        f"{instant.year:04d}-{instant.month:02d}",
    )


def select_retained(
    snapshots: List[Tuple[Path, dt.datetime]],
    policy: RetentionPolicy,
) -> Dict[Path, str]:
    """Pick the snapshots to keep, mapped to the tier that keeps them.

    The newest snapshot of each bucket key claims that key in every tier
    that still has room for a new key. A snapshot is kept when at least one
    tier claimed a key for it.
    """
    ordered = sorted(snapshots, key=lambda item: item[1], reverse=True)
    tiers = (
        ("daily", policy.daily_keep),
        ("weekly", policy.weekly_keep),
        ("monthly", policy.monthly_keep),
    )
    claimed: Dict[str, Set[str]] = {name: set() for name, _ in tiers}
    kept: Dict[Path, str] = {}
    for path, instant in ordered:
        keys = _bucket_keys(instant)
        for (tier, capacity), key in zip(tiers, keys):
            seen = claimed[tier]
            if key in seen or len(seen) >= capacity:
                continue
            seen.add(key)
            kept.setdefault(path, tier)
    return kept


def _copy_sidecars(source: Path, target: Path) -> None:
    for source_sidecar, target_sidecar in zip(sidecar_paths(source), sidecar_paths(target)):
        if not source_sidecar.exists():
            continue
        try:
            shutil.copyfile(source_sidecar, target_sidecar)
        except OSError as exc:
            logger.warning("Sidecar copy failed %s -> %s: %s", source_sidecar, target_sidecar, exc)


class BackupManager:
    """Creates, lists, rotates and restores snapshots of one database file."""

    def __init__(
        self,
        db_path: Path,
        backup_dir: Path,
        policy: Optional[RetentionPolicy] = None,
        clock: Callable[[], dt.datetime] = dt.datetime.now,
    ):
        self.db_path = Path(db_path)
        self.backup_dir = Path(backup_dir)
        self.policy = policy or RetentionPolicy()
        self._clock = clock

    def _destination(self, prefix: str) -> Path:
        stamp = self._clock().strftime(TIMESTAMP_FORMAT)
        candidate = self.backup_dir / f"{prefix}-{stamp}{SNAPSHOT_SUFFIX}"
        counter = 1
        while candidate.exists():
            candidate = self.backup_dir / f"{prefix}-{stamp}-{counter}{SNAPSHOT_SUFFIX}"
            counter += 1
        return candidate

    def _snapshot(self, prefix: str) -> Path:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        destination = self._destination(prefix)
        shutil.copyfile(self.db_path, destination)
        _copy_sidecars(self.db_path, destination)
        return destination

    def create_backup(self) -> Path:
        if not self.db_path.exists():
            raise BackupSourceMissing(self.db_path)
        destination = self._snapshot(BACKUP_PREFIX)
        logger.info("Backup created at %s", destination)
        self.rotate()
        return destination

    def create_checkpoint(self, kind: str) -> Optional[Path]:
        """Unconditional safety copy; rotation only sees it on its next pass."""
        prefix = CHECKPOINT_PREFIXES.get(kind)
        if prefix is None:
            raise ValueError(f"Unknown checkpoint kind: {kind}")
        if not self.db_path.exists():
            return None
        destination = self._snapshot(prefix)
        logger.info("%s checkpoint created at %s", kind.capitalize(), destination)
        return destination

    def list_backups(self) -> List[BackupInfo]:
        if not self.backup_dir.is_dir():
            return []
        backups: List[BackupInfo] = []
        for entry in self.backup_dir.iterdir():
            if not entry.is_file() or not is_snapshot_name(entry.name):
                continue
            modified = _mtime(entry)
            if modified is None:
                continue
            backups.append(BackupInfo(path=entry, name=entry.name, created_at=modified))
        backups.sort(key=lambda item: (item.created_at, item.name), reverse=True)
        return backups

    def rotate(self) -> RotationResult:
        snapshots = [(info.path, snapshot_instant(info.path)) for info in self.list_backups()]
        result = RotationResult(kept=select_retained(snapshots, self.policy))
        for path, _instant in snapshots:
            if path in result.kept:
                continue
            try:
                path.unlink()
            except OSError as exc:
                logger.warning("Backup cleanup failed for %s: %s", path, exc)
                result.failed.append(path)
                continue
            result.deleted.append(path)
            for sidecar in sidecar_paths(path):
                try:
                    sidecar.unlink(missing_ok=True)
                except OSError as exc:
                    logger.warning("Sidecar cleanup failed for %s: %s", sidecar, exc)
        if result.deleted:
            logger.info("Backup rotation removed %d snapshot(s)", len(result.deleted))
        return result

    def restore_backup(self, snapshot: Path) -> Path:
        """Overwrite the live database with ``snapshot``.

        The caller must have closed every connection to the database first.
        """
        snapshot = Path(snapshot)
        if not snapshot.is_file():
            raise SnapshotMissing(snapshot)
        self.create_checkpoint("restore")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(snapshot, self.db_path)
        for source_sidecar, live_sidecar in zip(sidecar_paths(snapshot), sidecar_paths(self.db_path)):
            if source_sidecar.exists():
                shutil.copyfile(source_sidecar, live_sidecar)
            else:
                live_sidecar.unlink(missing_ok=True)
        logger.info("Database restored from %s", snapshot)
        return self.db_path
