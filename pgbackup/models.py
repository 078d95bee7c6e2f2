"""
In-memory records for a single backup run.

Nothing here is persisted; the object store holds the backup history.
"""

import re
import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional


TIMESTAMP_FORMAT = '%Y%m%d_%H%M%S'
DATE_FORMAT = '%Y%m%d'
BACKUP_EXTENSION = '.sql.gz'


class JobStatus(enum.Enum):
    PENDING = 'pending'
    SUCCESS = 'success'
    FAILED = 'failed'
    SKIPPED = 'skipped'


def format_timestamp(moment: datetime) -> str:
    return moment.strftime(TIMESTAMP_FORMAT)


def backup_filename(database: str, timestamp: datetime) -> str:
    """
    Generate the object name for a dump.

    Format: {database}_{YYYYMMDD_HHMMSS}.sql.gz
    """
    return f"{database}_{format_timestamp(timestamp)}{BACKUP_EXTENSION}"


def backup_key(prefix: str, database: str, timestamp: datetime) -> str:
    """Remote key: {prefix}/{database}/{database}_{YYYYMMDD_HHMMSS}.sql.gz"""
    return f"{prefix}/{database}/{backup_filename(database, timestamp)}"


def parse_backup_date(database: str, filename: str) -> Optional[date]:
    """
    Extract the backup date embedded in an object name.

    Args:
        database: Database the object should belong to
        filename: Object basename

    Returns:
        The embedded date, or None if the name is not one of ours
    """
    pattern = rf'{re.escape(database)}_([0-9]{{8}})_[0-9]{{6}}{re.escape(BACKUP_EXTENSION)}'
    match = re.fullmatch(pattern, filename)
    if not match:
        return None

    try:
        return datetime.strptime(match.group(1), DATE_FORMAT).date()
    except ValueError:
        # Eight digits that are not a calendar date
        return None


@dataclass
class BackupJob:
    """One database within a run."""

    database: str
    timestamp: datetime
    local_path: str
    remote_key: str
    status: JobStatus = JobStatus.PENDING
    skip_reason: Optional[str] = None
    size_bytes: int = 0
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is JobStatus.SUCCESS


@dataclass(frozen=True)
class RetentionCandidate:
    """A stored backup found during the retention sweep."""

    key: str
    database: str
    backup_date: date

    def is_expired(self, cutoff: date) -> bool:
        return self.backup_date < cutoff


@dataclass
class RunSummary:
    """Aggregated outcome of a run, used to decide the exit code."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    jobs: List[BackupJob] = field(default_factory=list)
    deleted_backups: int = 0
    retention_errors: List[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.jobs)

    @property
    def succeeded(self) -> int:
        return sum(1 for job in self.jobs if job.succeeded)

    @property
    def failed(self) -> int:
        # Skipped databases count as failures
        return self.attempted - self.succeeded

    @property
    def bytes_transferred(self) -> int:
        return sum(job.size_bytes for job in self.jobs if job.succeeded)

    @property
    def elapsed_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded == self.attempted else 1
