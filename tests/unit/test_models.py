"""
Unit tests for run records and naming helpers (pgbackup/models.py).
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from pgbackup.models import (
    BackupJob,
    JobStatus,
    RetentionCandidate,
    RunSummary,
    backup_filename,
    backup_key,
    parse_backup_date
)


RUN_TIME = datetime(2024, 3, 5, 7, 8, 9, tzinfo=timezone.utc)


def make_job(database, status, size_bytes=0):
    return BackupJob(
        database=database,
        timestamp=RUN_TIME,
        local_path=f'/tmp/backups/{database}.sql.gz',
        remote_key=f'postgres-backups/{database}/{database}.sql.gz',
        status=status,
        size_bytes=size_bytes
    )


class TestNaming:
    """Test object naming."""

    def test_backup_filename(self):
        assert backup_filename('app', RUN_TIME) == 'app_20240305_070809.sql.gz'

    def test_backup_key(self):
        assert backup_key('postgres-backups', 'app', RUN_TIME) == \
            'postgres-backups/app/app_20240305_070809.sql.gz'

    def test_parse_backup_date(self):
        assert parse_backup_date('app', 'app_20240305_070809.sql.gz') == date(2024, 3, 5)

    @pytest.mark.parametrize("filename", [
        'app_20240305.sql.gz',
        'app_20240305_070809.sql',
        'app_20240305_070809.sql.gz.bak',
        'other_20240305_070809.sql.gz',
        'myapp_20240305_070809.sql.gz',
        'app_2024030_0708099.sql.gz',
        'app_20241340_070809.sql.gz',
        'notes.txt',
    ])
    def test_unrecognized_names_ignored(self, filename):
        assert parse_backup_date('app', filename) is None

    def test_database_name_is_not_a_pattern(self):
        """Hyphens in names are matched literally."""
        assert parse_backup_date('my-db', 'my-db_20240101_000000.sql.gz') == date(2024, 1, 1)


class TestRetentionCandidate:

    def test_expired_strictly_before_cutoff(self):
        cutoff = date(2024, 6, 15)
        candidate = RetentionCandidate(key='k', database='app', backup_date=cutoff)

        assert not candidate.is_expired(cutoff)
        assert candidate.is_expired(cutoff + timedelta(days=1))


class TestRunSummary:
    """Test aggregate counts and exit code."""

    def test_all_success_exits_zero(self):
        summary = RunSummary(started_at=RUN_TIME)
        summary.jobs = [make_job('a', JobStatus.SUCCESS, 100), make_job('b', JobStatus.SUCCESS, 50)]

        assert summary.attempted == 2
        assert summary.succeeded == 2
        assert summary.failed == 0
        assert summary.bytes_transferred == 150
        assert summary.exit_code == 0

    def test_skipped_counts_as_failure(self):
        summary = RunSummary(started_at=RUN_TIME)
        summary.jobs = [make_job('a', JobStatus.SUCCESS, 100), make_job('b', JobStatus.SKIPPED)]

        assert summary.failed == 1
        assert summary.exit_code == 1

    def test_failed_job_bytes_not_counted(self):
        summary = RunSummary(started_at=RUN_TIME)
        summary.jobs = [make_job('a', JobStatus.FAILED, 999), make_job('b', JobStatus.SUCCESS, 1)]

        assert summary.bytes_transferred == 1
        assert summary.exit_code == 1

    def test_elapsed_seconds(self):
        summary = RunSummary(started_at=RUN_TIME, finished_at=RUN_TIME + timedelta(seconds=90))
        assert summary.elapsed_seconds == 90.0

    def test_elapsed_zero_while_running(self):
        assert RunSummary(started_at=RUN_TIME).elapsed_seconds == 0.0
