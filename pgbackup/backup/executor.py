"""
Backup executor - orchestrates the complete backup run.

Workflow:
1. Preflight: AWS identity, bucket access, database connectivity
2. For each database: existence check, pg_dump | gzip, verify artifact,
   upload with retry, secure local cleanup
3. Retention sweep of expired backups
4. Summary (the exit code is derived from it)

Preflight failures abort the run. Anything that goes wrong for one database
is recorded on its job and the loop moves on to the next.
"""

import os
import logging
from datetime import datetime, timezone
from typing import Optional

from pgbackup import SUCCESS
from pgbackup.config import BackupConfig
from pgbackup.models import BackupJob, JobStatus, RunSummary, backup_filename, backup_key, format_timestamp
from pgbackup.utils.files import ensure_private_dir, secure_delete, remove_file
from .database import PostgresClient, DatabaseError, DatabaseMissing, require_database
from .dump import PgDumper, DumpError, verify_artifact
from .preflight import CredentialResolver, PreflightError, check_storage, check_database
from .retention import RetentionManager
from .retry import RetryPolicy
from .storage import S3Storage, StorageError, UploadFailure


logger = logging.getLogger(__name__)

SEPARATOR = '=' * 43
SKIP_DATABASE_MISSING = 'database_missing'


def _format_size(size_bytes: int) -> str:
    return f"{size_bytes / 1024 / 1024:.2f} MB"


class BackupExecutor:
    """
    Orchestrates the complete backup workflow for a configuration.

    Every collaborator can be injected; anything left out is built from the
    configuration.
    """

    def __init__(
        self,
        config: BackupConfig,
        storage=None,
        database=None,
        dumper=None,
        credentials=None,
        retry_policy: Optional[RetryPolicy] = None
    ):
        """
        Initialize backup executor.

        Args:
            config: Validated run configuration
            storage: S3Storage-like object (upload, delete, list_objects, test_connection)
            database: PostgresClient-like object (server_version, database_exists)
            dumper: PgDumper-like object (dump)
            credentials: CredentialResolver-like object (resolve)
            retry_policy: Policy for uploads (default: 3 attempts, 5s apart)
        """
        self.config = config
        self._owns_database = database is None

        self.storage = storage or S3Storage.from_config(config)
        self.database = database or PostgresClient.from_config(config)
        self.dumper = dumper or PgDumper.from_config(config)
        self.credentials = credentials or CredentialResolver.from_config(config)
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=3,
            delay=5,
            retry_on=(StorageError,)
        )
        self.retention = RetentionManager(self.storage, config.prefix, config.retention_days)

    def execute(self) -> RunSummary:
        """
        Run preflight, back up every database, then sweep old backups.

        Returns:
            RunSummary with one job per configured database

        Raises:
            PreflightError: If credentials, the bucket or the database server
                are unusable. No database is processed in that case.
        """
        summary = RunSummary(started_at=datetime.now(timezone.utc))
        logger.info(f"Started at: {summary.started_at.isoformat()}")
        logger.info(self.config.describe())

        try:
            self._preflight()

            try:
                ensure_private_dir(self.config.backup_dir)
            except OSError as e:
                raise PreflightError(f"Cannot prepare backup directory {self.config.backup_dir}: {e}")

            for database in self.config.databases:
                job = self._create_job(database, summary.started_at)
                summary.jobs.append(job)
                self._run_job(job)

            logger.info(SEPARATOR)
            logger.info("Cleaning up old backups...")
            retention = self.retention.enforce_all_policies(self.config.databases)
            summary.deleted_backups = retention['deleted']
            summary.retention_errors = retention['errors']
        finally:
            if self._owns_database:
                self.database.dispose()

        summary.finished_at = datetime.now(timezone.utc)
        self._log_summary(summary)
        return summary

    def _preflight(self):
        logger.info("Verifying AWS credentials...")
        self.credentials.resolve()
        check_storage(self.storage, self.config.bucket, self.config.prefix)
        check_database(self.database)

    def _create_job(self, database: str, timestamp: datetime) -> BackupJob:
        return BackupJob(
            database=database,
            timestamp=timestamp,
            local_path=os.path.join(self.config.backup_dir, backup_filename(database, timestamp)),
            remote_key=backup_key(self.config.prefix, database, timestamp)
        )

    def _run_job(self, job: BackupJob):
        logger.info(SEPARATOR)
        logger.info(f"Backing up database: {job.database}")

        try:
            require_database(self.database, job.database)

            logger.info("Creating backup...")
            self.dumper.dump(job.database, job.local_path)
            job.size_bytes = verify_artifact(job.local_path)
            logger.log(SUCCESS, f"Backup created: {_format_size(job.size_bytes)}")

            logger.info("Uploading to S3...")
            self._upload(job)
            logger.log(SUCCESS, f"Uploaded to: s3://{self.config.bucket}/{job.remote_key}")

        except DatabaseMissing as e:
            job.status = JobStatus.SKIPPED
            job.skip_reason = SKIP_DATABASE_MISSING
            job.error_message = str(e)
            logger.error(str(e))
            return
        except (DatabaseError, DumpError, UploadFailure) as e:
            self._fail(job, str(e))
            return
        except Exception as e:
            logger.exception(f"Unexpected error while backing up {job.database}")
            self._fail(job, f"Unexpected error: {e}")
            return

        # The object is already stored; a local cleanup problem does not fail the job
        job.status = JobStatus.SUCCESS
        try:
            if not secure_delete(job.local_path):
                logger.warning(f"Local artifact was removed without overwrite: {job.local_path}")
        except OSError as e:
            logger.warning(f"Failed to remove local artifact {job.local_path}: {e}")

    def _upload(self, job: BackupJob):
        metadata = {
            'database': job.database,
            'timestamp': format_timestamp(job.timestamp),
            'backup-host': self.config.host,
        }
        try:
            self.retry_policy.call(self.storage.upload, job.local_path, job.remote_key, metadata=metadata)
        except StorageError as e:
            raise UploadFailure(
                f"Upload failed after {self.retry_policy.max_attempts} attempts: {e}"
            ) from e

    def _fail(self, job: BackupJob, message: str):
        job.status = JobStatus.FAILED
        job.error_message = message
        job.size_bytes = 0
        logger.error(message)
        try:
            remove_file(job.local_path)
        except OSError as e:
            logger.warning(f"Failed to remove local artifact {job.local_path}: {e}")

    def _log_summary(self, summary: RunSummary):
        logger.info(SEPARATOR)
        logger.info("Backup Summary")
        logger.info(SEPARATOR)
        logger.info(f"  Total Databases: {summary.attempted}")
        logger.info(f"  Successful: {summary.succeeded}")
        logger.info(f"  Failed: {summary.failed}")
        if summary.succeeded > 0:
            logger.info(f"  Total Size: {_format_size(summary.bytes_transferred)}")
        logger.info(f"  Old Backups Deleted: {summary.deleted_backups}")
        logger.info(f"  Elapsed: {summary.elapsed_seconds:.1f}s")
        logger.info(f"  Completed at: {summary.finished_at.isoformat()}")
        logger.info(SEPARATOR)

        for job in summary.jobs:
            if not job.succeeded:
                logger.error(f"  {job.database}: {job.status.value} ({job.error_message})")

        if summary.exit_code == 0:
            logger.log(SUCCESS, "All backups completed successfully!")
        else:
            logger.error(f"Some backups failed ({summary.failed}/{summary.attempted})")


def run_backup(config: BackupConfig, **collaborators) -> int:
    """
    Execute a backup run and translate the outcome into an exit code.

    Args:
        config: Validated run configuration
        **collaborators: Passed through to BackupExecutor

    Returns:
        0 if every database was backed up, 1 otherwise
    """
    try:
        executor = BackupExecutor(config, **collaborators)
    except (StorageError, DatabaseError) as e:
        logger.error(f"Failed to set up backup run: {e}")
        return 1

    try:
        summary = executor.execute()
    except PreflightError as e:
        logger.error(str(e))
        return 1

    return summary.exit_code
