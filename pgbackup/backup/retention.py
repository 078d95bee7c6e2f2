"""
Retention policy enforcement for stored backups.

Backups are aged by the date embedded in their object name, not by S3's
LastModified, so re-uploads and copies keep their original age. Objects whose
names do not follow the backup naming scheme are never touched.
"""

import logging
import posixpath
from datetime import date, datetime, timedelta, timezone
from typing import List, Dict, Any, Iterable, Optional

from pgbackup import SUCCESS
from pgbackup.models import RetentionCandidate, parse_backup_date
from .storage import StorageError


logger = logging.getLogger(__name__)


class RetentionDeleteFailure(Exception):
    """Raised when an expired backup could not be deleted."""
    pass


def compute_cutoff(retention_days: int, today: Optional[date] = None) -> date:
    """Backups dated strictly before the returned date are expired."""
    if today is None:
        today = datetime.now(timezone.utc).date()
    return today - timedelta(days=retention_days)


class RetentionManager:
    """
    Deletes backups older than retention_days for each database.

    Deletion is best effort: one failed delete is logged and the sweep moves on.
    """

    def __init__(self, storage, prefix: str, retention_days: int):
        self.storage = storage
        self.prefix = prefix
        self.retention_days = retention_days

    def enforce_all_policies(self, databases: Iterable[str], today: Optional[date] = None) -> Dict[str, Any]:
        """
        Enforce the retention policy for every database.

        Returns:
            Dict with summary of cleanup operations:
            {
                'databases_processed': int,
                'deleted': int,
                'errors': List[str]
            }
        """
        cutoff = compute_cutoff(self.retention_days, today)
        logger.info(f"Cleaning up backups dated before {cutoff.isoformat()}")

        summary = {
            'databases_processed': 0,
            'deleted': 0,
            'errors': []
        }

        for database in databases:
            logger.info(f"Checking old backups for database: {database}")
            try:
                candidates = self.find_candidates(database)
            except StorageError as e:
                error_msg = f"Failed to list backups for {database}: {e}"
                logger.error(error_msg)
                summary['errors'].append(error_msg)
                continue

            deleted, errors = self._delete_expired(candidates, cutoff)
            summary['databases_processed'] += 1
            summary['deleted'] += deleted
            summary['errors'].extend(errors)

        logger.log(SUCCESS, f"Deleted {summary['deleted']} old backup(s)")
        return summary

    def find_candidates(self, database: str) -> List[RetentionCandidate]:
        """
        List stored backups for a database that follow the naming scheme.

        Raises:
            StorageError: If listing fails
        """
        database_prefix = f"{self.prefix}/{database}/"
        candidates = []

        for obj in self.storage.list_objects(database_prefix):
            key = obj['Key']
            backup_date = parse_backup_date(database, posixpath.basename(key))
            if backup_date is None:
                logger.debug(f"Ignoring object with unrecognized name: {key}")
                continue
            candidates.append(RetentionCandidate(key=key, database=database, backup_date=backup_date))

        return candidates

    def _delete_expired(self, candidates: List[RetentionCandidate], cutoff: date):
        deleted = 0
        errors = []

        for candidate in candidates:
            if not candidate.is_expired(cutoff):
                continue

            logger.info(f"Deleting old backup: {candidate.key} ({candidate.backup_date.isoformat()})")
            try:
                self._delete(candidate)
                deleted += 1
            except RetentionDeleteFailure as e:
                logger.error(str(e))
                errors.append(str(e))

        return deleted, errors

    def _delete(self, candidate: RetentionCandidate):
        try:
            self.storage.delete(candidate.key)
        except StorageError as e:
            raise RetentionDeleteFailure(f"Failed to delete {candidate.key}: {e}") from e
