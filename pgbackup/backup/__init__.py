"""
Backup module for pg-s3-backup.

This module handles the core backup functionality including:
- Preflight checks (AWS identity, bucket, database server)
- pg_dump | gzip dumps
- S3 upload with retry
- Execution orchestration
- Retention policy enforcement
"""

from .executor import BackupExecutor, run_backup
from .dump import PgDumper
from .storage import S3Storage
from .database import PostgresClient
from .retention import RetentionManager
from .retry import RetryPolicy

__all__ = [
    'BackupExecutor',
    'run_backup',
    'PgDumper',
    'S3Storage',
    'PostgresClient',
    'RetentionManager',
    'RetryPolicy'
]
