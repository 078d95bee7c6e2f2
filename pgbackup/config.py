"""
Run configuration for pg-s3-backup.

All settings come from a flat mapping of environment variables and are
resolved once, before anything touches the network or the filesystem.
"""

import os
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple


DATABASE_NAME_PATTERN = re.compile(r'^[A-Za-z0-9_-]+$')
_NUMBER_PATTERN = re.compile(r'^[0-9]+$')

REQUIRED_VARS = (
    'POSTGRES_HOST',
    'POSTGRES_USER',
    'POSTGRES_PASSWORD',
    'DATABASES',
    'S3_BUCKET',
    'AWS_DEFAULT_REGION',
)

DEFAULT_PORT = 5432
DEFAULT_PREFIX = 'postgres-backups'
DEFAULT_RETENTION_DAYS = 30
DEFAULT_BACKUP_DIR = '/tmp/backups'
DEFAULT_STORAGE_CLASS = 'STANDARD_IA'
DUMP_TIMEOUT_SECONDS = 3600
CONNECT_TIMEOUT_SECONDS = 10


class ConfigError(Exception):
    """Raised when required settings are missing or malformed."""

    def __init__(self, message: str, missing: Tuple[str, ...] = ()):
        super().__init__(message)
        self.missing = tuple(missing)


@dataclass(frozen=True)
class BackupConfig:
    """Immutable settings for a single backup run."""

    host: str
    user: str
    password: str = field(repr=False)
    databases: Tuple[str, ...]
    bucket: str
    region: str
    port: int = DEFAULT_PORT
    prefix: str = DEFAULT_PREFIX
    retention_days: int = DEFAULT_RETENTION_DAYS
    backup_dir: str = DEFAULT_BACKUP_DIR
    storage_class: str = DEFAULT_STORAGE_CLASS
    endpoint_url: Optional[str] = None
    web_identity_token_file: Optional[str] = None
    role_arn: Optional[str] = None
    dump_timeout: int = DUMP_TIMEOUT_SECONDS
    connect_timeout: int = CONNECT_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'BackupConfig':
        """
        Build a configuration from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)

        Returns:
            Validated BackupConfig

        Raises:
            ConfigError: If any required variable is missing, a number does not
                parse, or a database name contains disallowed characters
        """
        if environ is None:
            environ = os.environ

        def get(name: str) -> str:
            return (environ.get(name) or '').strip()

        # Report every missing variable at once
        missing = tuple(name for name in REQUIRED_VARS if not get(name))
        if missing:
            raise ConfigError(
                f"Required environment variables not set: {', '.join(missing)}",
                missing=missing
            )

        port = _parse_number('POSTGRES_PORT', get('POSTGRES_PORT'), DEFAULT_PORT)
        retention_days = _parse_number('RETENTION_DAYS', get('RETENTION_DAYS'), DEFAULT_RETENTION_DAYS)
        databases = parse_databases(get('DATABASES'))

        prefix = get('S3_PREFIX').strip('/') or DEFAULT_PREFIX

        return cls(
            host=get('POSTGRES_HOST'),
            port=port,
            user=get('POSTGRES_USER'),
            # Passwords are taken verbatim; whitespace may be significant
            password=environ.get('POSTGRES_PASSWORD'),
            databases=databases,
            bucket=get('S3_BUCKET'),
            prefix=prefix,
            region=get('AWS_DEFAULT_REGION'),
            retention_days=retention_days,
            backup_dir=get('BACKUP_DIR') or DEFAULT_BACKUP_DIR,
            storage_class=get('S3_STORAGE_CLASS') or DEFAULT_STORAGE_CLASS,
            endpoint_url=get('S3_ENDPOINT_URL') or None,
            web_identity_token_file=get('AWS_WEB_IDENTITY_TOKEN_FILE') or None,
            role_arn=get('AWS_ROLE_ARN') or None,
        )

    def describe(self) -> str:
        """Human readable summary without secrets."""
        return '\n'.join([
            "Configuration:",
            f"  Host: {self.host}:{self.port}",
            f"  User: {self.user}",
            f"  Databases: {', '.join(self.databases)}",
            f"  S3 Bucket: s3://{self.bucket}/{self.prefix}",
            f"  Region: {self.region}",
            f"  Retention: {self.retention_days} days",
        ])


def parse_databases(value: str) -> Tuple[str, ...]:
    """
    Split a comma-separated database list.

    Entries are trimmed, validated and deduplicated (first occurrence wins).
    A single trailing comma is ignored; any other empty entry is invalid.

    Raises:
        ConfigError: On the first name that does not match DATABASE_NAME_PATTERN
    """
    entries = value.split(',')
    if len(entries) > 1 and not entries[-1].strip():
        entries.pop()

    names = []
    for raw in entries:
        name = raw.strip()
        if not DATABASE_NAME_PATTERN.fullmatch(name):
            raise ConfigError(
                f"Invalid database name: {name!r} "
                f"(only alphanumeric, underscore, and hyphen allowed)"
            )
        names.append(name)

    return tuple(dict.fromkeys(names))


def _parse_number(name: str, value: str, default: int) -> int:
    if not value:
        return default
    if not _NUMBER_PATTERN.fullmatch(value):
        raise ConfigError(f"{name} must be a non-negative integer, got {value!r}")
    return int(value)
