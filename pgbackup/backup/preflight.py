"""
Preflight checks run before any database is touched.

Order: AWS identity, bucket access, database connectivity. Any failure here is
fatal for the whole run.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.exceptions import ClientError, BotoCoreError

from pgbackup import SUCCESS
from .storage import StorageError
from .database import DatabaseError


logger = logging.getLogger(__name__)

WEB_IDENTITY_MODE = 'web_identity'
AMBIENT_MODE = 'ambient'


class PreflightError(Exception):
    """Base class for fatal preflight failures."""
    pass


class CredentialError(PreflightError):
    """Raised when no usable AWS identity can be found."""
    pass


class StorageAccessError(PreflightError):
    """Raised when the target bucket/prefix cannot be listed."""
    pass


class DatabaseConnectionError(PreflightError):
    """Raised when the database server does not answer the probe."""
    pass


@dataclass(frozen=True)
class CallerIdentity:
    mode: str
    verified: bool
    account: Optional[str] = None
    arn: Optional[str] = None


class CredentialResolver:
    """
    Decides which AWS identity the run uses.

    A mounted web identity token (IRSA) is preferred. Its identity may not be
    usable yet right after the pod starts, so a failed STS call in that mode
    only logs a warning. Without a token, STS must succeed, unless a custom S3
    endpoint is configured; then bucket access is the only credential check.
    """

    def __init__(self, region: str, token_file: Optional[str] = None,
                 role_arn: Optional[str] = None, endpoint_url: Optional[str] = None,
                 sts_client=None):
        self.region = region
        self.token_file = token_file
        self.role_arn = role_arn
        self.endpoint_url = endpoint_url
        self._sts_client = sts_client

    @classmethod
    def from_config(cls, config) -> 'CredentialResolver':
        return cls(
            region=config.region,
            token_file=config.web_identity_token_file,
            role_arn=config.role_arn,
            endpoint_url=config.endpoint_url
        )

    @property
    def sts_client(self):
        if self._sts_client is None:
            self._sts_client = boto3.client('sts', region_name=self.region)
        return self._sts_client

    def uses_web_identity(self) -> bool:
        return bool(self.token_file) and os.path.isfile(self.token_file)

    def _get_caller_identity(self) -> dict:
        return self.sts_client.get_caller_identity()

    def resolve(self) -> CallerIdentity:
        """
        Resolve and, where possible, verify the caller identity.

        Raises:
            CredentialError: If no token file is mounted, no custom endpoint is
                set, and STS rejects the ambient credentials
        """
        if self.uses_web_identity():
            logger.log(SUCCESS, "Using IRSA (IAM Roles for Service Accounts)")
            logger.info(f"Token file: {self.token_file}")
            logger.info(f"Role ARN: {self.role_arn or 'not set'}")

            try:
                identity = self._get_caller_identity()
            except (ClientError, BotoCoreError) as e:
                logger.warning(f"AWS credentials not verified yet, will attempt backup anyway: {e}")
                return CallerIdentity(mode=WEB_IDENTITY_MODE, verified=False)

            logger.log(SUCCESS, "AWS credentials verified")
            logger.info(f"   Account: {identity.get('Account')}")
            logger.info(f"   ARN: {identity.get('Arn')}")
            return CallerIdentity(
                mode=WEB_IDENTITY_MODE,
                verified=True,
                account=identity.get('Account'),
                arn=identity.get('Arn')
            )

        if self.endpoint_url:
            # S3-compatible stores have no STS; the bucket check decides
            logger.info(f"Custom S3 endpoint {self.endpoint_url}, skipping AWS identity check")
            return CallerIdentity(mode=AMBIENT_MODE, verified=False)

        try:
            identity = self._get_caller_identity()
        except (ClientError, BotoCoreError) as e:
            raise CredentialError(f"No valid AWS credentials found: {e}")

        logger.log(SUCCESS, "Using AWS credentials from environment")
        return CallerIdentity(
            mode=AMBIENT_MODE,
            verified=True,
            account=identity.get('Account'),
            arn=identity.get('Arn')
        )


def check_storage(storage, bucket: str, prefix: str):
    """
    Verify the bucket is reachable under prefix.

    Raises:
        StorageAccessError: If the listing fails
    """
    location = f"s3://{bucket}/{prefix}/"
    logger.info("Testing S3 bucket access...")
    try:
        storage.test_connection(f"{prefix}/")
    except StorageError as e:
        raise StorageAccessError(f"Cannot access S3 bucket: {location} ({e})")
    logger.log(SUCCESS, "S3 bucket accessible")


def check_database(database) -> str:
    """
    Probe the database server.

    Returns:
        Server version string

    Raises:
        DatabaseConnectionError: If the probe fails
    """
    logger.info("Testing database connection...")
    try:
        version = database.server_version()
    except DatabaseError as e:
        raise DatabaseConnectionError(f"Database connection failed: {e}")

    logger.log(SUCCESS, "Database connection OK")
    logger.info(f"PostgreSQL version: {version}")
    return version
