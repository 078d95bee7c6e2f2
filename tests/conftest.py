"""
Shared pytest fixtures for pg-s3-backup tests.

This module provides fixtures for:
- Environment variables and resolved BackupConfig
- Mocked AWS (S3 and STS) using moto
- Fake collaborators for the executor (dumper, database, credentials)
- Fake pg_dump executables for the dump pipeline
"""

import stat
from unittest.mock import MagicMock

import pytest
import boto3
from moto import mock_aws

from pgbackup.config import BackupConfig
from pgbackup.backup.preflight import CallerIdentity
from pgbackup.backup.retry import no_wait
from pgbackup.backup.storage import S3Storage


TEST_BUCKET = 'test-bucket'
TEST_REGION = 'us-east-1'


@pytest.fixture
def base_env(tmp_path):
    """Minimal valid environment for a run."""
    return {
        'POSTGRES_HOST': 'db.internal',
        'POSTGRES_USER': 'backup',
        'POSTGRES_PASSWORD': 's3cret',
        'DATABASES': 'app',
        'S3_BUCKET': TEST_BUCKET,
        'AWS_DEFAULT_REGION': TEST_REGION,
        'BACKUP_DIR': str(tmp_path / 'scratch'),
    }


@pytest.fixture
def make_config(base_env):
    """Build a BackupConfig from base_env plus overrides."""
    def _make(**overrides):
        env = dict(base_env)
        env.update(overrides)
        return BackupConfig.from_env(env)
    return _make


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake AWS credentials so nothing can reach a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', TEST_REGION)
    monkeypatch.delenv('AWS_WEB_IDENTITY_TOKEN_FILE', raising=False)
    monkeypatch.delenv('AWS_ROLE_ARN', raising=False)


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name=TEST_REGION)
        s3.create_bucket(Bucket=TEST_BUCKET)
        yield s3


@pytest.fixture
def s3_storage(mock_s3):
    """S3Storage bound to the moto bucket."""
    return S3Storage(bucket_name=TEST_BUCKET, region=TEST_REGION, storage_class='STANDARD_IA')


class FakeDumper:
    """
    Stands in for PgDumper.

    payloads maps database name to the bytes written, or to an exception
    instance to raise instead.
    """

    def __init__(self, payloads=None, default=b'-- PostgreSQL database dump\n'):
        self.payloads = payloads or {}
        self.default = default
        self.calls = []

    def dump(self, database, output_path):
        self.calls.append(database)
        payload = self.payloads.get(database, self.default)
        if isinstance(payload, Exception):
            raise payload
        with open(output_path, 'wb') as f:
            f.write(payload)


@pytest.fixture
def fake_dumper():
    return FakeDumper()


@pytest.fixture
def mock_database():
    """Database client where every database exists."""
    database = MagicMock()
    database.server_version.return_value = 'PostgreSQL 17.2 on x86_64-pc-linux-musl'
    database.database_exists.return_value = True
    return database


@pytest.fixture
def mock_credentials():
    credentials = MagicMock()
    credentials.resolve.return_value = CallerIdentity(
        mode='ambient', verified=True, account='123456789012', arn='arn:aws:iam::123456789012:user/backup'
    )
    return credentials


@pytest.fixture
def mock_storage():
    """Storage double where every call succeeds and the bucket is empty."""
    storage = MagicMock()
    storage.test_connection.return_value = True
    storage.upload.side_effect = lambda local_path, s3_key, metadata=None: s3_key
    storage.list_objects.return_value = []
    return storage


@pytest.fixture
def executor_kwargs(mock_storage, mock_database, fake_dumper, mock_credentials):
    """Collaborators for BackupExecutor with a zero-delay retry policy."""
    return {
        'storage': mock_storage,
        'database': mock_database,
        'dumper': fake_dumper,
        'credentials': mock_credentials,
        'retry_policy': no_wait(3),
    }


@pytest.fixture
def make_script(tmp_path):
    """Write an executable shell script and return its path."""
    def _make(name, body):
        path = tmp_path / name
        path.write_text('#!/bin/sh\n' + body + '\n')
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)
    return _make


@pytest.fixture
def artifact_dir(tmp_path):
    path = tmp_path / 'artifacts'
    path.mkdir()
    return path


def object_keys(s3, bucket=TEST_BUCKET):
    return sorted(obj.key for obj in s3.Bucket(bucket).objects.all())


@pytest.fixture
def list_keys():
    return object_keys


@pytest.fixture
def token_file(tmp_path):
    """A mounted web identity token."""
    path = tmp_path / 'token'
    path.write_text('eyJhbGciOiJSUzI1NiJ9.test.token')
    return str(path)
