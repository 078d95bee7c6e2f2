"""
Logical dumps with pg_dump, compressed on the fly.

pg_dump's stdout is piped straight into gzip, which writes the artifact; the
uncompressed dump never touches disk.
"""

import os
import time
import logging
import tempfile
import subprocess
from typing import List, Optional


logger = logging.getLogger(__name__)

# Make restores idempotent against an existing schema and portable across roles
DUMP_OPTIONS = ('--no-owner', '--no-acl', '--clean', '--if-exists')

_STDERR_TAIL = 2000


class DumpError(Exception):
    """Raised when a dump does not produce a usable artifact."""
    pass


class DumpFailure(DumpError):
    """Raised when pg_dump or the compressor exits nonzero or times out."""
    pass


class EmptyArtifact(DumpError):
    """Raised when the artifact is missing or zero bytes."""
    pass


class PgDumper:
    """
    Runs pg_dump | gzip for one database at a time.

    The password reaches pg_dump through PGPASSWORD in the child environment
    only, so it never shows up in the process list.
    """

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        timeout: int = 3600,
        pg_dump_path: str = 'pg_dump',
        gzip_path: str = 'gzip'
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.timeout = timeout
        self.pg_dump_path = pg_dump_path
        self.gzip_path = gzip_path

    @classmethod
    def from_config(cls, config) -> 'PgDumper':
        return cls(
            host=config.host,
            port=config.port,
            user=config.user,
            password=config.password,
            timeout=config.dump_timeout
        )

    def build_command(self, database: str) -> List[str]:
        return [
            self.pg_dump_path,
            '-h', self.host,
            '-p', str(self.port),
            '-U', self.user,
            '-d', database,
            *DUMP_OPTIONS,
        ]

    def _environment(self) -> dict:
        env = os.environ.copy()
        env['PGPASSWORD'] = self.password
        return env

    def dump(self, database: str, output_path: str):
        """
        Dump a database into a gzip file.

        Both exit codes are checked; the artifact itself is not. Callers run
        verify_artifact() afterwards.

        Args:
            database: Database to dump
            output_path: Artifact path (conventionally ending in .sql.gz)

        Raises:
            DumpFailure: If either process fails or the timeout expires
        """
        command = self.build_command(database)
        logger.debug(f"Executing: {' '.join(command)}")

        try:
            self._run_pipeline(command, output_path)
        except Exception:
            _remove_partial(output_path)
            raise

    def _run_pipeline(self, command: List[str], output_path: str):
        deadline = time.monotonic() + self.timeout

        with open(output_path, 'wb') as out, tempfile.TemporaryFile() as dump_stderr:
            try:
                dump_proc = subprocess.Popen(
                    command,
                    env=self._environment(),
                    stdout=subprocess.PIPE,
                    stderr=dump_stderr
                )
            except OSError as e:
                raise DumpFailure(f"Failed to start pg_dump: {e}")

            try:
                gzip_proc = subprocess.Popen(
                    [self.gzip_path, '-c'],
                    stdin=dump_proc.stdout,
                    stdout=out,
                    stderr=subprocess.PIPE
                )
            except OSError as e:
                dump_proc.kill()
                dump_proc.wait()
                raise DumpFailure(f"Failed to start {self.gzip_path}: {e}")
            finally:
                # gzip holds its own handle; closing ours lets pg_dump see SIGPIPE
                dump_proc.stdout.close()

            try:
                dump_rc = dump_proc.wait(timeout=max(deadline - time.monotonic(), 0))
                _, gzip_err = gzip_proc.communicate(timeout=max(deadline - time.monotonic(), 0))
            except subprocess.TimeoutExpired:
                for proc in (dump_proc, gzip_proc):
                    proc.kill()
                    proc.wait()
                raise DumpFailure(f"Dump timed out after {self.timeout}s")

            gzip_rc = gzip_proc.returncode

            if dump_rc != 0:
                dump_stderr.seek(0)
                message = _tail(dump_stderr.read())
                raise DumpFailure(f"pg_dump failed with exit code {dump_rc}: {message}")
            if gzip_rc != 0:
                raise DumpFailure(f"gzip failed with exit code {gzip_rc}: {_tail(gzip_err)}")


def verify_artifact(path: str) -> int:
    """
    Check that an artifact exists and holds data.

    Returns:
        File size in bytes

    Raises:
        EmptyArtifact: If the file is missing or zero bytes
    """
    try:
        size = os.path.getsize(path)
    except FileNotFoundError:
        raise EmptyArtifact(f"Backup file doesn't exist: {path}")

    if size == 0:
        raise EmptyArtifact(f"Backup file is empty: {path}")
    return size


def _remove_partial(path: str):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove partial artifact {path}: {e}")


def _tail(raw: Optional[bytes]) -> str:
    if not raw:
        return ''
    return raw.decode('utf-8', errors='replace').strip()[-_STDERR_TAIL:]
