"""
Command line entry point.

Exit codes: 0 when every database was backed up, 1 on configuration errors,
preflight failures, or any failed database.
"""

import os
import sys
import logging
import argparse

from pgbackup import __version__, configure_logging
from pgbackup.config import BackupConfig, ConfigError
from pgbackup.backup.executor import run_backup


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='pg-s3-backup',
        description='Dump PostgreSQL databases to S3 and prune old backups. '
                    'Settings are read from environment variables.'
    )
    parser.add_argument('--log-level', default=None,
                        help='Logging level (default: $LOG_LEVEL or INFO)')
    parser.add_argument('--log-file', default=None,
                        help='Also write logs to this file (default: $LOG_FILE)')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def main(argv=None, environ=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    logger.info("PostgreSQL Backup to S3")

    try:
        config = BackupConfig.from_env(os.environ if environ is None else environ)
    except ConfigError as e:
        logger.error(str(e))
        return 1

    return run_backup(config)


if __name__ == '__main__':
    sys.exit(main())
