import os
import sys
import logging
from logging.handlers import RotatingFileHandler


__version__ = '1.0.0'

# Between INFO and WARNING so completed steps stand out in the log stream
SUCCESS = 25
logging.addLevelName(SUCCESS, 'SUCCESS')


def configure_logging(level=None, log_file=None):
    """Configure application logging"""

    level_name = (level or os.environ.get('LOG_LEVEL') or 'INFO').upper()
    log_level = logging.getLevelName(level_name)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler
    log_file = log_file or os.environ.get('LOG_FILE')
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Chatty third-party loggers stay at WARNING unless debugging
    if log_level > logging.DEBUG:
        for name in ('boto3', 'botocore', 's3transfer', 'urllib3', 'sqlalchemy'):
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        f"Logging configured (level: {logging.getLevelName(log_level)})"
    )
