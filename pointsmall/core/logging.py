"""
Logging setup - rotating file + console, quiet third-party loggers
"""
import logging
from logging.handlers import RotatingFileHandler
import os

from .config import settings

NOISY_LOGGERS = (
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "apscheduler",
    "httpx",
    "httpcore",
)


def setup_logging(log_dir: str = None, level: str = None) -> None:
    log_dir = log_dir or settings.LOGS_PATH
    level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)
    os.makedirs(log_dir, exist_ok=True)

    # Rotating file handler (50MB max, keep 7 files by default)
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, "pointsmall.log"),
        maxBytes=settings.LOG_MAX_BYTES,
        backupCount=settings.LOG_BACKUP_COUNT,
        encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S"
    ))

    # Disable noisy loggers BEFORE basicConfig
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.basicConfig(level=level, handlers=[file_handler, console_handler], force=True)
