"""Logging configuration for tarchain.

setup_logging attaches three handlers to the ``tarchain`` logger: a main
log, an error-only log and stderr. Both log files rotate by size and
rotated files are gzip-compressed. Modules log through
``logging.getLogger(__name__)`` and propagate to these handlers.
"""

import gzip
import logging
import os
import shutil
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from tarchain.config import LoggingConfig


LOGGER_NAME = "tarchain"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CONSOLE_FORMAT = "%(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class LoggingError(Exception):
    """Raised when logging setup fails."""
    pass


def _gzip_name(default_name: str) -> str:
    return default_name + ".gz"


def _gzip_rotate(source: str, dest: str) -> None:
    """Compress a rotated log; keep it uncompressed if gzip fails."""
    if not os.path.exists(source):
        return
    try:
        with open(source, "rb") as plain, gzip.open(dest, "wb") as packed:
            shutil.copyfileobj(plain, packed)
        os.remove(source)
    except OSError:
        if os.path.exists(source):
            os.replace(source, dest[:-len(".gz")] if dest.endswith(".gz") else dest)


class GzipRotatingFileHandler(RotatingFileHandler):
    """RotatingFileHandler whose backups are ``{name}.N.gz``."""

    def __init__(self, filename, **kwargs):
        super().__init__(filename, **kwargs)
        self.namer = _gzip_name
        self.rotator = _gzip_rotate


def _level(name: str) -> int:
    level = name.upper()
    if level not in VALID_LOG_LEVELS:
        raise LoggingError(
            f"Invalid log level '{name}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )
    return getattr(logging, level)


def _rotating_handler(path: Path, level: int, config: LoggingConfig) -> GzipRotatingFileHandler:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise LoggingError(f"Failed to create log directory {path.parent}: {e}")
    handler = GzipRotatingFileHandler(
        path,
        maxBytes=config.log_max_bytes,
        backupCount=config.log_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(
    config: Optional[LoggingConfig] = None,
    console_level: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the tarchain logger.

    Calling it again replaces the handlers from the previous call.

    Args:
        config: Log files, level and rotation; defaults to LoggingConfig()
        console_level: Level for stderr output; defaults to the configured level

    Returns:
        The ``tarchain`` logger

    Raises:
        LoggingError: If a log directory cannot be created or a level is invalid
    """
    config = config or LoggingConfig()
    file_level = _level(config.level)
    stderr_level = _level(console_level) if console_level else file_level

    handlers = [
        _rotating_handler(Path(config.log_file).expanduser(), file_level, config),
        _rotating_handler(Path(config.error_log_file).expanduser(), logging.ERROR, config),
    ]
    console = logging.StreamHandler()
    console.setLevel(stderr_level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    handlers.append(console)

    logger = logging.getLogger(LOGGER_NAME)
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.setLevel(logging.DEBUG)
    for handler in handlers:
        logger.addHandler(handler)
    return logger


def get_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def log_run_start(logger: logging.Logger, operation: str, source: Path, destination: Path) -> None:
    """
    Log the start of a backup or restore.

    Args:
        logger: Logger instance
        operation: Human-readable operation, e.g. "full backup"
        source: Directory or archive being read
        destination: Directory being written
    """
    logger.info(f"{operation.capitalize()} started at {datetime.now().strftime(DATE_FORMAT)}")
    logger.info(f"Source: {source}")
    logger.info(f"Destination: {destination}")


def log_run_completion(
    logger: logging.Logger,
    operation: str,
    duration_seconds: float,
    steps: int,
    archive_path: Optional[Path] = None,
) -> None:
    logger.info(f"{operation.capitalize()} completed successfully")
    logger.info(f"Duration: {duration_seconds:.2f} seconds")
    logger.info(f"Archiver invocations: {steps}")
    if archive_path:
        logger.info(f"Archive: {archive_path}")


def log_run_error(logger: logging.Logger, error: Exception, context: Optional[str] = None) -> None:
    """Log a failed run, naming the stage it failed in when given."""
    where = f" during {context}" if context else ""
    logger.error(f"Failed{where}: {error}")


def log_archiver_output(logger: logging.Logger, output: str) -> None:
    """Log tar output, one DEBUG record per line."""
    for line in output.strip().splitlines():
        logger.debug(f"tar: {line}")
