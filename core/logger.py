"""
Centralized Logging Configuration

Every module obtains its logger through get_logger(__name__); handlers are
installed once on the root logger by setup_logging().
"""

import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional

from core.config import get_settings

settings = get_settings()

CONSOLE_FORMAT = '%(asctime)s [%(levelname)-8s] %(name)s: %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = (
    "uvicorn",
    "uvicorn.access",
    "fastapi",
    "slowapi",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
)


def _build_file_handler(log_file_path: str, level: int) -> Optional[logging.Handler]:
    """Create the rotating file handler, or None when the path is unusable."""
    try:
        Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_file_path,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
    except OSError as e:
        logging.getLogger(__name__).warning(f"Failed to set up file logging: {str(e)}")
        return None

    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    return handler


def setup_logging(
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    enable_file_logging: bool = True
) -> logging.Logger:
    """
    Set up centralized logging configuration.

    Args:
        log_level: Logging level name. Defaults to LOG_LEVEL from settings.
        log_file: Path to the log file. Defaults to LOG_FILE from settings.
        enable_file_logging: Whether to also log to a rotating file

    Returns:
        Root logger instance
    """
    level_name = (log_level or settings.LOG_LEVEL).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt='%H:%M:%S'))
    root_logger.addHandler(console_handler)

    log_file_path = log_file or settings.LOG_FILE
    if enable_file_logging and log_file_path:
        file_handler = _build_file_handler(log_file_path, numeric_level)
        if file_handler is not None:
            root_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
