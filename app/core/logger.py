"""
Clean, Colored Logging Configuration

Provides structured, readable log output with colors and timestamps
for the API process and the Celery worker alike.

Usage:
    from app.core.logger import get_logger
    logger = get_logger(__name__)

    # In main.py / celery worker startup:
    from app.core.logger import setup_logging
    setup_logging(level="INFO")
"""

import logging
import sys
from typing import Optional
from datetime import datetime, timezone


# Prefix used on every trade lifecycle log line
TRADE_LOG_PREFIX = "[STRATEGY-TRADE]"


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors and clean structure"""

    # ANSI color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m',
    }

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')

        level_color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        reset_color = self.COLORS['RESET']

        # Clean module name (remove app. prefix)
        module_name = record.name.replace('app.', '') if record.name.startswith('app.') else record.name

        # Format: [TIMESTAMP] LEVEL [MODULE] MESSAGE
        formatted_message = f"{level_color}[{timestamp}] {record.levelname:<8} [{module_name:<28}] {record.getMessage()}{reset_color}"

        if record.exc_info:
            formatted_message += f"\n{self.formatException(record.exc_info)}"

        return formatted_message


def setup_logging(
    level: str = "INFO",
    format_type: str = "colored",
    log_file: Optional[str] = None
) -> None:
    """
    Setup clean logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: "colored" for console with colors, "simple" for plain text
        log_file: Optional file path to also log to file
    """
    # Clear existing handlers first to prevent duplicates from Uvicorn/Celery
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(numeric_level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)

    if format_type == "colored":
        formatter = ColoredFormatter()
    elif format_type == "simple":
        formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
    else:
        formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s:%(lineno)d] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s:%(lineno)d] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(file_handler)

    # Suppress noisy third-party logs
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('redis').setLevel(logging.WARNING)
    logging.getLogger('celery').setLevel(logging.WARNING)
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)

    # Route uvicorn through our handler and prevent duplicates
    uvicorn_logger = logging.getLogger('uvicorn')
    uvicorn_logger.handlers = []
    uvicorn_logger.addHandler(console_handler)
    uvicorn_logger.propagate = False


def setup_logging_from_settings(settings) -> None:
    """Setup logging from application settings."""
    setup_logging(
        level=settings.LOG_LEVEL,
        format_type=settings.LOG_FORMAT,
        log_file=settings.LOG_FILE_PATH or None,
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)
