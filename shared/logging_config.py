"""
Centralized logging configuration for Timesheet application.
Provides consistent logging across client, sync and server components.
"""

import logging
import os
import sys
from datetime import datetime

from termcolor import colored

from shared.utils import get_data_path


class TimesheetFormatter(logging.Formatter):
    """Custom formatter with component identification and colors for console"""

    # Color mapping for different log levels
    LEVEL_COLORS = {
        'DEBUG': 'cyan',
        'INFO': 'green',
        'WARNING': 'yellow',
        'ERROR': 'red',
        'CRITICAL': 'magenta'
    }

    def __init__(self, component: str, use_colors: bool = True):
        self.component = component
        try:
            self.use_colors = bool(use_colors and sys.stdout and sys.stdout.isatty())
        except (AttributeError, OSError, ValueError):
            self.use_colors = False

        # Format: [TIMESTAMP] [COMPONENT] [LEVEL] Message
        super().__init__(
            fmt='[%(asctime)s] [%(component)s] [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record):
        record.component = self.component
        formatted = super().format(record)

        if self.use_colors:
            color = self.LEVEL_COLORS.get(record.levelname, 'white')
            return colored(formatted, color)
        return formatted


def _file_logging_requested() -> bool:
    return os.getenv('TIMESHEET_LOG_TO_FILE', '').lower() in ('1', 'true', 'yes')


def setup_logging(component: str, level: str = None, log_to_file: bool = None) -> logging.Logger:
    """Setup standardized logging for Timesheet components.

    Configures console and optional file logging with consistent formatting.

    Args:
        component: Component name (e.g., 'CLIENT', 'SERVER', 'SYNC') for logger identification
        level: Log level name. Defaults to ``TIMESHEET_LOG_LEVEL`` or INFO
        log_to_file: Whether to also log to file in the logs/ data directory.
            Defaults to ``TIMESHEET_LOG_TO_FILE``

    Returns:
        Configured logger instance with console and optional file handlers

    Note:
        Prevents duplicate handlers if called multiple times with same component.
    """
    logger = logging.getLogger(f"timesheet.{component.lower()}")

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    if level is None:
        level = os.getenv('TIMESHEET_LOG_LEVEL', 'INFO')
    if log_to_file is None:
        log_to_file = _file_logging_requested()

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(TimesheetFormatter(component, use_colors=True))
    logger.addHandler(console_handler)

    if log_to_file:
        try:
            log_dir = get_data_path('logs')
            log_dir.mkdir(exist_ok=True)

            log_file = log_dir / f"timesheet_{component.lower()}_{datetime.now().strftime('%m-%d-%Y %H-%M-%S')}.log"

            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setFormatter(TimesheetFormatter(component, use_colors=False))
            logger.addHandler(file_handler)

        except OSError as e:
            logger.warning(f"Could not setup file logging: {e}")

    return logger


def get_logger(component: str) -> logging.Logger:
    """Get existing logger for component or create with default settings"""
    existing = logging.getLogger(f"timesheet.{component.lower()}")
    if existing.handlers:
        return existing

    return setup_logging(component)


def get_client_logger() -> logging.Logger:
    """Get logger for client components"""
    return get_logger("CLIENT")


def get_server_logger() -> logging.Logger:
    """Get logger for server components"""
    return get_logger("SERVER")


def get_sync_logger() -> logging.Logger:
    """Get logger for sync operations"""
    return get_logger("SYNC")


def set_log_level(level: str):
    """Set log level for all Timesheet loggers"""
    level_obj = getattr(logging, level.upper(), logging.INFO)

    for name in list(logging.root.manager.loggerDict):
        if name.startswith('timesheet.'):
            logger = logging.getLogger(name)
            logger.setLevel(level_obj)

            for handler in logger.handlers:
                handler.setLevel(level_obj)


def enable_debug_logging():
    """Enable debug logging for troubleshooting"""
    set_log_level("DEBUG")
