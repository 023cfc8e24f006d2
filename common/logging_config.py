"""
Logging Configuration Utilities

Centralized logging setup shared by the hub, scanner and display processes.
"""

import logging
import sys
from typing import Iterable, Optional

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("engineio", "socketio", "werkzeug", "urllib3")


def setup_logging(role: str, level: str = "INFO", log_file: Optional[str] = None,
                  quiet: Iterable[str] = NOISY_LOGGERS):
    """
    Configure logging with role-based formatting.

    Args:
        role: Process role shown in every line (e.g., "hub", "scanner", "display")
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for logging (default None = console only)
        quiet: Logger names raised to WARNING unless level is DEBUG
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        f'%(asctime)s - [{role}] %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
            logging.info(f"Logging to file: {log_file}")
        except (OSError, PermissionError) as e:
            logging.error(f"Failed to create log file {log_file}: {e}")

    if numeric_level > logging.DEBUG:
        for name in quiet:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(f"Logging configured: role={role}, level={level}")
