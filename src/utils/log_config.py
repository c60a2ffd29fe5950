"""
Logging configuration for the Strava request governor
"""

import logging
import sys
from typing import Optional

DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None,
                  log_format: str = DEFAULT_LOG_FORMAT) -> None:
    """
    Configure the root logger

    Args:
        level: Minimum level (e.g. logging.DEBUG)
        log_file: Optional file receiving the same records as the console
        log_format: Format string for records
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(log_format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # urllib3 logs every connection at DEBUG, including full URLs
    logging.getLogger("urllib3").setLevel(max(level, logging.INFO))


def level_from_name(name: Optional[str], default: int = logging.INFO) -> int:
    """Parse a level name such as "debug" (unknown names give the default)"""
    if not name:
        return default
    value = logging.getLevelName(name.strip().upper())
    return value if isinstance(value, int) else default
