"""Centralized logging configuration for vmaf_analyzer"""

import logging
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

from .config import LOG_DIR
from .utils import get_timestamp


def configure_logging(log_level: str = "INFO", file_logging: bool = True,
                      log_dir: Optional[Path] = None) -> Optional[Path]:
    """Central logging configuration for all modules

    Returns:
        Path of the session log file, or None when file logging is disabled
    """
    logger = logging.getLogger("vmaf_analyzer")
    logger.setLevel(log_level)

    # Remove existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    # Rich console handler
    console_handler = RichHandler(show_path=False, rich_tracebacks=True)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console_handler)

    log_file = None
    if file_logging:
        directory = log_dir or LOG_DIR
        directory.mkdir(parents=True, exist_ok=True)
        log_file = directory / f"vmaf_analyzer_{get_timestamp()}.log"
        file_handler = logging.FileHandler(log_file)
        file_formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    # Capture warnings
    logging.captureWarnings(True)
    return log_file
