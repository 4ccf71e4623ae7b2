"""Centralized logging configuration for vodpack"""

import logging
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

from .config import LOG_DIR, LOG_LEVEL
from .utils import get_timestamp


def configure_logging(log_level: Optional[str] = None, log_dir: Optional[Path] = LOG_DIR) -> Optional[Path]:
    """
    Central logging configuration for all modules

    Console output goes through rich; when log_dir is given a session log
    file is written there as well.

    Returns:
        Path of the session log file, or None without file logging
    """
    level = (log_level or LOG_LEVEL).upper()
    logger = logging.getLogger("vodpack")
    logger.setLevel(logging._nameToLevel.get(level, logging.INFO))

    # Remove existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    # Rich console handler
    console_handler = RichHandler(show_path=False, rich_tracebacks=True)
    console_handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    logger.addHandler(console_handler)

    log_file = None
    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"vodpack_{get_timestamp()}.log"
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))
        logger.addHandler(file_handler)

    # Capture warnings
    logging.captureWarnings(True)

    logger.info("Started new logging session")
    if log_file is not None:
        logger.info("Log file: %s", log_file)
    return log_file
