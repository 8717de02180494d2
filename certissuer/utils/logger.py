"""Logging configuration."""

import logging
from pathlib import Path
from typing import Optional

from certissuer.models.config import AppConfig

LOGGER_NAME = "certissuer"


def setup_logger(config: Optional[AppConfig] = None) -> logging.Logger:
    """
    Configure application logger.

    Args:
        config: Application configuration

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    level = logging.INFO
    if config is not None:
        level = getattr(logging, config.logging.level.upper(), logging.INFO)

    logger.setLevel(level)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)

    # File handler (if configured)
    if config is not None and config.logging.file:
        log_file = Path(config.logging.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(config.logging.format))
        logger.addHandler(file_handler)

    return logger
