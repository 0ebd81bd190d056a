"""
Centralized logging configuration for the application.
Provides consistent logging setup with proper file paths and rotation.
"""

import os
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Project root directory (2 levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent.absolute()
LOGS_DIR = os.getenv('LOGS_DIR', os.path.join(PROJECT_ROOT, "logs"))

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "httpx", "openai", "asyncio")

def quiet_third_party_loggers(level: int = logging.WARNING) -> None:
    """Raise the level of noisy library loggers."""
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)

def setup_logger(module_name: str, level: int = logging.INFO) -> logging.Logger:
    """
    Configure a logger with console and rotating file handlers.

    Args:
        module_name: Name of the module (used for the logger name and log file)
        level: Level applied to the logger and both handlers

    Returns:
        Configured logger instance
    """
    os.makedirs(LOGS_DIR, exist_ok=True)

    logger = logging.getLogger(module_name)
    logger.setLevel(level)
    logger.propagate = False

    # Clear existing handlers to avoid duplicates when reconfiguring
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    log_file = os.path.join(LOGS_DIR, f"{module_name.replace('.', '_')}.log")
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10*1024*1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    quiet_third_party_loggers()

    logger.info(f"Logger initialized. Log file: {log_file}")

    return logger
