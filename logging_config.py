"""
Logging configuration for the command-line runner.

Usage:
    import logging_config
    logging_config.setup(log_file=".data/engine.log")
"""

import logging
import sys
from logging.handlers import RotatingFileHandler

from flash_arbitrage.utils import LOG_DATE_FORMAT, LOG_FORMAT, ensure_path_exists

APP_LOGGERS = ("__main__", "run_flash_arb", "venues", "flash_arbitrage")
NOISY_LOGGERS = ("web3", "urllib3", "aiohttp.access", "aiosqlite", "asyncio")


def _is_app_logger(name: str) -> bool:
    return any(name == prefix or name.startswith(prefix + ".") for prefix in APP_LOGGERS)


def setup(level=logging.INFO, log_file=None, max_bytes=10 * 1024 * 1024, backup_count=5):
    """
    Route all engine logging through the root logger.

    Module loggers created by get_logger() carry their own console handler
    so library use and tests print something; once the CLI configures the
    root logger those handlers are removed to avoid duplicate lines.

    Args:
        level: Level for the console and the application loggers
        log_file: Optional path for a size-rotated copy of the log
        max_bytes: Rotation size of the log file
        backup_count: Rotated files to keep
    """
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        path = ensure_path_exists(log_file, is_file=True)
        file_handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    for name in list(logging.root.manager.loggerDict):
        if _is_app_logger(name):
            app_logger = logging.getLogger(name)
            app_logger.handlers.clear()
            app_logger.setLevel(level)
            app_logger.propagate = True

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def setup_minimal(log_file=None):
    """
    Only warnings and errors.
    Good for production when you only care about problems.
    """
    setup(level=logging.WARNING, log_file=log_file)


def setup_debug(log_file=None):
    """Verbose logging, including web3 provider requests."""
    setup(level=logging.DEBUG, log_file=log_file)
    logging.getLogger("web3").setLevel(logging.DEBUG)
