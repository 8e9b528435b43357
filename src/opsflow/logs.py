"""Logging setup: Rich console handler plus an optional log file."""

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from .config import AppConfig

LOGGER_NAME = "opsflow"
LOG_FILE_NAME = "opsflow.log"
FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def setup_logging(config: AppConfig | None = None, verbose: bool = False) -> logging.Logger:
    """
    Configure the package logger.

    Handlers are attached once; later calls only adjust the level.

    Args:
        config: Application config (logging section, logs_dir)
        verbose: Force DEBUG level and show source paths

    Returns:
        The configured "opsflow" logger
    """
    config = config or AppConfig()
    logger = logging.getLogger(LOGGER_NAME)

    level = logging.DEBUG if verbose else getattr(logging, str(config.logging.level).upper(), logging.WARNING)
    logger.setLevel(level)
    logger.propagate = False

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    if config.logging.console_logging:
        handler = RichHandler(
            console=Console(stderr=True),
            show_time=True,
            show_path=verbose,
            rich_tracebacks=True,
        )
        handler.setLevel(level)
        logger.addHandler(handler)

    if config.logging.file_logging:
        log_path = _log_file_path(config)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger


def _log_file_path(config: AppConfig) -> Path:
    logs_dir = config.paths.logs_dir or config.paths.resolved_workflows_dir().parent / "logs"
    return Path(logs_dir) / LOG_FILE_NAME
