"""
Logging configuration for hiroval.

Every entry point (CLI, API, tests that bootstrap settings) goes through
`configure_logging`; library modules only call `get_logger()`.

Settings can be loaded more than once per process (the API after a CLI
command, one test after another), so configuration is re-entrant: the console
and file handlers are created once and looked up by name afterwards, the level
follows the latest call, and the file handler moves when `logs_dir` changes.
"""

from __future__ import annotations

import logging
from pathlib import Path

LOGGER_NAME = "hiroval"
LOG_FILENAME = "hiroval.log"

_CONSOLE = "hiroval.console"
_FILE = "hiroval.file"
_FORMAT = logging.Formatter(fmt="%(asctime)s %(levelname)s %(name)s %(message)s", datefmt="%Y-%m-%d %H:%M:%S")


def get_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def _named(logger: logging.Logger, name: str) -> logging.Handler | None:
    for handler in logger.handlers:
        if handler.get_name() == name:
            return handler
    return None


def _file_handler(logger: logging.Logger, log_path: Path) -> logging.Handler:
    current = _named(logger, _FILE)
    if isinstance(current, logging.FileHandler) and Path(current.baseFilename) == log_path:
        return current
    if current is not None:
        logger.removeHandler(current)
        current.close()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.set_name(_FILE)
    logger.addHandler(handler)
    return handler


def configure_logging(log_dir: Path, level: str = "INFO") -> logging.Logger:
    level_name = str(level).upper()
    logger = get_logger()
    # Raises ValueError for an unknown level name.
    logger.setLevel(level_name)
    # Records stay off the root logger so uvicorn/pytest handlers do not repeat them.
    logger.propagate = False

    console = _named(logger, _CONSOLE)
    if console is None:
        console = logging.StreamHandler()
        console.set_name(_CONSOLE)
        logger.addHandler(console)
    file_handler = _file_handler(logger, (Path(log_dir) / LOG_FILENAME).resolve())

    for handler in (console, file_handler):
        handler.setFormatter(_FORMAT)
        handler.setLevel(level_name)
    return logger
