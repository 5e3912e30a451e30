"""Logging setup for the statistics bot.

Three rotating files under ``LOG_DIR`` plus a coloured console:

- speechstats.log: everything at ``LOG_LEVEL`` and above
- errors.log: ERROR and above, with source location
- debug.log: everything, including per-message ``[STATS]`` lines
"""

import logging
import logging.handlers
import pathlib
import sys
from typing import Optional

from speechstats.config import settings

_logging_initialized = False

LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
RESET = "\033[0m"

LINE_FORMAT = "[%(asctime)s] %(levelname)-8s [%(module_name)s] %(message)s"
ERROR_FORMAT = "[%(asctime)s] %(levelname)-8s [%(name)s:%(lineno)d] %(message)s\n    File: %(pathname)s"

# chatty third-party loggers
QUIET_LOGGERS = {
    "aiogram": logging.INFO,
    "aiosqlite": logging.WARNING,
    "asyncio": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}


class ColoredFormatter(logging.Formatter):
    """Console formatter painting the level name."""

    def format(self, record: logging.LogRecord) -> str:
        color = LEVEL_COLORS.get(record.levelno)
        if not color:
            return super().format(record)
        original = record.levelname
        record.levelname = f"{color}{original}{RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class ModuleNameFilter(logging.Filter):
    """Sets ``module_name``: ``speechstats.services.aggregation`` -> ``aggregation``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.module_name = record.name.rsplit(".", 1)[-1] if record.name else "root"
        return True


def _rotating(path: pathlib.Path, level: int, formatter: logging.Formatter, megabytes: int, backups: int):
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=megabytes * 1024 * 1024, backupCount=backups, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_dir: Optional[str] = None, level: Optional[str] = None) -> None:
    """Initialise logging once per process."""
    global _logging_initialized

    if _logging_initialized:
        return
    _logging_initialized = True

    directory = pathlib.Path(log_dir or settings.log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    level_name = (level or settings.log_level).upper()
    main_level = getattr(logging, level_name, logging.INFO)

    file_format = logging.Formatter(LINE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(main_level)
    console.setFormatter(ColoredFormatter(LINE_FORMAT, datefmt="%H:%M:%S"))

    handlers = [
        _rotating(directory / "speechstats.log", main_level, file_format, 10, 5),
        _rotating(directory / "errors.log", logging.ERROR,
                  logging.Formatter(ERROR_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"), 5, 10),
        _rotating(directory / "debug.log", logging.DEBUG, file_format, 20, 3),
        console,
    ]

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(logging.DEBUG)
    module_filter = ModuleNameFilter()
    for handler in handlers:
        handler.addFilter(module_filter)
        root_logger.addHandler(handler)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    logging.info(f"Logging: level={level_name} | dir={directory.absolute()}")
