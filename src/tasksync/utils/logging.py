"""Logging configuration and utilities."""

import functools
import logging
import logging.handlers
import sys
import time
from pathlib import Path
from typing import List, Optional

import structlog
import colorlog
from structlog.typing import Processor


LOG_COLORS = {
    'DEBUG': 'cyan',
    'INFO': 'green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'red,bg_white',
}

# Chatty third-party loggers kept at WARNING unless we run at DEBUG
QUIET_LOGGERS = ("apscheduler", "aiohttp.access", "sqlalchemy.engine")


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None
) -> None:
    """Configure structlog and the root handlers.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        log_level: Level name, defaults to ``LOG_LEVEL``
        log_format: ``json`` or ``console``, defaults to ``LOG_FORMAT``
        log_file: Rotating log file, defaults to ``LOG_FILE_PATH``
    """
    # Imported here: the config package itself logs through this module
    from ..config.settings import get_settings

    settings = get_settings()

    level = getattr(logging, (log_level or settings.logging.level).upper())
    format_type = (log_format or settings.logging.format).lower()
    file_path = log_file or settings.logging.file_path

    structlog.configure(
        processors=_processors(format_type),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level)

    root.addHandler(console_handler(level, format_type))
    if file_path:
        root.addHandler(file_handler(file_path, level))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(level if level == logging.DEBUG else logging.WARNING)


def _processors(format_type: str) -> List[Processor]:
    processors: List[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if format_type == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        # Level colour comes from colorlog on the console handler
        processors.append(structlog.processors.KeyValueRenderer(
            key_order=["timestamp", "logger", "event"],
            drop_missing=True
        ))

    return processors


def console_handler(level: int, format_type: str) -> logging.Handler:
    """Stdout handler; console format gets a coloured level prefix."""
    handler = colorlog.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if format_type == "json":
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler.setFormatter(colorlog.ColoredFormatter(
            "%(log_color)s%(levelname)-8s%(reset)s %(message)s",
            reset=True,
            log_colors=LOG_COLORS
        ))

    return handler


def file_handler(file_path: str, level: int) -> logging.Handler:
    """Rotating file handler for already-rendered records."""
    log_file = Path(file_path)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def _log_timing(func, started: float, error: Optional[BaseException] = None) -> None:
    logger = get_logger(func.__module__)
    elapsed = f"{time.perf_counter() - started:.4f}s"

    if error is None:
        logger.debug("Call finished", function=func.__qualname__, execution_time=elapsed)
    else:
        logger.error(
            "Call failed",
            function=func.__qualname__,
            execution_time=elapsed,
            error_type=type(error).__name__,
            error=str(error)
        )


def log_execution_time(func):
    """Log how long a call took, and the error if it raised."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        started = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            _log_timing(func, started, e)
            raise
        _log_timing(func, started)
        return result

    return wrapper


def log_async_execution_time(func):
    """Async version of ``log_execution_time``."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        started = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            _log_timing(func, started, e)
            raise
        _log_timing(func, started)
        return result

    return wrapper
