"""Loguru setup.

Every module logs through `get_logger(__name__)` with snake_case event names
and bound context:

    logger.bind(execution_id=execution.id, to_status="running").info("execution_transitioned")

Stdlib loggers (uvicorn, sqlalchemy, httpx, apscheduler) are routed into
loguru so there is a single sink.
"""

import logging
import sys
from typing import Any

from loguru import logger

from jobwatch.config import get_settings

DEBUG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level> | {extra}"
)
PLAIN_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} | {message} | {extra}"

STDLIB_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "sqlalchemy.engine",
    "httpx",
    "apscheduler",
)

# Access-log lines for these are noise at INFO: pollers hit them every 5s
QUIET_PATHS = ("/health", "GET /api/job-executions")


class InterceptHandler(logging.Handler):
    """Forward stdlib log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging's own frames so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _drop_polling_noise(record: dict[str, Any]) -> bool:
    message = record.get("message", "")
    if any(path in message for path in QUIET_PATHS):
        return record["level"].no <= logging.DEBUG
    return True


def setup_logging() -> None:
    """Install the loguru sink and intercept stdlib logging."""
    settings = get_settings()
    logger.remove()

    if settings.log_json:
        logger.add(sys.stderr, level="INFO", serialize=True, filter=_drop_polling_noise)
    elif settings.debug:
        logger.add(sys.stderr, level="DEBUG", format=DEBUG_FORMAT, backtrace=True, diagnose=True)
    else:
        logger.add(
            sys.stderr,
            level="INFO",
            format=PLAIN_FORMAT,
            filter=_drop_polling_noise,
            backtrace=True,
            diagnose=False,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in STDLIB_LOGGERS:
        logging.getLogger(name).handlers = [InterceptHandler()]


def get_logger(name: str) -> Any:
    """Logger carrying the module name in its extra context."""
    return logger.bind(name=name)
