import logging
import sys
from typing import Any

from loguru import logger

from promptloop.config import get_settings

# Placeholder for records logged outside a runner pass
NO_RUNNER = "-"

DEBUG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[runner_id]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level> | {extra}"
)

PLAIN_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[runner_id]} | "
    "{name}:{function}:{line} | {message} | {extra}"
)

INTERCEPTED_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "sqlalchemy.engine",
    "httpx",
    "apscheduler",
)


class InterceptHandler(logging.Handler):
    """Intercept stdlib logging and redirect to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk back to the frame that called into stdlib logging
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _trigger_noise_filter(record: dict[str, Any]) -> bool:
    """Hide health and cron trigger access logs unless at DEBUG level."""
    message = record.get("message", "")
    if "/health" in message or "/api/cron/run-jobs" in message:
        return bool(record["level"].no <= 10)
    return True


def setup_logging(runner_id: str | None = None) -> None:
    """
    Configure loguru for the application.

    Args:
        runner_id: Default `runner_id` shown on every record. Runner passes
            override it for their own records via `logger.contextualize`.
    """
    settings = get_settings()

    logger.remove()
    logger.configure(extra={"runner_id": runner_id or NO_RUNNER})

    if settings.debug:
        logger.add(sys.stderr, level="DEBUG", format=DEBUG_FORMAT, backtrace=True, diagnose=True)
    else:
        # Runner processes log to stderr; the process supervisor collects it
        logger.add(
            sys.stderr,
            level="INFO",
            format=PLAIN_FORMAT,
            filter=_trigger_noise_filter,
            backtrace=True,
            diagnose=False,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in INTERCEPTED_LOGGERS:
        logging.getLogger(name).handlers = [InterceptHandler()]


def get_logger(name: str) -> Any:
    """Get a logger bound to a name."""
    return logger.bind(name=name)
