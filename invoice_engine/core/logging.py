"""
Loguru setup for the API process.

Replaces loguru's default handler with a single stderr sink and forwards
stdlib ``logging`` records (uvicorn, azure-core) into loguru so everything
ends up in one stream.
"""

import logging
import sys

from loguru import logger

from .config import settings


class InterceptHandler(logging.Handler):
    """Route stdlib logging records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str | None = None, json_logs: bool | None = None):
    """
    Configure loguru and return the shared logger.

    Args:
        level: Minimum level (defaults to LOG_LEVEL)
        json_logs: Serialize records as JSON (defaults to LOG_JSON)
    """
    level = (level or settings.log_level).upper()
    json_logs = settings.log_json if json_logs is None else json_logs

    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        serialize=json_logs,
        backtrace=False,
        diagnose=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "azure"):
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False

    # Azure SDK HTTP logging is very chatty at INFO
    logging.getLogger("azure.core.pipeline.policies.http_logging_policy").setLevel(logging.WARNING)

    logger.debug("Logging configured", level=level, json=json_logs)
    return logger
