"""Logging configuration using loguru."""

import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from loguru import logger

from knowledge_rag.utils.config import get_settings

# Request scope is bound per call with request_scope() and rendered on every line.
CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<magenta>{extra[scope]}</magenta> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | "
    "{name}:{function}:{line} | {extra[scope]} - {message}"
)

NO_SCOPE = "-"

logger.configure(extra={"scope": NO_SCOPE})


def format_scope(
    user_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    agent_id: Optional[str] = None,
) -> str:
    """Render request scope ids as a compact log field."""
    parts = [
        f"{name}={value}"
        for name, value in (("tenant", tenant_id), ("user", user_id), ("agent", agent_id))
        if value
    ]
    return " ".join(parts) or NO_SCOPE


@contextmanager
def request_scope(
    user_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    agent_id: Optional[str] = None,
) -> Iterator[None]:
    """
    Attach the caller's scope to every log line emitted inside the block.

    Scope travels through context variables, so concurrent requests on one
    event loop keep their own ids.
    """
    with logger.contextualize(scope=format_scope(user_id, tenant_id, agent_id)):
        yield


def setup_logger(log_to_file: bool = True):
    """Configure application logging using loguru.

    Sets up console logging and, unless disabled, a rotating file sink.
    """
    settings = get_settings()

    # Remove default handler
    logger.remove()

    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level="DEBUG" if settings.debug_mode else settings.log_level,
        colorize=True,
    )

    if not log_to_file:
        return logger

    log_path = Path(settings.log_file_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    if settings.log_format == "json":
        # Serialized records carry the scope under record.extra
        logger.add(
            log_path,
            format="{message}",
            level=settings.log_level,
            rotation=f"{settings.log_max_size_mb} MB",
            retention=settings.log_backup_count,
            serialize=True,
        )
    else:
        logger.add(
            log_path,
            format=FILE_FORMAT,
            level=settings.log_level,
            rotation=f"{settings.log_max_size_mb} MB",
            retention=settings.log_backup_count,
        )

    logger.info(f"Logger initialized with level: {settings.log_level}")
    logger.info(f"Logging to file: {log_path}")

    return logger


def get_logger():
    """Get the configured logger instance."""
    return logger
