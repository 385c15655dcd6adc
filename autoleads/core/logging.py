"""
Structured Logging Infrastructure

JSON log lines carrying two pieces of context so that everything logged while handling
one inbound chat message can be found together:

- a correlation id per HTTP request (X-Correlation-ID)
- the conversation being handled: tenant id and the masked admin handle
"""
import json
import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Iterator, Optional

from autoleads.core.validation import mask_handle

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
conversation_var: ContextVar[Optional[dict[str, Any]]] = ContextVar("conversation", default=None)


class JSONFormatter(logging.Formatter):
    """One JSON object per line; non-ASCII (Indonesian chat text, emoji) kept as is"""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            entry["correlation_id"] = correlation_id

        conversation = conversation_var.get()
        if conversation:
            entry["conversation"] = conversation

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            entry["extra"] = extra_data

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger(logging.Logger):
    """Logger whose level methods accept ``extra_data={...}``"""

    def _log(self, level, msg, args, exc_info=None, extra=None, stack_info=False,
             stacklevel=1, extra_data: dict[str, Any] | None = None):
        if extra_data:
            extra = {**(extra or {}), "extra_data": extra_data}
        super()._log(level, msg, args, exc_info=exc_info, extra=extra,
                     stack_info=stack_info, stacklevel=stacklevel)


logging.setLoggerClass(StructuredLogger)


class CorrelationIdFilter(logging.Filter):
    """Adds correlation_id and conversation attributes for the plain-text format"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        conversation = conversation_var.get()
        record.conversation = (
            f"{conversation['tenant_id']}/{conversation['user']}" if conversation else "-"
        )
        return True


def setup_logging(level: str = "INFO", json_format: bool = True) -> None:
    """
    Configure the root logger.

    JSON lines in production; a readable single-line format when DEBUG is on.
    """
    log_level = getattr(logging, level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-7s [%(correlation_id)s %(conversation)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        handler.addFilter(CorrelationIdFilter())
    root_logger.addHandler(handler)

    # request-level chatter from the HTTP and database clients
    for noisy in ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)  # type: ignore


def generate_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


def set_correlation_id(correlation_id: str | None = None) -> str:
    cid = correlation_id or generate_correlation_id()
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> str:
    """Current correlation id; one is generated and kept if none was set"""
    cid = correlation_id_var.get()
    if not cid:
        cid = set_correlation_id()
    return cid


@contextmanager
def bind_conversation(tenant_id: int, user_handle: str) -> Iterator[None]:
    """Tag every log line inside the block with the conversation being handled"""
    token = conversation_var.set({"tenant_id": tenant_id, "user": mask_handle(user_handle)})
    try:
        yield
    finally:
        conversation_var.reset(token)


def log_async_operation(operation_name: str):
    """Log start (debug), completion with duration (info) and failure (error) of a coroutine"""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            started = time.monotonic()
            logger.debug(f"{operation_name} started", extra_data={"operation": operation_name})

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"{operation_name} failed",
                    extra_data={
                        "operation": operation_name,
                        "duration_seconds": round(time.monotonic() - started, 3),
                        "error": str(e),
                    },
                    exc_info=True
                )
                raise

            logger.info(
                f"{operation_name} completed",
                extra_data={
                    "operation": operation_name,
                    "duration_seconds": round(time.monotonic() - started, 3),
                }
            )
            return result

        return wrapper
    return decorator
