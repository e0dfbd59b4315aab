"""
Logging for the USSD service

One JSON object per line. A USSD round-trip and an M-Pesa callback are each
a separate request, so every line carries the correlation ID of the request
that wrote it; grep by that ID to follow one dial or one payment.

    logger = get_logger(__name__)
    logger.info("Policy created", extra_data={"policy_number": number})
"""
import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from typing import Any

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

# Daraja credentials never reach the log sink
REDACTED_KEYS = frozenset({
    "password",
    "passkey",
    "consumer_secret",
    "access_token",
    "authorization",
})

# Client libraries that are chatty at INFO
_QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(correlation_id)s] %(name)s: %(message)s"


def redact(data: dict[str, Any]) -> dict[str, Any]:
    return {
        key: "***" if str(key).lower() in REDACTED_KEYS else value
        for key, value in data.items()
    }


class JSONFormatter(logging.Formatter):
    def __init__(self, app_name: str = "insureme-ussd") -> None:
        super().__init__()
        self.app_name = app_name

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "app": self.app_name,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            entry["correlation_id"] = correlation_id

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            entry["extra"] = redact(extra_data)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger(logging.Logger):
    """
    Logger whose level methods take ``extra_data=``.

    The dict ends up under ``"extra"`` in the JSON line. Every level method,
    ``exception`` and ``log`` included, reaches ``_log``.
    """

    def _log(self, level, msg, args, exc_info=None, extra=None, stack_info=False,
             stacklevel=1, extra_data: dict[str, Any] | None = None):
        if extra_data:
            extra = {**(extra or {}), "extra_data": extra_data}
        super()._log(level, msg, args, exc_info=exc_info, extra=extra,
                     stack_info=stack_info, stacklevel=stacklevel)


logging.setLoggerClass(StructuredLogger)


class CorrelationIdFilter(logging.Filter):
    """Makes %(correlation_id)s available to the text format"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    app_name: str = "insureme-ussd"
) -> None:
    """
    Replace the root handlers with a single stdout handler.

    JSON in deployed environments; a one-line text format when DEBUG is on.
    """
    numeric_level = logging.getLevelName(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(
        JSONFormatter(app_name=app_name)
        if json_format
        else logging.Formatter(_TEXT_FORMAT, datefmt="%H:%M:%S")
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)


def generate_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Bind an ID (or a fresh one) to the current request context"""
    cid = correlation_id or generate_correlation_id()
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> str:
    """Current request's ID; background tasks without one get a fresh ID that sticks"""
    return correlation_id_var.get() or set_correlation_id()


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)  # type: ignore


def log_async_operation(operation_name: str):
    """
    Wrap a coroutine with started/completed/failed log lines and its duration.

    Failures are logged with the traceback and re-raised unchanged.
    """
    def decorator(func):
        logger = get_logger(func.__module__)

        @wraps(func)
        async def wrapper(*args, **kwargs):
            started = time.perf_counter()
            logger.debug(
                f"{operation_name} started",
                extra_data={"operation": operation_name, "status": "started"}
            )
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"{operation_name} failed: {e}",
                    extra_data={
                        "operation": operation_name,
                        "status": "failed",
                        "duration_seconds": round(time.perf_counter() - started, 4),
                        "error_type": type(e).__name__,
                    },
                    exc_info=True
                )
                raise

            logger.info(
                f"{operation_name} completed",
                extra_data={
                    "operation": operation_name,
                    "status": "completed",
                    "duration_seconds": round(time.perf_counter() - started, 4),
                }
            )
            return result

        return wrapper
    return decorator
