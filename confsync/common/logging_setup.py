"""
Structured Logging Setup

Consistent logging configuration across the client.
Uses JSON format for structured logs in production.

Library loggers live under the "confsync" namespace and propagate to the
application's handlers. Applications (and the CLI) call setup_logging()
once to attach a JSON or text handler to the "confsync" root logger.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from .content import truncate_content

ROOT_LOGGER_NAME = "confsync"

_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "service",
    "message", "taskName",
))


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds service name to all logs"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs.setdefault("extra", {})
        kwargs["extra"]["service"] = self.extra.get("service", "unknown")
        return msg, kwargs


def setup_logging(
    log_level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    Attach a stdout handler to the confsync root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (True for production, False for dev)

    Returns:
        Configured root logger for the package
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(numeric_level)

    # Clear existing handlers so repeated calls don't duplicate output
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)

    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Don't propagate to root logger once we own the output
    logger.propagate = False

    return logger


def setup_logging_from_env(default_level: str = "INFO") -> logging.Logger:
    """Configure logging from CONFSYNC_LOG_LEVEL / CONFSYNC_LOG_FORMAT"""
    log_level = os.environ.get("CONFSYNC_LOG_LEVEL", default_level)
    json_format = os.environ.get("CONFSYNC_LOG_FORMAT", "json").lower() == "json"
    return setup_logging(log_level, json_format)


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """
    Get a logger adapter with service context.

    Args:
        service_name: Name of the component (e.g., "config.sync")

    Returns:
        Logger adapter with service name in all logs
    """
    logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{service_name}")

    # Check for environment variable override
    log_level = os.environ.get("CONFSYNC_LOG_LEVEL")
    if log_level:
        logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    return ServiceLoggerAdapter(logger, {"service": service_name})


# Convenience loggers for common operations
def log_config_read(
    logger: logging.LoggerAdapter,
    agent_name: str,
    tier: str,
    data_id: str,
    group: str,
    tenant: str,
    content: str | None,
) -> None:
    """Log which tier a getConfig call was answered from"""
    log_method = logger.info if tier == "live" else logger.warning
    log_method(
        f"[{agent_name}] [get-config] get {tier} ok, dataId={data_id}, group={group}, "
        f"tenant={tenant}, config={truncate_content(content)}",
        extra={"tier": tier, "data_id": data_id, "group": group, "tenant": tenant},
    )


def log_config_write(
    logger: logging.LoggerAdapter,
    agent_name: str,
    operation: str,
    data_id: str,
    group: str,
    tenant: str,
    status: int | None,
    detail: str = "",
    success: bool = True,
) -> None:
    """Log a publish/remove outcome"""
    if success:
        logger.info(
            f"[{agent_name}] [{operation}] ok, dataId={data_id}, group={group}, tenant={tenant}",
            extra={"operation": operation, "data_id": data_id, "group": group, "status": status},
        )
    else:
        logger.warning(
            f"[{agent_name}] [{operation}] error, dataId={data_id}, group={group}, "
            f"tenant={tenant}, code={status}, msg={detail}",
            extra={"operation": operation, "data_id": data_id, "group": group, "status": status},
        )
