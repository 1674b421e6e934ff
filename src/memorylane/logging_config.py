"""
Logging setup for the MemoryLane server and CLI.

structlog renders every record, including the ones uvicorn emits through
the standard library, so the access log, server errors and the pipeline's
own events come out as one stream in one format.
"""

import logging
import os
from typing import Any

import structlog

UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")

_handler: logging.Handler | None = None


def _level_from_env() -> int:
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def _json_logs_from_env() -> bool:
    return os.getenv("ENVIRONMENT", "development").lower() not in ("development", "dev", "local")


def _uvicorn_access_fields(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Turn uvicorn's access line into request fields."""
    args = event_dict.pop("positional_args", None)
    record = event_dict.get("_record")
    if record is not None and record.name == "uvicorn.access" and isinstance(args, tuple) and len(args) == 5:
        client, method, path, http_version, status_code = args
        event_dict["event"] = "http_request"
        event_dict.update(
            client=client,
            method=method,
            path=path,
            http_version=http_version,
            status_code=status_code,
        )
    return event_dict


def _shared_processors() -> list[Any]:
    return [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]


def _renderers(json_logs: bool) -> list[Any]:
    if json_logs:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer()]


def configure_structured_logging(json_logs: bool | None = None) -> None:
    """
    Route structlog and the standard library through one stderr handler.

    Uvicorn's loggers lose their own handlers and propagate to the root, so
    ``uvicorn.run(..., log_config=None)`` keeps them in this format. Calling
    this again replaces the handler it installed before.

    Args:
        json_logs: One JSON object per line; defaults to True outside development
    """
    global _handler

    log_level = _level_from_env()
    if json_logs is None:
        json_logs = _json_logs_from_env()

    shared = _shared_processors()
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[*shared, _uvicorn_access_fields],
        pass_foreign_args=True,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *_renderers(json_logs),
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    if _handler is not None:
        root_logger.removeHandler(_handler)
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)
    _handler = handler

    for name in UVICORN_LOGGERS:
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True
        uvicorn_logger.setLevel(log_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.get_logger("memorylane.logging").info(
        "logging_configured", log_level=logging.getLevelName(log_level), json_logs=json_logs
    )


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)


def log_performance(operation: str, duration: float, **context: Any) -> None:
    """Record how long a conversion, thumbnail or export took."""
    get_logger("memorylane.performance").info(
        "performance_metric", operation=operation, duration_seconds=duration, **context
    )


def log_user_action(actor: str, action: str, **context: Any) -> None:
    """
    Log gallery actions for the audit trail.

    Args:
        actor: Uploader display name, or "admin" for export/delete operations
        action: Action performed
        **context: Additional context information
    """
    get_logger("memorylane.user_actions").info("user_action", actor=actor, action=action, **context)


def log_error(error: Exception, context: dict[str, Any] | None = None, level: str = "error") -> None:
    """
    Log errors with structured context.

    Args:
        error: Exception that occurred
        context: Additional context information
        level: Log method to use ("error" or "warning")
    """
    logger = get_logger("memorylane.errors")
    error_context = {"error_type": type(error).__name__, "error_message": str(error), **(context or {})}

    if level == "warning":
        logger.warning("error_occurred", **error_context)
    else:
        logger.error("error_occurred", **error_context, exc_info=error)
