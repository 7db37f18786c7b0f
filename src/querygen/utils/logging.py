import json
import logging
import inspect
from typing import Any, Optional

import structlog

from querygen.config import get_settings

_logging_configured = False

# Fields rendered by the console formatter itself
_CONSOLE_SKIP_FIELDS = {"timestamp", "level", "module", "event", "trace_id", "logger"}


def _add_module_info(logger: Any, method_name: str, event_dict: structlog.types.EventDict) -> structlog.types.EventDict:
    """
    Add a short module name to log records.

    "querygen.workflow.stages.get_tables" becomes "stages.get_tables".
    """
    logger_name = event_dict.get("logger", "unknown")

    if logger_name.startswith("querygen."):
        module_parts = logger_name.split(".")
        event_dict["module"] = ".".join(module_parts[-2:])
    else:
        event_dict["module"] = logger_name

    return event_dict


def _json_renderer(logger: Any, method_name: str, event_dict: structlog.types.EventDict) -> str:
    """Render one log record as a single JSON line."""
    return json.dumps(event_dict, ensure_ascii=False, default=str)


def _console_renderer(logger: Any, method_name: str, event_dict: structlog.types.EventDict) -> str:
    """Readable single-line format for local runs."""
    level = str(event_dict.get("level", "")).upper()
    main_msg = (
        f"{event_dict.get('timestamp', '')} [{level}] "
        f"{event_dict.get('module', '')}: {event_dict.get('event', '')}"
    )

    trace_id = event_dict.get("trace_id")
    if trace_id:
        main_msg += f" (trace: {str(trace_id)[:8]})"

    other_fields = [
        f"{key}={value}" for key, value in event_dict.items()
        if key not in _CONSOLE_SKIP_FIELDS
    ]
    if other_fields:
        main_msg += f" | {', '.join(other_fields)}"

    return main_msg


def configure_logging(log_level: Optional[str] = None, console: bool = False) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Overrides settings.app.log_level when given
        console: Render human-readable lines instead of JSON
    """
    global _logging_configured

    if _logging_configured:
        return
    _logging_configured = True

    level_name = log_level or get_settings().app.log_level.value

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level_name),
        handlers=[logging.StreamHandler()]
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _add_module_info,
            _console_renderer if console else _json_renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("Knowledge graph seeded", tables=14, concepts=3, trace_id="abc-123")
    """
    return structlog.get_logger(name)


def get_module_logger() -> structlog.stdlib.BoundLogger:
    """
    Get a logger named after the calling module.

    Falls back to 'unknown' if frame inspection fails.
    """
    module_name = "unknown"
    frame = None

    try:
        frame = inspect.currentframe()
        if frame is not None and frame.f_back is not None:
            module_name = frame.f_back.f_globals.get("__name__", "unknown")
    except (AttributeError, RuntimeError):
        # Frame inspection is unavailable in some interpreters
        pass
    finally:
        if frame is not None:
            del frame

    return get_logger(module_name)
