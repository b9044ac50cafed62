from __future__ import annotations

import logging
import threading

import structlog

from telemetry.config import log_json, log_level

_CONFIGURED = False
_LOCK = threading.Lock()


def configure_logging(*, level: str | None = None, json: bool | None = None) -> None:
    """
    Configure structlog once per process.

    Defaults come from GEOTILER_LOG_LEVEL / GEOTILER_LOG_JSON.
    """
    global _CONFIGURED
    with _LOCK:
        if _CONFIGURED:
            return
        lvl = getattr(logging, (level or log_level()).upper(), logging.INFO)
        renderer = (
            structlog.processors.JSONRenderer(sort_keys=True)
            if (log_json() if json is None else json)
            else structlog.dev.ConsoleRenderer(colors=False)
        )
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.format_exc_info,
                renderer,
            ],
            wrapper_class=structlog.make_filtering_bound_logger(lvl),
            cache_logger_on_first_use=True,
        )
        _CONFIGURED = True


def get_logger(component: str) -> structlog.typing.FilteringBoundLogger:
    return structlog.get_logger(component=component)
