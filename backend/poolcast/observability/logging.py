from __future__ import annotations

import logging
from typing import Any, Dict

import structlog

from poolcast.config import get_settings

SERVICE_NAME = "poolcast"

# libraries that are chatty at INFO
_QUIET_LOGGERS = ("apscheduler", "sqlalchemy.engine", "httpx")


def configure_logging(level: str | None = None) -> None:
    """Route stdlib and structlog records to stdout as one JSON object per line."""
    log_level = (level or get_settings().LOG_LEVEL).upper()

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[logging.StreamHandler()],
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            _add_service,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
        wrapper_class=structlog.stdlib.BoundLogger,
    )


def _add_service(logger: Any, name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict
