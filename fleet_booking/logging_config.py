"""
structlog setup shared by the API, the dashboard refresher and stdlib loggers

Events are snake_case names with key/value context, e.g.
reservation_created(reservation_id=..., resource_id=...). Values bound with
structlog.contextvars (the request id from the tracing middleware) are
merged into every line.
"""
import logging
import structlog
from typing import Any, Optional

from .config import settings


def add_app_context(logger: Any, method_name: str, event_dict: dict) -> dict:
    event_dict['app'] = 'fleet-booking'
    event_dict['version'] = settings.app_version
    event_dict['environment'] = settings.environment
    return event_dict


def drop_color_message_key(logger: Any, method_name: str, event_dict: dict) -> dict:
    # uvicorn access logs carry an ANSI copy of the message
    event_dict.pop('color_message', None)
    return event_dict


def configure_logging(log_level: str = "INFO", json_logs: bool = True):
    """
    Route structlog and stdlib logging through one handler

    JSON lines when json_logs is set (FLEET_JSON_LOGS), a console renderer
    for local runs otherwise.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        add_app_context,
        drop_color_message_key,
    ]

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[structlog.stdlib.filter_by_level] + shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    ))
    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level.upper())

    # asyncpg and redis are chatty at DEBUG
    for noisy in ("asyncpg", "redis"):
        logging.getLogger(noisy).setLevel(max(root_logger.level, logging.INFO))


def get_logger(name: Optional[str] = None):
    return structlog.get_logger(name) if name else structlog.get_logger()
