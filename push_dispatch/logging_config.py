"""
Structured JSON logging for the dispatch pipeline.
Each log line carries the notification, correlation, user and request ids
bound for the current drain record or immediate send.
"""

import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from pythonjsonlogger import jsonlogger

CONTEXT_FIELDS = ("notification_id", "correlation_id", "user_id", "request_id")

_context: Dict[str, ContextVar] = {
    name: ContextVar(name, default=None) for name in CONTEXT_FIELDS
}

_service_name = "push-dispatch-service"


def set_context(**ids: Optional[str]) -> None:
    """Bind ids for the current task; empty values leave the previous binding"""
    for name, value in ids.items():
        if value:
            _context[name].set(value)


def clear_context() -> None:
    for var in _context.values():
        var.set(None)


class CorrelationIdFilter(logging.Filter):
    """Copy the bound ids onto every record, '-' when unset"""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, var in _context.items():
            setattr(record, name, var.get() or "-")
        return True


class JsonFormatter(jsonlogger.JsonFormatter):

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any]
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        for name in CONTEXT_FIELDS:
            log_record[name] = getattr(record, name, '-')
        log_record['service'] = _service_name
        log_record['level'] = record.levelname


def configure_logging(log_level: str = "INFO", service_name: Optional[str] = None) -> None:
    """Install one JSON stdout handler on the root logger; safe to call twice"""
    global _service_name
    if service_name:
        _service_name = service_name

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    if not any(isinstance(h.formatter, JsonFormatter) for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter('%(message)s %(levelname)s %(name)s'))
        handler.addFilter(CorrelationIdFilter())
        root_logger.addHandler(handler)

    logging.getLogger('push_dispatch').setLevel(log_level)

    for noisy in ('asyncpg', 'httpx', 'httpcore', 'redis'):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
