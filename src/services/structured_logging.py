"""
Structured logging for the trust engine.

Every line is a JSON object (plain text with ``TRUST_LOG_JSON=false``).
Lines written while serving a request carry its id, method, path and
collaborator. Trust flows attach their own fields through
``StructuredLogger``: each ingestion outcome and each level transition is a
single line with ``event_type``, ``subject_id`` and ``role``, so one subject
can be followed through the ledger from the logs alone.
"""

import os
import json
import logging
from datetime import datetime, timezone

from flask import Flask, has_request_context, request

from src.services.request_context import elapsed_ms, get_request_context

TRUST_LOGGERS = (
    'trust.ingestion',
    'trust.levels',
    'trust.eligibility',
    'trust.alerting',
    'trust.sweep',
    'trust.requests',
    'trust.errors',
)

# probes and scrapes would drown the request log
QUIET_PATHS = frozenset({'/healthz', '/readyz', '/metrics'})

SLOW_OPERATION_MS = 1000


def json_logging_enabled() -> bool:
    return os.environ.get('TRUST_LOG_JSON', 'true').lower() == 'true'


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, with request context and trust fields."""

    def __init__(self, json_enabled: bool = True):
        super().__init__()
        self.json_enabled = json_enabled

    def format(self, record: logging.LogRecord) -> str:
        if not self.json_enabled:
            return super().format(record)

        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        if has_request_context():
            entry.update(get_request_context())
        entry.update(getattr(record, 'trust_fields', {}))
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class StructuredLogger:
    """A stdlib logger whose keyword arguments become structured fields."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def log(self, level: int, message: str, **fields):
        self.logger.log(level, message, extra={'trust_fields': fields})

    def info(self, message: str, **fields):
        self.log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields):
        self.log(logging.WARNING, message, **fields)

    def error(self, message: str, **fields):
        self.log(logging.ERROR, message, **fields)

    def critical(self, message: str, **fields):
        self.log(logging.CRITICAL, message, **fields)

    def log_ingestion_event(self, outcome: str, subject_id: str, role: str, **fields):
        """
        One line per lifecycle notification.

        ``outcome`` is inserted, duplicate or rejected; rejections are logged
        as warnings since the sending collaborator has to fix its payload.
        """
        level = logging.WARNING if outcome == 'rejected' else logging.INFO
        self.log(
            level,
            f"Trust event {outcome} for {role}:{subject_id}",
            event_type='trust_ingestion',
            outcome=outcome,
            subject_id=subject_id,
            role=role,
            **fields
        )

    def log_level_transition(self, subject_id: str, role: str, from_level: int,
                             to_level: int, reason: str, **fields):
        direction = 'promotion' if to_level > from_level else 'demotion'
        self.info(
            f"Trust level {from_level} -> {to_level} ({direction}) for {role}:{subject_id}",
            event_type='trust_level_transition',
            subject_id=subject_id,
            role=role,
            from_level=from_level,
            to_level=to_level,
            direction=direction,
            reason=reason,
            **fields
        )

    def log_performance_event(self, operation: str, duration_ms: float, **fields):
        level = logging.WARNING if duration_ms > SLOW_OPERATION_MS else logging.DEBUG
        self.log(
            level,
            f"{operation} took {duration_ms}ms",
            event_type='performance',
            operation=operation,
            duration_ms=duration_ms,
            **fields
        )

    def log_error_event(self, error: str, error_type: str = 'application', **fields):
        self.error(
            f"Error: {error}",
            event_type='error',
            error_type=error_type,
            error_message=error,
            **fields
        )


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name)


def configure_logging(app: Flask):
    """Install the structured handler on the root logger and set trust.* levels."""
    json_enabled = json_logging_enabled()
    log_level = os.environ.get('LOG_LEVEL', 'INFO').upper()
    level = getattr(logging, log_level, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    # replace our own handler on repeated app creation, leave others alone
    for handler in [h for h in root.handlers if getattr(h, 'trust_handler', False)]:
        root.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.trust_handler = True
    handler.setFormatter(StructuredFormatter(json_enabled=json_enabled))
    root.addHandler(handler)

    app.logger.setLevel(level)
    for name in TRUST_LOGGERS:
        logging.getLogger(name).setLevel(level)

    get_logger('trust.config').info(
        "Logging configured", json_enabled=json_enabled, log_level=log_level)


def _log_request_start():
    if request.path in QUIET_PATHS:
        return
    get_logger('trust.requests').info(
        f"Request started: {request.method} {request.path}",
        event_type='request_start',
        content_length=request.content_length,
    )


def _log_request_end(response):
    if request.path in QUIET_PATHS:
        return response
    get_logger('trust.requests').info(
        f"Request completed: {request.method} {request.path} - {response.status_code}",
        event_type='request_end',
        status_code=response.status_code,
        duration_ms=elapsed_ms(),
    )
    return response


def init_logging(app: Flask):
    """Configure logging and log every API request except probes."""
    configure_logging(app)
    app.before_request(_log_request_start)
    app.after_request(_log_request_end)
