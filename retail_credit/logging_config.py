"""
Structured Logging Configuration Module

Provides JSON-formatted structured logging for ledger operations.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional

LOGGER_NAME = "retail_credit"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "action": getattr(record, 'action', None),
            "resource": getattr(record, 'resource', None),
            "error_code": getattr(record, 'error_code', None),
            "extra": getattr(record, 'extra_fields', None)
        }

        # Remove None values
        log_entry = {k: v for k, v in log_entry.items() if v is not None}

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", log_format: str = "json",
                  log_file: Optional[str] = None,
                  logger_name: str = LOGGER_NAME) -> logging.Logger:
    """
    Setup logging for the engine.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: ``json`` for structured output, anything else for plain text
        log_file: Optional file path; stdout/stderr when None
        logger_name: Name of the root engine logger

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    # Remove existing handlers to avoid duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s"
        ))

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def setup_logging_from_config(config) -> logging.Logger:
    """Setup logging from a ``FinancingConfig``"""
    return setup_logging(config.log_level, config.log_format, config.log_file)


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    """Get logger instance, namespaced under the engine logger"""
    if name != LOGGER_NAME and not name.startswith(LOGGER_NAME + "."):
        name = f"{LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               action: Optional[str] = None, resource: Optional[str] = None,
               error_code: Optional[str] = None, extra: Optional[dict] = None):
    """
    Log a ledger action with structured fields.

    Args:
        logger: Logger instance
        level: Log level (info, warning, error, etc.)
        message: Log message
        action: Operation being performed (e.g. ``apply_payment``)
        resource: Aggregate acted upon (e.g. ``loan:<id>``)
        error_code: Failure code when the action was rejected
        extra: Additional structured data
    """
    fields = {}
    if action:
        fields['action'] = action
    if resource:
        fields['resource'] = resource
    if error_code:
        fields['error_code'] = error_code
    if extra:
        fields['extra_fields'] = extra

    logger.log(getattr(logging, level.upper()), message, extra=fields)
