"""
Structured Logging Configuration Module

Loan engine operations log one record per state change or rejection, tagged
with who acted (user_id), what they did (action) and on which loan or
installment (resource). Records render as JSON lines by default, or as
plain text for local development.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Attributes log_action attaches to a record; rendered as top-level JSON keys
CONTEXT_FIELDS = ("correlation_id", "user_id", "action", "resource")


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON object"""

    def __init__(self, service: str = "loan_engine"):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service,
            "module": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        details = getattr(record, "details", None)
        if details:
            entry["extra"] = details

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "loan_engine",
                  format_type: str = "json") -> logging.Logger:
    """
    Attach a single stderr handler to the loan engine logger

    Calling it again replaces the previous handler, so it is safe to call
    once per application instance.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Root of the logger tree to configure
        format_type: "json" or "text"
    """
    logger = logging.getLogger(logger_name)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    if format_type == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    else:
        handler.setFormatter(JSONFormatter(service=logger_name))

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False
    return logger


def configure_logging(config) -> logging.Logger:
    """Configure logging from a LoanEngineConfig"""
    return setup_logging(level=config.log_level, format_type=config.log_format)


def get_logger(name: str = "loan_engine") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, correlation_id: Optional[str] = None,
               extra: Optional[dict] = None) -> None:
    """
    Log an engine action with its structured context

    `resource` names the entity as "loan:<id>" or "installment:<id>";
    `extra` carries operation-specific details (amounts, statuses).
    """
    context = {
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "details": extra,
    }
    logger.log(
        getattr(logging, level.upper()),
        message,
        extra={k: v for k, v in context.items() if v is not None},
        stacklevel=2
    )
