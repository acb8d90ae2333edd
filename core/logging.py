"""
Logging configuration and contextual loggers
"""

import logging
import sys
from typing import Any, Dict, Optional
from core.config import settings


def setup_logging():
    """Configure application logging"""

    # Get log level from settings
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Reduce noise from libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at {settings.LOG_LEVEL} level")


class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter carrying correlation fields (tenant_id, job_id, topic, ...).

    Fields are prefixed to the message as ``[key=value ...]`` and also placed
    on the record under ``extra`` so structured handlers can pick them up.
    """

    def __init__(self, logger: logging.Logger, context: Optional[Dict[str, Any]] = None):
        super().__init__(logger, dict(context or {}))

    @property
    def context(self) -> Dict[str, Any]:
        return dict(self.extra)

    def bind(self, **context: Any) -> "ContextLoggerAdapter":
        """Return a child adapter with additional correlation fields."""
        merged = dict(self.extra)
        merged.update({k: v for k, v in context.items() if v is not None})
        return ContextLoggerAdapter(self.logger, merged)

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        if self.extra:
            prefix = " ".join(f"{k}={v}" for k, v in self.extra.items())
            msg = f"[{prefix}] {msg}"
        return msg, kwargs


def get_logger(name: str, **context: Any) -> ContextLoggerAdapter:
    """Get a contextual logger for a component."""
    return ContextLoggerAdapter(
        logging.getLogger(name),
        {k: v for k, v in context.items() if v is not None},
    )
