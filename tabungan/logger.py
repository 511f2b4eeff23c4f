"""
Structured Logging

Every balance mutation, skipped leg and gold price fallback is logged as a
structured event. This is operational logging only: nothing here is persisted
or replayed, and there is no audit trail of balance changes.

Events are snake_case names with key/value context, e.g.:

    logger.info("balance_updated", account_id=..., old_balance=..., new_balance=...)
"""

import logging
import sys
from typing import Optional

import structlog

from tabungan.config import get_settings


_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Safe to call more than once; only the first call has an effect
    unless a level is passed explicitly.
    """
    global _configured
    if _configured and level is None:
        return

    app = get_settings().app
    level_name = level or ("DEBUG" if app.debug_mode else app.log_level)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name.upper(), logging.INFO),
    )
    logging.getLogger().setLevel(getattr(logging, level_name.upper(), logging.INFO))

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
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, configuring logging on first use."""
    configure_logging()
    return structlog.get_logger(name)
