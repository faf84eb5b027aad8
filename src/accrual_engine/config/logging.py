"""Structured logging for the accrual engine.

Log lines go to stderr so the ``watch`` command's snapshot lines on stdout stay
machine-readable. Every event carries the subscription contract and gateway it
concerns, which tells apart engines pointed at different deployments.
"""

import logging
import sys
from typing import Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from accrual_engine.config.settings import FlatSettings, get_settings


def _ledger_context(settings: FlatSettings) -> Processor:
    """Build a processor that stamps the ledger deployment onto each event."""
    contract = settings.subscription_contract
    gateway = settings.ledger_gateway_url

    def add_ledger_context(
        logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        # A contract bound at the call site wins
        event_dict.setdefault("contract", contract)
        event_dict.setdefault("gateway", gateway)
        return event_dict

    return add_ledger_context


def _renderer_chain(log_format: Literal["json", "console"]) -> list[Processor]:
    if log_format == "json":
        return [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    # ConsoleRenderer formats exc_info itself
    return [
        structlog.dev.ConsoleRenderer(
            colors=sys.stderr.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )
    ]


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None,
    format: Literal["json", "console"] | None = None,
    settings: FlatSettings | None = None,
) -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        level: Log level. Defaults to ``LOG_LEVEL``.
        format: ``json`` for one object per line, ``console`` for humans.
            Defaults to ``LOG_FORMAT``.
        settings: Settings to read defaults and ledger context from.
    """
    settings = settings or get_settings()
    log_level = level or settings.log_level

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level),
        force=True,
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _ledger_context(settings),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        *_renderer_chain(format or settings.log_format),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
