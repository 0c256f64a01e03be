"""
Logging configuration for the Fusion Trader decision engine.

Every component logs through ``get_logger(__name__)``. Events are snake_case
names with keyword context (``logger.info("trade_decision", symbol=...)``);
per-cycle context such as the symbol is bound with ``cycle_context`` and
merged into every event emitted inside the cycle.
"""
import logging
import sys
from typing import Any, Optional

import structlog

from fusion_trader.config.settings import LoggingSettings


def configure_logging(config: Optional[LoggingSettings] = None) -> None:
    """
    Configure structured logging for the application.

    Args:
        config: Level and renderer selection; ``JSON=None`` picks the console
            renderer on a TTY and JSON otherwise.
    """
    config = config or LoggingSettings()
    level = getattr(logging, config.LEVEL.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    use_json = config.JSON if config.JSON is not None else not sys.stdout.isatty()
    if use_json:
        processors.append(structlog.processors.JSONRenderer(default=str))
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name)


def cycle_context(**values: Any):
    """Bind ``values`` to every event logged inside the ``with`` block."""
    return structlog.contextvars.bound_contextvars(**values)
