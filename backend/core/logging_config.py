"""Structured logging setup.

Engine modules log through structlog; the HTTP layer uses stdlib loggers.
Both end up on one stdout handler so a run's step lines and the request
lines that started it share a format. ``run_id`` and ``workflow_id`` are
merged from context vars bound by the orchestrator.
"""

import logging
import sys

import structlog
from app.config import get_settings

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def setup_logging() -> None:
    """Route structlog and stdlib logging through a shared formatter.

    LOG_FORMAT=text (or a development environment) renders for the console,
    anything else renders JSON lines.
    """
    settings = get_settings()

    pre_chain: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    text_output = settings.is_development or settings.LOG_FORMAT == "text"
    if text_output:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    else:
        pre_chain.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=pre_chain,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
