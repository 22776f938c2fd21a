# /flowpilot/utils/logging.py

import logging
import sys
import structlog
from flowpilot.config.settings import settings

# Structured logging: JSON lines in production, a readable console renderer in
# development. stdlib loggers and structlog loggers share one pipeline.

def setup_logging():
    """
    Configures structlog on top of the standard logging module so records from
    both `logging.getLogger` and `structlog.get_logger` are rendered alike.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.environment == "development":
        final_processor = structlog.dev.ConsoleRenderer()
    else:
        final_processor = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=final_processor,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    # Avoid stacking handlers when the app is created more than once (tests)
    root_logger.handlers = [h for h in root_logger.handlers if not isinstance(h.formatter, structlog.stdlib.ProcessorFormatter)]
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if settings.environment == "development" else logging.INFO)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def bind_request_context(method: str, path: str):
    """Starts a fresh log context for an incoming request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(method=method, path=path)


def bind_session_context(session_id: str):
    structlog.contextvars.bind_contextvars(session_id=session_id)
