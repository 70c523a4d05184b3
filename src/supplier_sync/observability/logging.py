"""Structured logging with per-run context using structlog and contextvars."""

import logging

import structlog

_configured = False

# Dependencies that log every CDP message or HTTP request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "browser_use", "cdp_use", "websockets")


def setup_structured_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog with console or JSON output and per-run context.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: Render JSON lines instead of the console renderer
    """
    global _configured
    if _configured:
        return

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,  # Inject run context
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper()),
    )

    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    _configured = True


def bind_run_context(supplier: str, recipe_version: str) -> None:
    """Bind recipe context for all subsequent logs in this async context.

    Args:
        supplier: Supplier the recipe belongs to
        recipe_version: Semantic version of the recipe
    """
    structlog.contextvars.bind_contextvars(supplier=supplier, recipe_version=recipe_version)


def clear_run_context() -> None:
    """Clear recipe context after the run completes."""
    structlog.contextvars.clear_contextvars()


def get_run_logger(name: str = "supplier_sync") -> structlog.stdlib.BoundLogger:
    """Get a structlog logger carrying the run context."""
    return structlog.get_logger(name)
