"""
Logging configuration for the application.

Routes structlog through the standard logging backend so both libraries
share handlers and levels. Call sites keep the structured style:

    logger = get_structured_logger(__name__)
    logger.info("Plugin discovered", plugin="agentic-tools", tools=12)
"""

import logging
import sys

import structlog


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        fmt: Output format, either "json" or "console"

    Raises:
        ValueError: If the level name is unknown
    """
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    logging.basicConfig(
        level=numeric_level,
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True
    )

    for logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error", "fastapi", "opsbridge"):
        logging.getLogger(logger_name).setLevel(numeric_level)

    # aiohttp is chatty at debug and we log every round trip ourselves
    if level.upper() != "DEBUG":
        logging.getLogger("aiohttp").setLevel(logging.WARNING)

    renderer = (
        structlog.dev.ConsoleRenderer()
        if fmt == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.get_logger(__name__).info(
        "Logging configured", level=level.upper(), format=fmt
    )


def get_structured_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger that supports key=value kwargs.

    Args:
        name: Logger name

    Returns:
        A structlog bound logger
    """
    return structlog.get_logger(name)
