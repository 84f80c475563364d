"""Structlog configuration for the conversational chunk pipeline."""

import logging
import sys
from typing import TYPE_CHECKING

import structlog

from conversational_pipeline.logging.processors import (
    add_service_name,
    censor_sensitive_data,
    truncate_transcripts,
)

if TYPE_CHECKING:
    from conversational_pipeline.config import ServiceSettings


def _shared_processors(service_name: str) -> list[structlog.types.Processor]:
    """Processors applied to both structlog and stdlib records."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        add_service_name(service_name),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        censor_sensitive_data,
        truncate_transcripts,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.CallsiteParameterAdder(
            {
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.FUNC_NAME,
                structlog.processors.CallsiteParameter.LINENO,
            }
        ),
    ]


def setup_logging(
    service_name: str = "conversational-pipeline",
    log_level: str = "INFO",
    log_format: str = "json",
) -> None:
    """Configure structlog and route stdlib logging (aiohttp, uvicorn) through it.

    ``log_format="dev"`` renders coloured console lines; anything else renders
    one JSON object per line on stderr.
    """
    processors = _shared_processors(service_name)
    renderer: structlog.types.Processor
    if log_format == "dev":
        renderer = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()

    # Module-level loggers predate this call; they must stay uncached.
    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def setup_logging_from_settings(settings: "ServiceSettings") -> None:
    """Configure logging from ServiceSettings; DEBUG=true forces debug level."""
    level = "DEBUG" if settings.debug else settings.log_level
    setup_logging(settings.service_name, level, settings.log_format)


def get_logger(**initial_bindings: object) -> structlog.stdlib.BoundLogger:
    """Return a structlog bound logger."""
    return structlog.get_logger(**initial_bindings)
