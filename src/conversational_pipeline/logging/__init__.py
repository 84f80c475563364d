"""Structured logging for the conversational chunk pipeline."""

from conversational_pipeline.logging.performance import log_performance
from conversational_pipeline.logging.setup import (
    get_logger,
    setup_logging,
    setup_logging_from_settings,
)

__all__ = ["get_logger", "log_performance", "setup_logging", "setup_logging_from_settings"]
