"""Structured logging package."""

from luxeledger.logs.logger import configure_logging, get_logger

__all__ = ["configure_logging", "get_logger"]
