"""Utility modules for logging and common helpers."""

from riskcast.utils.logging import configure_logging, get_logger

__all__ = ["configure_logging", "get_logger"]
