"""Logging module for the proxy."""

from .setup import LOGGER_NAME, setup_logging

__all__ = ["LOGGER_NAME", "setup_logging"]
