"""
Core modules: configuration, logging, metrics, tracing and storage clients.
"""
from .config import Settings, get_settings
from .logging import configure_logging, get_logger

__all__ = ["Settings", "get_settings", "configure_logging", "get_logger"]
