"""
Core application modules.
Contains configuration, logging, metrics, tracing, resilience and database pool.
"""
from .config import ModelConfig, Settings, get_settings, load_settings
from .logging import get_logger

__all__ = ["ModelConfig", "Settings", "get_settings", "load_settings", "get_logger"]
