"""
Core modules: logging, tracing, metrics, circuit breaker and configuration.
"""
from .config import Thresholds, load_thresholds, load_router_settings

__all__ = ["Thresholds", "load_thresholds", "load_router_settings"]
