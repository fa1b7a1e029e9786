"""Observability layer - logging and metrics."""

from telescope.observability.logging import setup_logging
from telescope.observability.metrics import MetricsCollector, get_metrics

__all__ = ["setup_logging", "MetricsCollector", "get_metrics"]
