"""Gauge registry and the Marzban metric definitions."""

from marzban_exporter.metrics.exporter import (
    METRIC_DEFINITIONS,
    MarzbanMetrics,
)
from marzban_exporter.metrics.registry import (
    CONTENT_TYPE,
    GaugeFamily,
    MetricRegistry,
)

__all__ = [
    "CONTENT_TYPE",
    "GaugeFamily",
    "METRIC_DEFINITIONS",
    "MarzbanMetrics",
    "MetricRegistry",
]
