"""Gauge registry rendered in the Prometheus text format.

Each declared gauge family is a custom collector registered on a private
``prometheus_client.CollectorRegistry``. A family only shows up in the
output once at least one label combination has been observed, and observed
combinations are never removed.
"""

from __future__ import annotations

import re
import threading
from typing import Iterable

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.core import GaugeMetricFamily

_METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
_LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

# Content type of render() output
CONTENT_TYPE = CONTENT_TYPE_LATEST


class GaugeFamily:
    """A gauge with a fixed label schema and lazily created label sets."""

    def __init__(self, name: str, documentation: str, labelnames: Iterable[str] = ()):
        self.name = name
        self.documentation = documentation
        self.labelnames: tuple[str, ...] = tuple(labelnames)
        self._values: dict[tuple[str, ...], float] = {}
        self._lock = threading.Lock()

    def _key(self, labelvalues: tuple, labelkwargs: dict) -> tuple[str, ...]:
        if labelvalues and labelkwargs:
            raise ValueError("Can't pass both positional and keyword label values")

        if labelkwargs:
            if set(labelkwargs) != set(self.labelnames):
                raise ValueError(
                    f"{self.name}: expected labels {list(self.labelnames)}, "
                    f"got {sorted(labelkwargs)}"
                )
            return tuple(str(labelkwargs[name]) for name in self.labelnames)

        if len(labelvalues) != len(self.labelnames):
            raise ValueError(
                f"{self.name}: expected {len(self.labelnames)} label values, "
                f"got {len(labelvalues)}"
            )
        return tuple(str(value) for value in labelvalues)

    def set(self, value: float, *labelvalues: object, **labelkwargs: object) -> None:
        """Overwrite the value of one label combination, creating it if new."""
        key = self._key(labelvalues, labelkwargs)
        value = float(value)
        with self._lock:
            self._values[key] = value

    def get(self, *labelvalues: object, **labelkwargs: object) -> float | None:
        """Current value of a label combination, or None if never observed."""
        key = self._key(labelvalues, labelkwargs)
        with self._lock:
            return self._values.get(key)

    def label_sets(self) -> list[dict[str, str]]:
        """Observed label combinations in first-seen order."""
        with self._lock:
            keys = list(self._values)
        return [dict(zip(self.labelnames, key)) for key in keys]

    def describe(self) -> list[GaugeMetricFamily]:
        return [GaugeMetricFamily(self.name, self.documentation, labels=self.labelnames)]

    def collect(self) -> list[GaugeMetricFamily]:
        with self._lock:
            samples = list(self._values.items())

        if not samples:
            return []

        family = GaugeMetricFamily(self.name, self.documentation, labels=self.labelnames)
        for labelvalues, value in samples:
            family.add_metric(list(labelvalues), value)
        return [family]


class MetricRegistry:
    """Set of declared gauge families.

    Families are rendered in declaration order.
    """

    def __init__(self):
        self._registry = CollectorRegistry()
        self._families: dict[str, GaugeFamily] = {}

    def declare(
        self,
        name: str,
        documentation: str,
        labelnames: Iterable[str] = (),
    ) -> GaugeFamily:
        """Declare a gauge family.

        Args:
            name: Metric name.
            documentation: HELP text.
            labelnames: Label schema.

        Returns:
            The new family.

        Raises:
            ValueError: If the name was already declared or a name is invalid.
        """
        if name in self._families:
            raise ValueError(f"Metric {name} is already declared")
        if not _METRIC_NAME_RE.match(name):
            raise ValueError(f"Invalid metric name: {name}")

        labelnames = tuple(labelnames)
        for label in labelnames:
            if not _LABEL_NAME_RE.match(label) or label.startswith("__"):
                raise ValueError(f"Invalid label name for {name}: {label}")
        if len(set(labelnames)) != len(labelnames):
            raise ValueError(f"Duplicate label names for {name}: {labelnames}")

        family = GaugeFamily(name, documentation, labelnames)
        self._registry.register(family)
        self._families[name] = family
        return family

    def get(self, name: str) -> GaugeFamily:
        return self._families[name]

    def __contains__(self, name: object) -> bool:
        return name in self._families

    @property
    def names(self) -> list[str]:
        return list(self._families)

    @property
    def collector_registry(self) -> CollectorRegistry:
        """The underlying prometheus_client registry."""
        return self._registry

    def render(self) -> bytes:
        """Serialize all observed values in the text exposition format."""
        return generate_latest(self._registry)
