"""Prometheus exporter for the Marzban panel API."""

__version__ = "0.1.0"
