"""Prometheus exporter for Microsoft SQL Server."""

__version__ = "0.3.0"
