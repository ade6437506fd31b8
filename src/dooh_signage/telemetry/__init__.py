"""Metrics exporters."""

from .metrics import MetricsPublisher

__all__ = ["MetricsPublisher"]
