"""
Prometheus metrics helper utilities.
"""

from __future__ import annotations

import logging

from ..config import PrometheusConfig

LOGGER = logging.getLogger(__name__)


class MetricsPublisher:
    """Expose screen-level counters via an HTTP endpoint."""

    def __init__(self, config: PrometheusConfig, screen_id: str):
        self.config = config
        self.screen_id = screen_id
        self._registry = None
        self._frames_sent = None
        self._frames_processed = None
        self._reconnects = None
        self._connected = None
        self._processing_time = None

    def _lazy_init(self) -> None:
        if self._registry is not None:
            return
        try:
            from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server
        except Exception as exc:  # noqa: BLE001
            raise RuntimeError(
                "Prometheus metrics enabled but prometheus_client is not installed. "
                "Install it with `pip install prometheus-client`."
            ) from exc

        self._registry = CollectorRegistry()
        self._frames_sent = Counter(
            "signage_frames_sent_total",
            "Frames submitted to the analysis backend",
            ["screen"],
            registry=self._registry,
        )
        self._frames_processed = Counter(
            "signage_frames_processed_total",
            "Analysis results received from the backend",
            ["screen"],
            registry=self._registry,
        )
        self._reconnects = Counter(
            "signage_reconnects_total",
            "WebSocket reconnection attempts scheduled",
            ["screen"],
            registry=self._registry,
        )
        self._connected = Gauge(
            "signage_backend_connected",
            "1 while the backend WebSocket is open",
            ["screen"],
            registry=self._registry,
        )
        self._processing_time = Histogram(
            "signage_backend_processing_seconds",
            "Backend-reported frame processing time",
            ["screen"],
            buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
            registry=self._registry,
        )

        start_http_server(port=self.config.port, addr=self.config.host, registry=self._registry)
        LOGGER.info(
            "Prometheus endpoint available at http://%s:%d/metrics",
            self.config.host,
            self.config.port,
        )

    async def start(self) -> None:
        if not self.config.enabled:
            return
        self._lazy_init()

    @property
    def active(self) -> bool:
        return self.config.enabled and self._registry is not None

    def record_frame_sent(self) -> None:
        if self.active:
            self._frames_sent.labels(screen=self.screen_id).inc()

    def record_frame_processed(self, processing_time_ms: float) -> None:
        if not self.active:
            return
        self._frames_processed.labels(screen=self.screen_id).inc()
        self._processing_time.labels(screen=self.screen_id).observe(processing_time_ms / 1000.0)

    def record_reconnect(self) -> None:
        if self.active:
            self._reconnects.labels(screen=self.screen_id).inc()

    def set_connected(self, connected: bool) -> None:
        if self.active:
            self._connected.labels(screen=self.screen_id).set(1 if connected else 0)
