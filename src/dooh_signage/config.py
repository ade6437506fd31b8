"""
Configuration models and loading utilities for the signage client.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import yaml

DEFAULT_API_BASE_URL = "http://localhost:8000"
DEFAULT_WS_URL = "ws://localhost:8000/ws"


class ConfigError(RuntimeError):
    """Raised when the supplied configuration is invalid."""


@dataclass(slots=True)
class BackendConfig:
    """Endpoints of the external analysis backend."""

    api_base_url: Optional[str] = None
    ws_url: Optional[str] = None
    request_timeout: float = 10.0
    camera_control: bool = False  # signage flow keeps the backend camera off

    def __post_init__(self) -> None:
        self.api_base_url, self.ws_url = resolve_endpoints(self.api_base_url, self.ws_url)

    def validate(self) -> None:
        api_scheme = urlsplit(self.api_base_url).scheme
        if api_scheme not in {"http", "https"}:
            raise ConfigError(f"backend.api_base_url must be http(s), got '{self.api_base_url}'")
        ws_scheme = urlsplit(self.ws_url).scheme
        if ws_scheme not in {"ws", "wss"}:
            raise ConfigError(f"backend.ws_url must be ws(s), got '{self.ws_url}'")
        if self.request_timeout <= 0:
            raise ConfigError("backend.request_timeout must be > 0")


@dataclass(slots=True)
class SessionConfig:
    """WebSocket session behaviour."""

    reconnect_delay: float = 3.0
    max_reconnect_attempts: Optional[int] = None  # None = retry forever

    def validate(self) -> None:
        if self.reconnect_delay < 0:
            raise ConfigError("session.reconnect_delay must be >= 0")
        if self.max_reconnect_attempts is not None and self.max_reconnect_attempts < 0:
            raise ConfigError("session.max_reconnect_attempts must be >= 0")


@dataclass(slots=True)
class CaptureConfig:
    """Camera sampling settings."""

    camera: Optional[str] = None
    camera_tag: str = "frontend_camera"
    width: int = 640
    height: int = 480
    frame_rate: int = 30
    frame_interval: float = 1.0
    heartbeat_interval: float = 30.0
    jpeg_quality: int = 80
    settle_delay: float = 0.2
    max_probe_devices: int = 8

    def __post_init__(self) -> None:
        if self.camera is not None:
            self.camera = str(self.camera)

    def validate(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ConfigError("capture.width and capture.height must be > 0")
        if self.frame_rate <= 0:
            raise ConfigError("capture.frame_rate must be > 0")
        if self.frame_interval <= 0:
            raise ConfigError("capture.frame_interval must be > 0")
        if self.heartbeat_interval <= 0:
            raise ConfigError("capture.heartbeat_interval must be > 0")
        if not (1 <= self.jpeg_quality <= 100):
            raise ConfigError("capture.jpeg_quality must be between 1 and 100")
        if self.settle_delay < 0:
            raise ConfigError("capture.settle_delay must be >= 0")
        if self.max_probe_devices < 1:
            raise ConfigError("capture.max_probe_devices must be >= 1")


@dataclass(slots=True)
class StatusServerConfig:
    """Local read-only status API for on-device views."""

    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8090

    def validate(self) -> None:
        if not (0 < self.port < 65536):
            raise ConfigError("status_server.port must be between 1 and 65535")


@dataclass(slots=True)
class PrometheusConfig:
    """Prometheus endpoint configuration."""

    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 9000

    def validate(self) -> None:
        if not (0 < self.port < 65536):
            raise ConfigError("Prometheus port must be between 1 and 65535")


@dataclass(slots=True)
class SignageConfig:
    """Top level configuration for a signage screen."""

    screen_id: str = field(default_factory=lambda: f"dooh_screen_{int(time.time() * 1000)}")
    backend: BackendConfig = field(default_factory=BackendConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    status_server: StatusServerConfig = field(default_factory=StatusServerConfig)
    prometheus: PrometheusConfig = field(default_factory=PrometheusConfig)
    stats_interval_seconds: float = 5.0

    def validate(self) -> None:
        if not self.screen_id:
            raise ConfigError("screen_id must not be empty")
        if self.stats_interval_seconds <= 0:
            raise ConfigError("stats_interval_seconds must be > 0")
        for section in (
            self.backend,
            self.session,
            self.capture,
            self.status_server,
            self.prometheus,
        ):
            section.validate()


def _swap_scheme(scheme: str, mapping: dict[str, str]) -> str:
    return mapping.get(scheme.lower(), scheme)


def resolve_endpoints(api_base_url: Optional[str], ws_url: Optional[str]) -> tuple[str, str]:
    """
    Fill in whichever endpoint is missing from the other one's origin.

    ``https://host`` pairs with ``wss://host/ws`` and ``http`` with ``ws``.
    """
    if not api_base_url and not ws_url:
        return DEFAULT_API_BASE_URL, DEFAULT_WS_URL
    if api_base_url and ws_url:
        return api_base_url.rstrip("/"), ws_url
    if api_base_url:
        parts = urlsplit(api_base_url)
        scheme = _swap_scheme(parts.scheme, {"http": "ws", "https": "wss"})
        return api_base_url.rstrip("/"), urlunsplit((scheme, parts.netloc, "/ws", "", ""))
    parts = urlsplit(ws_url)
    scheme = _swap_scheme(parts.scheme, {"ws": "http", "wss": "https"})
    return urlunsplit((scheme, parts.netloc, "", "", "")), ws_url


def _object_from_dict(cls, data: dict):
    allowed_keys = {field.name for field in cls.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    kwargs = {key: value for key, value in (data or {}).items() if key in allowed_keys}
    return cls(**kwargs)


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' section must be a mapping")
    return value


def load_config(path: Path | str | None = None, environ: Optional[dict] = None) -> SignageConfig:
    """Load a signage configuration from a YAML file (or defaults) plus env overrides."""

    env = os.environ if environ is None else environ
    raw: dict = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")
        loaded = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError("Top level configuration must be a mapping/dictionary")
        raw = loaded

    backend_raw = dict(_section(raw, "backend"))
    if env.get("DOOH_API_URL"):
        backend_raw["api_base_url"] = env["DOOH_API_URL"]
    if env.get("DOOH_WS_URL"):
        backend_raw["ws_url"] = env["DOOH_WS_URL"]

    kwargs = {}
    screen_id = env.get("DOOH_SCREEN_ID") or raw.get("screen_id")
    if screen_id:
        kwargs["screen_id"] = str(screen_id)
    if "stats_interval_seconds" in raw:
        kwargs["stats_interval_seconds"] = raw["stats_interval_seconds"]

    config = SignageConfig(
        backend=_object_from_dict(BackendConfig, backend_raw),
        session=_object_from_dict(SessionConfig, _section(raw, "session")),
        capture=_object_from_dict(CaptureConfig, _section(raw, "capture")),
        status_server=_object_from_dict(StatusServerConfig, _section(raw, "status_server")),
        prometheus=_object_from_dict(PrometheusConfig, _section(raw, "prometheus")),
        **kwargs,
    )
    config.validate()
    return config
