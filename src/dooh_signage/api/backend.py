"""
REST client for the analysis backend.

``requests`` is blocking, so every call is pushed to a worker thread to keep
the event loop (and its timers) running.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Tuple
from urllib.parse import quote

import requests
from pydantic import ValidationError

from .schemas import CameraInfo, ProtocolError, SystemStats, parse_stats_response

LOGGER = logging.getLogger(__name__)


class BackendError(RuntimeError):
    """Raised when a backend call is rejected, unreachable or returns garbage."""


class BackendClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = http or requests.Session()

    def _request(self, method: str, path: str) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self._http.request(method, url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise BackendError(f"{method} {path} failed: {exc}") from exc
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError(f"{method} {path} returned invalid JSON") from exc

    async def _call(self, method: str, path: str) -> Any:
        LOGGER.debug("%s %s%s", method, self.base_url, path)
        return await asyncio.to_thread(self._request, method, path)

    async def get_cameras(self) -> Tuple[List[CameraInfo], int]:
        payload = await self._call("GET", "/api/cameras")
        if not isinstance(payload, dict):
            raise BackendError("camera list must be a JSON object")
        try:
            cameras = [CameraInfo.model_validate(item) for item in payload.get("cameras") or []]
        except ValidationError as exc:
            raise BackendError("camera list contains invalid entries") from exc
        current = payload.get("current_camera") or 0
        return cameras, int(current)

    async def switch_camera(self, index: int) -> None:
        await self._call("POST", f"/api/cameras/{int(index)}/switch")

    async def start_camera(self) -> None:
        await self._call("POST", "/api/camera/start")

    async def stop_camera(self) -> None:
        await self._call("POST", "/api/camera/stop")

    async def force_ad(self, ad_type: str) -> None:
        await self._call("POST", f"/api/ads/{quote(ad_type, safe='')}/force")

    async def get_stats(self) -> SystemStats:
        payload = await self._call("GET", "/api/stats")
        try:
            return parse_stats_response(payload)
        except (ProtocolError, ValidationError) as exc:
            raise BackendError(f"invalid stats payload: {exc}") from exc

    def close(self) -> None:
        self._http.close()
