"""
User-level actions against the backend and local devices.

Every action reports failure through ``SetError`` on the store; nothing is
raised to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .api.backend import BackendClient, BackendError
from .media import MediaDevices
from .store import (
    SetCameraRunning,
    SetCameras,
    SetCurrentCamera,
    SetError,
    SetLoading,
    SetStats,
    Store,
)

LOGGER = logging.getLogger(__name__)


class SignageActions:
    def __init__(
        self,
        store: Store,
        backend: BackendClient,
        media: Optional[MediaDevices] = None,
        camera_control: bool = False,
    ) -> None:
        self.store = store
        self.backend = backend
        self.media = media
        self.camera_control = camera_control

    async def get_cameras(self) -> None:
        """Enumerate local cameras, falling back to the backend's list."""
        self.store.dispatch(SetLoading(True))
        try:
            cameras = []
            if self.media is not None:
                try:
                    cameras = await asyncio.to_thread(self.media.enumerate_devices)
                except Exception as exc:  # noqa: BLE001
                    LOGGER.warning("Local camera enumeration failed: %s", exc)
                    cameras = []

            if cameras:
                if not any(camera.has_usable_handle() for camera in cameras):
                    LOGGER.warning("No cameras found with valid device handles")
                self.store.dispatch(SetCameras(tuple(cameras)))
                self.store.dispatch(SetError(None))
                return

            try:
                backend_cameras, current = await self.backend.get_cameras()
            except BackendError as exc:
                LOGGER.error("Backend camera fallback failed: %s", exc)
                self.store.dispatch(SetError("Failed to get cameras: No cameras detected"))
                return
            if not backend_cameras:
                self.store.dispatch(SetError("Failed to get cameras: No cameras detected"))
                return
            LOGGER.info("Using %d camera(s) reported by the backend", len(backend_cameras))
            self.store.dispatch(SetCameras(tuple(backend_cameras)))
            self.store.dispatch(SetCurrentCamera(current))
            self.store.dispatch(SetError(None))
        finally:
            self.store.dispatch(SetLoading(False))

    async def switch_camera(self, index: int) -> None:
        self.store.dispatch(SetLoading(True))
        try:
            await self.backend.switch_camera(index)
            self.store.dispatch(SetCurrentCamera(index))
            self.store.dispatch(SetError(None))
            LOGGER.info("Switched to camera %d", index)
        except BackendError as exc:
            LOGGER.error("Error switching camera: %s", exc)
            self.store.dispatch(SetError("Failed to switch camera"))
        finally:
            self.store.dispatch(SetLoading(False))

    async def start_camera(self) -> None:
        if not self.camera_control:
            LOGGER.info("Backend camera control disabled, ignoring start request")
            return
        try:
            await self.backend.start_camera()
            self.store.dispatch(SetCameraRunning(True))
            self.store.dispatch(SetError(None))
        except BackendError as exc:
            LOGGER.error("Error starting camera: %s", exc)
            self.store.dispatch(SetError("Failed to start camera"))

    async def stop_camera(self) -> None:
        if not self.camera_control:
            LOGGER.info("Backend camera control disabled, ignoring stop request")
            return
        try:
            await self.backend.stop_camera()
            self.store.dispatch(SetCameraRunning(False))
            self.store.dispatch(SetError(None))
        except BackendError as exc:
            LOGGER.error("Error stopping camera: %s", exc)
            self.store.dispatch(SetError("Failed to stop camera"))

    async def force_ad_change(self, ad_type: str) -> None:
        try:
            await self.backend.force_ad(ad_type)
            self.store.dispatch(SetError(None))
        except BackendError as exc:
            LOGGER.error("Error forcing ad change: %s", exc)
            self.store.dispatch(SetError("Failed to change ad"))

    async def get_stats(self) -> None:
        try:
            stats = await self.backend.get_stats()
        except BackendError as exc:
            LOGGER.error("Error getting stats: %s", exc)
            self.store.dispatch(SetError("Failed to get stats"))
            return
        self.store.dispatch(SetStats(stats))
        self.store.dispatch(SetError(None))
