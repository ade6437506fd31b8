"""
Camera sampling loop feeding the backend session.

One sampler task (every ``frame_interval``) and one heartbeat task (every
``heartbeat_interval``) exist only while the camera stream is live AND the
session is open; both are created and torn down together.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Callable, Optional, Sequence

import cv2
import numpy as np

from .api.schemas import (
    CameraInfo,
    FrameAnalysisResult,
    FrameMessage,
    FramePayload,
    FrameProcessedMessage,
    HeartbeatMessage,
)
from .config import CaptureConfig
from .media import MediaDevices, MediaStream, resolve_constraints
from .session import ConnectionSession, SessionEvent, StatusChanged

LOGGER = logging.getLogger(__name__)

FrameProcessedCallback = Callable[[FrameAnalysisResult, float, Optional[int]], None]
ErrorCallback = Callable[[Optional[str]], None]


def encode_frame(frame: np.ndarray, quality: int = 80) -> str:
    """Encode a BGR frame as a ``data:image/jpeg;base64,...`` URI."""
    success, buffer = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not success:
        raise RuntimeError("cv2.imencode failed")
    encoded = base64.b64encode(buffer).decode("ascii")
    return f"data:image/jpeg;base64,{encoded}"


class Heartbeat:
    """Keep-alive emitter running alongside the frame sampler."""

    def __init__(self, session: ConnectionSession, interval: float = 30.0):
        self.session = session
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self.sent = 0

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._ticker(), name="signage-heartbeat")

    def stop(self) -> Optional[asyncio.Task]:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
        return task

    async def _ticker(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if await self.session.send(HeartbeatMessage()):
                self.sent += 1
                LOGGER.debug("Heartbeat sent")


class FrameCaptureLoop:
    """Owns the camera stream and the periodic encode-and-send path."""

    def __init__(
        self,
        session: ConnectionSession,
        media: MediaDevices,
        config: Optional[CaptureConfig] = None,
        screen_id: str = "default_screen",
        cameras: Optional[Callable[[], Sequence[CameraInfo]]] = None,
        on_frame_processed: Optional[FrameProcessedCallback] = None,
        on_frame_sent: Optional[Callable[[int], None]] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self.session = session
        self.media = media
        self.config = config or CaptureConfig()
        self.screen_id = screen_id
        self._cameras = cameras or (lambda: ())
        self._on_frame_processed = on_frame_processed
        self._on_frame_sent = on_frame_sent
        self._on_error = on_error
        self.heartbeat = Heartbeat(session, self.config.heartbeat_interval)
        self._stream: Optional[MediaStream] = None
        self._sampler: Optional[asyncio.Task] = None
        self._generation = 0
        self.frames_sent = 0
        self.last_result: Optional[FrameAnalysisResult] = None
        self.processing_time_ms = 0.0
        self.error: Optional[str] = None
        session.add_listener(self._on_session_event)

    @property
    def streaming(self) -> bool:
        return self._stream is not None and self._stream.active

    @property
    def sampling(self) -> bool:
        return self._sampler is not None

    @property
    def eligible(self) -> bool:
        return self.streaming and self.session.is_open

    async def start(self, selector: Optional[str] = None) -> bool:
        """(Re)acquire the camera for ``selector``. Returns False if the camera failed."""
        self._generation += 1
        generation = self._generation
        self.error = None
        await self._release_stream()

        # give the previous device time to be released before reopening
        await asyncio.sleep(self.config.settle_delay)
        if generation != self._generation:
            return False

        constraints = resolve_constraints(
            selector,
            self._cameras(),
            width=self.config.width,
            height=self.config.height,
            frame_rate=self.config.frame_rate,
        )
        LOGGER.info("Starting camera with constraints %s", constraints)
        try:
            stream = await asyncio.to_thread(self.media.get_user_media, constraints)
        except Exception as exc:  # noqa: BLE001
            LOGGER.error("Camera access error: %s", exc)
            self._set_error(f"Camera access failed: {exc}")
            self._refresh_timers()
            return False

        if generation != self._generation:
            # superseded by a newer start/stop while the device was opening
            await asyncio.to_thread(stream.stop)
            return False

        self._stream = stream
        self._refresh_timers()
        return True

    async def stop(self) -> None:
        self._generation += 1
        tasks = self._teardown_timers()
        self.frames_sent = 0
        self.last_result = None
        await self._release_stream()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def capture_and_send(self) -> bool:
        """Sample one frame and submit it; skipped (never queued) unless the session is open."""
        stream = self._stream
        if stream is None or not stream.active or not self.session.is_open:
            return False
        try:
            frame = await asyncio.to_thread(stream.read)
            if frame is None:
                LOGGER.debug("No frame available from '%s'", stream.label)
                return False
            frame_data = await asyncio.to_thread(encode_frame, frame, self.config.jpeg_quality)
        except Exception:
            LOGGER.exception("Error capturing frame")
            self._set_error("Frame capture failed")
            return False

        message = FrameMessage(
            data=FramePayload(
                frame_data=frame_data,
                camera_id=self.config.camera_tag,
                screen_id=self.screen_id,
            )
        )
        if not self.session.is_open:
            LOGGER.warning("WebSocket not ready, skipping frame")
            return False
        if not await self.session.send(message):
            return False
        self.frames_sent += 1
        LOGGER.debug("Frame #%d sent to backend", self.frames_sent)
        if self._on_frame_sent is not None:
            self._on_frame_sent(self.frames_sent)
        return True

    def _on_session_event(self, event: SessionEvent) -> None:
        if isinstance(event, StatusChanged):
            self._refresh_timers()
        elif isinstance(event, FrameProcessedMessage):
            data = event.data
            frame_number = data.frame_number if data.frame_number is not None else data.result.frame_number
            self.last_result = data.result
            self.processing_time_ms = data.processing_time_ms
            LOGGER.debug(
                "Frame #%s processed in %.1fms: people=%d ad=%s",
                frame_number,
                data.processing_time_ms,
                data.result.people_count,
                data.result.current_ad,
            )
            if self._on_frame_processed is not None:
                self._on_frame_processed(data.result, data.processing_time_ms, frame_number)

    def _refresh_timers(self) -> None:
        if self.eligible:
            if self._sampler is None:
                LOGGER.info("Starting frame streaming (every %.1fs)", self.config.frame_interval)
                self._sampler = asyncio.create_task(self._sample_forever(), name="signage-sampler")
                self.heartbeat.start()
        elif self._sampler is not None:
            LOGGER.info("Frame streaming stopped")
            self._teardown_timers()

    def _teardown_timers(self) -> list[asyncio.Task]:
        tasks = []
        sampler, self._sampler = self._sampler, None
        if sampler is not None:
            sampler.cancel()
            tasks.append(sampler)
        heartbeat = self.heartbeat.stop()
        if heartbeat is not None:
            tasks.append(heartbeat)
        return tasks

    async def _sample_forever(self) -> None:
        while True:
            await asyncio.sleep(self.config.frame_interval)
            if not self.eligible:
                self._refresh_timers()
                return
            await self.capture_and_send()

    async def _release_stream(self) -> None:
        # timers stop before the device is released
        stream, self._stream = self._stream, None
        self._refresh_timers()
        if stream is not None:
            await asyncio.to_thread(stream.stop)

    def _set_error(self, message: Optional[str]) -> None:
        self.error = message
        if self._on_error is not None:
            self._on_error(message)
