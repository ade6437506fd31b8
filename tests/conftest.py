"""Shared fakes for the signage test-suite."""

from __future__ import annotations

import asyncio
import json
from typing import Any, List, Optional

import numpy as np
import pytest

from dooh_signage.api.backend import BackendError
from dooh_signage.api.schemas import CameraInfo, SystemStats
from dooh_signage.media import CaptureConstraints, MediaDeviceError

_CLOSED = object()


class FakeConnection:
    """Stands in for a websockets client connection."""

    def __init__(self, close_delay: float = 0.0) -> None:
        self.close_delay = close_delay
        self.sent: List[str] = []
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        self._inbox: asyncio.Queue = asyncio.Queue()

    def feed(self, message: Any) -> None:
        self._inbox.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self, code: int = 1006) -> None:
        """Server-side close with ``code``."""
        if self.close_code is None:
            self.close_code = code
            self._inbox.put_nowait(_CLOSED)

    async def send(self, text: str) -> None:
        self.sent.append(text)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_reason = reason
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        self.drop(code)

    def sent_of_type(self, kind: str) -> List[dict]:
        return [msg for msg in map(json.loads, self.sent) if msg["type"] == kind]

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._inbox.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class FakeConnector:
    def __init__(self, failures: int = 0, close_delay: float = 0.0) -> None:
        self.failures = failures
        self.close_delay = close_delay
        self.calls = 0
        self.urls: List[str] = []
        self.connections: List[FakeConnection] = []

    @property
    def latest(self) -> FakeConnection:
        return self.connections[-1]

    async def __call__(self, url: str) -> FakeConnection:
        self.calls += 1
        self.urls.append(url)
        if self.failures:
            self.failures -= 1
            raise OSError("connection refused")
        connection = FakeConnection(self.close_delay)
        self.connections.append(connection)
        return connection


class FakeStream:
    def __init__(self, label: str) -> None:
        self.label = label
        self.stopped = False
        self.reads = 0

    @property
    def active(self) -> bool:
        return not self.stopped

    def read(self):
        if self.stopped:
            return None
        self.reads += 1
        return np.zeros((48, 64, 3), dtype=np.uint8)

    def stop(self) -> None:
        self.stopped = True


class FakeMedia:
    def __init__(self, cameras: Optional[List[CameraInfo]] = None, fail: bool = False) -> None:
        self.cameras = list(cameras or [])
        self.fail = fail
        self.opened: List[CaptureConstraints] = []
        self.streams: List[FakeStream] = []

    def enumerate_devices(self) -> List[CameraInfo]:
        return list(self.cameras)

    def get_user_media(self, constraints: CaptureConstraints) -> FakeStream:
        if self.fail:
            raise MediaDeviceError("Permission denied")
        self.opened.append(constraints)
        stream = FakeStream(constraints.device_id or constraints.facing_mode or "default")
        self.streams.append(stream)
        return stream


class FakeBackend:
    def __init__(self, cameras=None, current_camera: int = 0, stats=None, fail: bool = False) -> None:
        self.cameras = list(cameras or [])
        self.current_camera = current_camera
        self.stats = stats or SystemStats(total_frames=10, people_detected=4)
        self.fail = fail
        self.calls: List[tuple] = []
        self.closed = False

    def _record(self, *call) -> None:
        self.calls.append(call)
        if self.fail:
            raise BackendError(f"{call[0]} failed")

    async def get_cameras(self):
        self._record("get_cameras")
        return list(self.cameras), self.current_camera

    async def switch_camera(self, index: int) -> None:
        self._record("switch_camera", index)

    async def start_camera(self) -> None:
        self._record("start_camera")

    async def stop_camera(self) -> None:
        self._record("stop_camera")

    async def force_ad(self, ad_type: str) -> None:
        self._record("force_ad", ad_type)

    async def get_stats(self) -> SystemStats:
        self._record("get_stats")
        return self.stats

    def close(self) -> None:
        self.closed = True


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


def make_cameras(count: int = 2, with_handles: bool = True) -> List[CameraInfo]:
    return [
        CameraInfo(
            index=i,
            device_id=f"/dev/video{i}" if with_handles else "",
            name=f"Camera {i + 1}",
        )
        for i in range(count)
    ]


@pytest.fixture
def cameras() -> List[CameraInfo]:
    return make_cameras()
