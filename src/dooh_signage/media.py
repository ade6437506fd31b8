"""
Camera discovery and acquisition on top of OpenCV capture devices.

A selector (roster index, raw device handle or nothing) is first resolved into
``CaptureConstraints``; ``OpenCVMediaDevices`` then turns the constraints into
an opened ``MediaStream``.
"""

from __future__ import annotations

import logging
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

import cv2
import numpy as np

from .api.schemas import CameraInfo

LOGGER = logging.getLogger(__name__)

FACING_USER = "user"
FACING_ENVIRONMENT = "environment"

# facing-mode hints map onto the first two enumerated devices
_FACING_INDEX = {FACING_USER: 0, FACING_ENVIRONMENT: 1}

MIN_HANDLE_LENGTH = 5
MIN_RAW_HANDLE_LENGTH = 10


class MediaDeviceError(RuntimeError):
    """Raised when a camera cannot be enumerated or opened."""


@dataclass(slots=True)
class CaptureConstraints:
    device_id: Optional[str] = None
    facing_mode: Optional[str] = None
    width: int = 640
    height: int = 480
    frame_rate: int = 30


def _parse_index(selector: str) -> Optional[int]:
    try:
        return int(selector.strip())
    except ValueError:
        return None


def resolve_constraints(
    selector: Optional[str],
    cameras: Sequence[CameraInfo],
    width: int = 640,
    height: int = 480,
    frame_rate: int = 30,
) -> CaptureConstraints:
    """
    Pick the capture source for ``selector``.

    Order: a raw device handle is used as-is; a roster index with a usable
    handle uses that handle; a roster index without one falls back to a
    facing-mode hint by parity; no selector means the default front camera.
    """
    constraints = CaptureConstraints(width=width, height=height, frame_rate=frame_rate)

    if selector is None or selector.strip() in ("", "default"):
        if cameras and cameras[0].has_usable_handle():
            constraints.device_id = cameras[0].device_id
        else:
            constraints.facing_mode = FACING_USER
        return constraints

    index = _parse_index(selector)
    if index is None:
        if len(selector) > MIN_RAW_HANDLE_LENGTH:
            constraints.device_id = selector
        else:
            LOGGER.warning("Unrecognised camera selector '%s', using front camera", selector)
            constraints.facing_mode = FACING_USER
        return constraints

    if 0 <= index < len(cameras) and cameras[index].has_usable_handle():
        constraints.device_id = cameras[index].device_id
        return constraints

    constraints.facing_mode = FACING_USER if index % 2 == 0 else FACING_ENVIRONMENT
    LOGGER.debug("No usable handle for camera %d, using facing mode '%s'", index, constraints.facing_mode)
    return constraints


class MediaStream:
    """An opened camera; owned by exactly one capture loop at a time."""

    def __init__(self, capture: cv2.VideoCapture, label: str):
        self._capture = capture
        self._lock = threading.Lock()
        self.label = label
        self._stopped = False

    @property
    def active(self) -> bool:
        return not self._stopped and self._capture.isOpened()

    @property
    def width(self) -> int:
        return int(self._capture.get(cv2.CAP_PROP_FRAME_WIDTH))

    @property
    def height(self) -> int:
        return int(self._capture.get(cv2.CAP_PROP_FRAME_HEIGHT))

    def read(self) -> Optional[np.ndarray]:
        with self._lock:
            if self._stopped:
                return None
            success, frame = self._capture.read()
        if not success or frame is None:
            return None
        return frame

    def stop(self) -> None:
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            self._capture.release()
        LOGGER.info("Released camera '%s'", self.label)


class MediaDevices(Protocol):
    def enumerate_devices(self) -> List[CameraInfo]: ...

    def get_user_media(self, constraints: CaptureConstraints) -> MediaStream: ...


class OpenCVMediaDevices:
    """Enumerate and open local cameras through OpenCV."""

    def __init__(self, max_probe: int = 8):
        self.max_probe = max_probe

    def enumerate_devices(self) -> List[CameraInfo]:
        cameras: List[CameraInfo] = []
        for index in range(self.max_probe):
            capture = cv2.VideoCapture(index)
            try:
                if not capture.isOpened():
                    continue
                width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)) or 640
                height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)) or 480
                fps = int(capture.get(cv2.CAP_PROP_FPS)) or 30
            finally:
                capture.release()
            position = len(cameras)
            cameras.append(
                CameraInfo(
                    index=position,
                    device_id=self._device_path(index),
                    name=self._device_name(index) or f"Camera {position + 1}",
                    resolution=f"{width}x{height}",
                    fps=fps,
                )
            )
        LOGGER.info("Enumerated %d camera(s)", len(cameras))
        return cameras

    def get_user_media(self, constraints: CaptureConstraints) -> MediaStream:
        if constraints.device_id:
            source: int | str = constraints.device_id
        else:
            source = _FACING_INDEX.get(constraints.facing_mode or FACING_USER, 0)

        LOGGER.info("Opening camera %r (%dx%d @ %d fps)", source, constraints.width, constraints.height, constraints.frame_rate)
        capture = cv2.VideoCapture(source)
        if not capture.isOpened():
            capture.release()
            raise MediaDeviceError(f"Could not open camera {source!r}")

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
        capture.set(cv2.CAP_PROP_FPS, constraints.frame_rate)
        # keep only the newest frame; the loop samples far below the device rate
        capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        stream = MediaStream(capture, label=str(source))
        LOGGER.info("Camera '%s' started at %dx%d", stream.label, stream.width, stream.height)
        return stream

    @staticmethod
    def _device_path(index: int) -> str:
        if sys.platform.startswith("linux"):
            path = Path(f"/dev/video{index}")
            if path.exists():
                return str(path)
        return ""

    @staticmethod
    def _device_name(index: int) -> Optional[str]:
        name_file = Path(f"/sys/class/video4linux/video{index}/name")
        try:
            return name_file.read_text(encoding="utf-8").strip() or None
        except OSError:
            return None
