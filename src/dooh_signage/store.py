"""
Single application state container shared by every view of the screen.

State is an immutable snapshot replaced by ``reduce`` for each dispatched
action; subscribers are notified after every transition.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Union

from .ads import NEUTRAL_AD
from .api.schemas import CameraInfo, FrameAnalysisResult, SystemStats

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ApplicationState:
    connected: bool = False
    cameras: Tuple[CameraInfo, ...] = ()
    current_camera_index: int = 0
    camera_running: bool = False
    current_ad: str = NEUTRAL_AD
    ad_duration_seconds: float = 0.0
    last_frame_analysis: Optional[FrameAnalysisResult] = None
    stats: Optional[SystemStats] = None
    loading: bool = False
    error: Optional[str] = None

    @property
    def current_camera(self) -> Optional[CameraInfo]:
        if 0 <= self.current_camera_index < len(self.cameras):
            return self.cameras[self.current_camera_index]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "cameras": [camera.model_dump() for camera in self.cameras],
            "current_camera_index": self.current_camera_index,
            "camera_running": self.camera_running,
            "current_ad": self.current_ad,
            "ad_duration_seconds": self.ad_duration_seconds,
            "last_frame_analysis": (
                self.last_frame_analysis.model_dump() if self.last_frame_analysis else None
            ),
            "stats": self.stats.model_dump() if self.stats else None,
            "loading": self.loading,
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class SetConnected:
    connected: bool


@dataclass(frozen=True, slots=True)
class SetCameras:
    cameras: Tuple[CameraInfo, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "cameras", tuple(self.cameras))


@dataclass(frozen=True, slots=True)
class SetCurrentCamera:
    index: int


@dataclass(frozen=True, slots=True)
class SetCameraRunning:
    running: bool


@dataclass(frozen=True, slots=True)
class SetCurrentAd:
    ad: str


@dataclass(frozen=True, slots=True)
class SetAdDuration:
    seconds: float


@dataclass(frozen=True, slots=True)
class SetFrameData:
    result: FrameAnalysisResult


@dataclass(frozen=True, slots=True)
class SetStats:
    stats: SystemStats


@dataclass(frozen=True, slots=True)
class SetLoading:
    loading: bool


@dataclass(frozen=True, slots=True)
class SetError:
    error: Optional[str]


Action = Union[
    SetConnected,
    SetCameras,
    SetCurrentCamera,
    SetCameraRunning,
    SetCurrentAd,
    SetAdDuration,
    SetFrameData,
    SetStats,
    SetLoading,
    SetError,
]

Listener = Callable[[ApplicationState, Action], None]


def reduce(state: ApplicationState, action: Action) -> ApplicationState:
    """Pure transition: return a new state differing only in the action's fields."""
    if isinstance(action, SetConnected):
        return replace(state, connected=action.connected)
    elif isinstance(action, SetCameras):
        return replace(state, cameras=action.cameras, current_camera_index=0)
    elif isinstance(action, SetCurrentCamera):
        if action.index < 0:
            return state
        if state.cameras and action.index >= len(state.cameras):
            return state
        return replace(state, current_camera_index=action.index)
    elif isinstance(action, SetCameraRunning):
        return replace(state, camera_running=action.running)
    elif isinstance(action, SetCurrentAd):
        return replace(state, current_ad=action.ad)
    elif isinstance(action, SetAdDuration):
        return replace(state, ad_duration_seconds=action.seconds)
    elif isinstance(action, SetFrameData):
        return replace(state, last_frame_analysis=action.result)
    elif isinstance(action, SetStats):
        return replace(state, stats=action.stats)
    elif isinstance(action, SetLoading):
        return replace(state, loading=action.loading)
    elif isinstance(action, SetError):
        return replace(state, error=action.error)
    else:
        return state


class Store:
    """Holds the current ``ApplicationState`` and serialises dispatch."""

    def __init__(self, initial: Optional[ApplicationState] = None) -> None:
        self._state = initial or ApplicationState()
        self._listeners: List[Listener] = []
        self._pending: Deque[Action] = deque()
        self._dispatching = False

    @property
    def state(self) -> ApplicationState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, action: Action) -> ApplicationState:
        # dispatches issued by listeners run after the current one, in arrival order
        self._pending.append(action)
        if self._dispatching:
            return self._state
        self._dispatching = True
        try:
            while self._pending:
                current = self._pending.popleft()
                self._state = reduce(self._state, current)
                self._notify(current)
        finally:
            self._dispatching = False
        return self._state

    def _notify(self, action: Action) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state, action)
            except Exception:
                LOGGER.exception("State listener failed for %s", type(action).__name__)
