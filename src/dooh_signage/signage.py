"""
High level orchestration of a signage screen.

``SignageClient`` wires the state store to the backend session, the camera
loop and the REST actions, and runs the periodic jobs (stats polling, ad
duration clock) until shutdown.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import time
from typing import Callable, List, Optional, Set, Tuple

from .actions import SignageActions
from .api.backend import BackendClient
from .api.schemas import (
    AdChangeMessage,
    ConnectionMessage,
    ErrorMessage,
    FrameAnalysisResult,
    FrameProcessedMessage,
    HeartbeatAckMessage,
    UnknownMessage,
)
from .capture import FrameCaptureLoop
from .config import SignageConfig
from .media import MediaDevices, OpenCVMediaDevices
from .session import (
    ConnectionSession,
    Connector,
    ReconnectScheduled,
    SessionError,
    SessionEvent,
    StatusChanged,
)
from .store import (
    Action,
    ApplicationState,
    SetAdDuration,
    SetCameraRunning,
    SetConnected,
    SetCurrentAd,
    SetError,
    SetFrameData,
    Store,
)
from .telemetry import MetricsPublisher

LOGGER = logging.getLogger(__name__)

# awaited but never cancelled; uvicorn exits once should_exit is set
_SELF_STOPPING_TASKS = {"signage-status-server"}


def format_uptime(seconds: float) -> str:
    total = max(0, int(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_duration(seconds: float) -> str:
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes:02d}:{secs:02d}"


class AdClock:
    """Publishes how many whole seconds the current ad has been on screen."""

    def __init__(
        self,
        store: Store,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.interval = interval
        self._clock = clock
        self._ad = store.state.current_ad
        self._started = clock()
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_state_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def elapsed(self) -> int:
        return int(self._clock() - self._started)

    def sync(self, seconds: float) -> None:
        """Re-anchor on a duration reported by the backend."""
        self._started = self._clock() - seconds

    def tick(self) -> None:
        self.store.dispatch(SetAdDuration(float(self.elapsed)))

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.tick()

    def _on_state_change(self, state: ApplicationState, action: Action) -> None:
        if state.current_ad != self._ad:
            LOGGER.info("Ad changed from %s to %s", self._ad, state.current_ad)
            self._ad = state.current_ad
            self._started = self._clock()
            self.store.dispatch(SetAdDuration(0.0))


class _EmbeddedServer:
    """uvicorn server sharing our event loop and leaving signals to the client."""

    def __init__(self, app, host: str, port: int) -> None:
        import uvicorn

        class _Server(uvicorn.Server):
            def install_signal_handlers(self) -> None:
                return

            @contextlib.contextmanager
            def capture_signals(self):
                yield

        self._server = _Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))

    async def serve(self) -> None:
        await self._server.serve()

    def shutdown(self) -> None:
        self._server.should_exit = True


class SignageClient:
    """Entry point for running one screen."""

    def __init__(
        self,
        config: SignageConfig,
        store: Optional[Store] = None,
        media: Optional[MediaDevices] = None,
        backend: Optional[BackendClient] = None,
        connector: Optional[Connector] = None,
    ) -> None:
        self.config = config
        self.store = store or Store()
        self.media = media or OpenCVMediaDevices(config.capture.max_probe_devices)
        self.backend = backend or BackendClient(
            config.backend.api_base_url, timeout=config.backend.request_timeout
        )
        self.actions = SignageActions(
            self.store,
            self.backend,
            media=self.media,
            camera_control=config.backend.camera_control,
        )
        self.session = ConnectionSession(
            config.backend.ws_url,
            reconnect_delay=config.session.reconnect_delay,
            max_reconnect_attempts=config.session.max_reconnect_attempts,
            connector=connector,
        )
        self.session.add_listener(self._on_session_event)
        self.capture = FrameCaptureLoop(
            self.session,
            self.media,
            config.capture,
            screen_id=config.screen_id,
            cameras=lambda: self.store.state.cameras,
            on_frame_processed=self._on_frame_processed,
            on_frame_sent=self._on_frame_sent,
            on_error=self._on_capture_error,
        )
        self.ad_clock = AdClock(self.store)
        self.metrics = MetricsPublisher(config.prometheus, config.screen_id)
        self.frames_analysed = 0
        self.started_at = time.monotonic()
        self._tasks: List[asyncio.Task] = []
        self._stop_event: Optional[asyncio.Event] = None
        self._camera_key: Optional[Tuple[int, Optional[str]]] = None
        self._camera_tasks: Set[asyncio.Task] = set()
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._status_server: Optional[_EmbeddedServer] = None
        self._running = False

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self.started_at

    async def start(self) -> None:
        LOGGER.info("Booting signage screen '%s'", self.config.screen_id)
        self.started_at = time.monotonic()
        self._stop_event = asyncio.Event()
        await self.metrics.start()
        self._unsubscribe = self.store.subscribe(self._on_state_change)
        self.ad_clock.attach()

        await self.actions.get_cameras()
        await self.session.connect()
        self._camera_key = self._current_camera_key()
        await self.capture.start(self.config.capture.camera or str(self.store.state.current_camera_index))
        self._running = True

        self._tasks.append(asyncio.create_task(self._poll_stats(), name="signage-stats"))
        self._tasks.append(asyncio.create_task(self.ad_clock.run(), name="signage-ad-clock"))
        if self.config.status_server.enabled:
            self._start_status_server()

    async def run_forever(self) -> None:
        try:
            await self.start()
            self._install_signal_handlers()
            await self._stop_event.wait()
        finally:
            await self.stop()

    def initiate_shutdown(self) -> None:
        if self._stop_event is None or self._stop_event.is_set():
            return
        LOGGER.info("Shutdown requested")
        self._stop_event.set()

    async def stop(self) -> None:
        self._running = False
        if self._status_server is not None:
            self._status_server.shutdown()
        tasks = self._tasks
        self._tasks = []
        for task in tasks:
            if not task.done() and task.get_name() not in _SELF_STOPPING_TASKS:
                task.cancel()
        # in-flight camera restarts see the bumped generation and drop their device
        await self.capture.stop()
        camera_tasks = list(self._camera_tasks)
        if camera_tasks:
            await asyncio.gather(*camera_tasks, return_exceptions=True)
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                LOGGER.exception("Background task '%s' raised", task.get_name())
        await self.session.disconnect()
        self.ad_clock.detach()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await asyncio.to_thread(self.backend.close)
        LOGGER.info("Signage screen '%s' stopped", self.config.screen_id)

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.initiate_shutdown)
            except NotImplementedError:
                LOGGER.debug("Signal handler not supported on platform for %s", sig)

    def _start_status_server(self) -> None:
        from .api.server import create_app

        cfg = self.config.status_server
        app = create_app(self.store, screen_id=self.config.screen_id)
        self._status_server = _EmbeddedServer(app, cfg.host, cfg.port)
        LOGGER.info("Status API listening on http://%s:%d", cfg.host, cfg.port)
        self._tasks.append(
            asyncio.create_task(self._status_server.serve(), name="signage-status-server")
        )

    async def _poll_stats(self) -> None:
        while True:
            await self.actions.get_stats()
            LOGGER.debug(
                "Screen %s up %s, ad=%s for %s, frames sent=%d",
                self.config.screen_id,
                format_uptime(self.uptime_seconds),
                self.store.state.current_ad,
                format_duration(self.store.state.ad_duration_seconds),
                self.capture.frames_sent,
            )
            await asyncio.sleep(self.config.stats_interval_seconds)

    def _on_session_event(self, event: SessionEvent) -> None:
        dispatch = self.store.dispatch
        if isinstance(event, StatusChanged):
            dispatch(SetConnected(event.connected))
            self.metrics.set_connected(event.connected)
        elif isinstance(event, SessionError):
            dispatch(SetError(event.message))
        elif isinstance(event, ReconnectScheduled):
            self.metrics.record_reconnect()
        elif isinstance(event, ConnectionMessage):
            LOGGER.info("Connected to DOOH analytics: %s", event.data.message)
            dispatch(SetCurrentAd(event.data.current_ad))
            dispatch(SetCameraRunning(event.data.camera_running))
        elif isinstance(event, FrameProcessedMessage):
            data = event.data
            update = {}
            if data.result.frame_number is None and data.frame_number is not None:
                update["frame_number"] = data.frame_number
            if not data.result.processing_time_ms and data.processing_time_ms:
                update["processing_time_ms"] = data.processing_time_ms
            result = data.result.model_copy(update=update) if update else data.result
            dispatch(SetFrameData(result))
            dispatch(SetCurrentAd(result.current_ad))
            if data.ad_duration is not None:
                dispatch(SetAdDuration(data.ad_duration))
                self.ad_clock.sync(data.ad_duration)
        elif isinstance(event, AdChangeMessage):
            dispatch(SetCurrentAd(event.data.ad))
        elif isinstance(event, ErrorMessage):
            LOGGER.error("Backend reported error: %s", event.data.error)
            dispatch(SetError(f"Processing error: {event.data.error}"))
        elif isinstance(event, HeartbeatAckMessage):
            LOGGER.debug("Heartbeat acknowledged")
        elif isinstance(event, UnknownMessage):
            LOGGER.debug("Unhandled message type '%s'", event.type)
        else:
            LOGGER.debug("Ignoring session event %r", event)

    def _on_frame_processed(
        self, result: FrameAnalysisResult, processing_time_ms: float, frame_number: Optional[int]
    ) -> None:
        self.frames_analysed += 1
        self.metrics.record_frame_processed(processing_time_ms)

    def _on_frame_sent(self, count: int) -> None:
        self.metrics.record_frame_sent()

    def _on_capture_error(self, message: Optional[str]) -> None:
        if message is not None:
            self.store.dispatch(SetError(message))

    def _current_camera_key(self) -> Tuple[int, Optional[str]]:
        state = self.store.state
        camera = state.current_camera
        return state.current_camera_index, camera.device_id if camera else None

    def _on_state_change(self, state: ApplicationState, action: Action) -> None:
        if not self._running:
            return
        key = self._current_camera_key()
        if key == self._camera_key:
            return
        self._camera_key = key
        LOGGER.info("Camera selection changed to %d, restarting capture", key[0])
        # an in-flight start is superseded by the newer one and releases its own device
        task = asyncio.get_running_loop().create_task(
            self._restart_capture(key[0]), name="signage-camera-switch"
        )
        self._camera_tasks.add(task)
        task.add_done_callback(self._on_camera_task_done)

    async def _restart_capture(self, index: int) -> None:
        if not self._running:
            return
        await self.capture.start(str(index))

    def _on_camera_task_done(self, task: asyncio.Task) -> None:
        self._camera_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Camera restart failed", exc_info=exc)
