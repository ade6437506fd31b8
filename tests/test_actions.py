import asyncio

from dooh_signage.actions import SignageActions
from dooh_signage.api.schemas import SystemStats
from dooh_signage.store import SetError, Store

from conftest import FakeBackend, FakeMedia, make_cameras


def _run(coro):
    return asyncio.run(coro)


def test_get_cameras_prefers_local_devices():
    store = Store()
    backend = FakeBackend(cameras=make_cameras(3))
    actions = SignageActions(store, backend, media=FakeMedia(make_cameras(2)))
    _run(actions.get_cameras())
    assert len(store.state.cameras) == 2
    assert backend.calls == []
    assert store.state.loading is False


def test_get_cameras_falls_back_to_backend_list():
    store = Store()
    backend = FakeBackend(cameras=make_cameras(3), current_camera=2)
    actions = SignageActions(store, backend, media=FakeMedia([]))
    _run(actions.get_cameras())
    assert len(store.state.cameras) == 3
    assert store.state.current_camera_index == 2
    assert store.state.error is None


def test_get_cameras_reports_when_nothing_found():
    store = Store()
    actions = SignageActions(store, FakeBackend(), media=FakeMedia([]))
    _run(actions.get_cameras())
    assert store.state.error == "Failed to get cameras: No cameras detected"
    assert store.state.loading is False

    actions = SignageActions(store, FakeBackend(fail=True))
    _run(actions.get_cameras())
    assert store.state.error == "Failed to get cameras: No cameras detected"


def test_switch_camera():
    store = Store()
    actions = SignageActions(store, FakeBackend(cameras=make_cameras(2)), media=FakeMedia(make_cameras(2)))
    _run(actions.get_cameras())
    _run(actions.switch_camera(1))
    assert store.state.current_camera_index == 1

    failing = SignageActions(store, FakeBackend(fail=True))
    _run(failing.switch_camera(0))
    assert store.state.error == "Failed to switch camera"
    assert store.state.current_camera_index == 1


def test_camera_control_is_opt_in():
    store = Store()
    backend = FakeBackend()
    _run(SignageActions(store, backend).start_camera())
    assert backend.calls == []

    actions = SignageActions(store, backend, camera_control=True)
    _run(actions.start_camera())
    assert store.state.camera_running
    _run(actions.stop_camera())
    assert not store.state.camera_running

    failing = SignageActions(store, FakeBackend(fail=True), camera_control=True)
    _run(failing.start_camera())
    assert store.state.error == "Failed to start camera"
    _run(failing.stop_camera())
    assert store.state.error == "Failed to stop camera"


def test_force_ad_change():
    store = Store()
    store.dispatch(SetError("stale"))
    backend = FakeBackend()
    _run(SignageActions(store, backend).force_ad_change("fashion"))
    assert backend.calls == [("force_ad", "fashion")]
    assert store.state.error is None

    _run(SignageActions(store, FakeBackend(fail=True)).force_ad_change("fashion"))
    assert store.state.error == "Failed to change ad"


def test_get_stats():
    store = Store()
    stats = SystemStats(total_frames=99)
    _run(SignageActions(store, FakeBackend(stats=stats)).get_stats())
    assert store.state.stats is stats

    _run(SignageActions(store, FakeBackend(fail=True)).get_stats())
    assert store.state.error == "Failed to get stats"
    assert store.state.stats is stats
