from dooh_signage.api.schemas import FrameAnalysisResult, SystemStats, TimelineEntry
from dooh_signage.store import (
    ApplicationState,
    SetCameras,
    SetConnected,
    SetCurrentAd,
    SetCurrentCamera,
    SetError,
    SetFrameData,
    SetStats,
    Store,
    reduce,
)

from conftest import make_cameras


def test_initial_state():
    state = ApplicationState()
    assert not state.connected
    assert state.current_ad == "neutral"
    assert state.current_camera is None
    assert state.error is None


def test_actions_only_touch_their_field():
    state = ApplicationState(error="boom")
    after = reduce(state, SetConnected(True))
    assert after.connected
    assert after.error == "boom"
    assert state.connected is False


def test_set_cameras_resets_current_index():
    state = reduce(ApplicationState(), SetCameras(make_cameras(3)))
    state = reduce(state, SetCurrentCamera(2))
    assert state.current_camera_index == 2
    state = reduce(state, SetCameras(make_cameras(2)))
    assert state.current_camera_index == 0
    assert state.current_camera.device_id == "/dev/video0"


def test_set_current_camera_rejects_out_of_range():
    state = reduce(ApplicationState(), SetCameras(make_cameras(2)))
    assert reduce(state, SetCurrentCamera(5)) is state
    assert reduce(state, SetCurrentCamera(-1)) is state


def test_set_stats_replaces_previous_snapshot():
    first = SystemStats(total_frames=10, timeline=[TimelineEntry(people_count=2)])
    second = SystemStats(total_frames=3)
    state = reduce(ApplicationState(), SetStats(first))
    state = reduce(state, SetStats(second))
    assert state.stats is second
    assert state.stats.timeline == []


def test_unknown_action_returns_same_state():
    state = ApplicationState()
    assert reduce(state, object()) is state


def test_nested_dispatches_run_in_order_after_current():
    store = Store()
    seen = []

    def chain(state, action):
        if isinstance(action, SetConnected):
            store.dispatch(SetError("first"))
            store.dispatch(SetError("second"))

    def record(state, action):
        seen.append((type(action).__name__, state.error))

    store.subscribe(chain)
    store.subscribe(record)
    store.dispatch(SetConnected(True))

    assert seen == [("SetConnected", None), ("SetError", "first"), ("SetError", "second")]
    assert store.state.error == "second"


def test_unsubscribe_and_failing_listener():
    store = Store()
    calls = []

    def broken(state, action):
        raise RuntimeError("listener bug")

    store.subscribe(broken)
    unsubscribe = store.subscribe(lambda state, action: calls.append(action))
    store.dispatch(SetCurrentAd("man"))
    unsubscribe()
    store.dispatch(SetCurrentAd("woman"))

    assert calls == [SetCurrentAd("man")]
    assert store.state.current_ad == "woman"


def test_to_dict_is_json_ready():
    state = reduce(ApplicationState(), SetFrameData(FrameAnalysisResult(people_count=2, current_ad="man")))
    payload = state.to_dict()
    assert payload["last_frame_analysis"]["people_count"] == 2
    assert payload["stats"] is None
    assert payload["cameras"] == []
