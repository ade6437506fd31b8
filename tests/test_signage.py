import asyncio

from dooh_signage.config import CaptureConfig, SessionConfig, SignageConfig
from dooh_signage.signage import AdClock, SignageClient, format_duration, format_uptime
from dooh_signage.store import SetCurrentAd, SetCurrentCamera, Store

from conftest import FakeBackend, FakeConnector, FakeMedia, make_cameras, wait_until


def test_time_formatting():
    assert format_uptime(3725) == "01:02:05"
    assert format_uptime(-4) == "00:00:00"
    assert format_duration(125.9) == "02:05"


def test_ad_clock_resets_on_ad_change():
    now = [100.0]
    store = Store()
    clock = AdClock(store, clock=lambda: now[0])
    clock.attach()

    now[0] = 107.4
    clock.tick()
    assert store.state.ad_duration_seconds == 7.0

    store.dispatch(SetCurrentAd("man"))
    assert store.state.ad_duration_seconds == 0.0
    now[0] = 110.0
    clock.tick()
    assert store.state.ad_duration_seconds == 2.0

    clock.sync(30.0)
    clock.tick()
    assert store.state.ad_duration_seconds == 30.0

    clock.detach()
    store.dispatch(SetCurrentAd("woman"))
    assert store.state.ad_duration_seconds == 30.0


def _client(media, connector, backend=None):
    config = SignageConfig(
        screen_id="test_screen",
        session=SessionConfig(reconnect_delay=0.05),
        capture=CaptureConfig(settle_delay=0.0, frame_interval=0.02, heartbeat_interval=10.0),
        stats_interval_seconds=10.0,
    )
    return SignageClient(
        config, media=media, backend=backend or FakeBackend(), connector=connector
    )


def test_frames_flow_and_results_update_state():
    async def scenario():
        connector = FakeConnector()
        client = _client(FakeMedia(make_cameras(1)), connector)
        await client.start()

        def state():
            return client.store.state

        await wait_until(lambda: state().connected)
        connection = connector.latest
        connection.feed(
            {
                "type": "connection",
                "data": {"message": "ready", "current_ad": "neutral", "camera_running": False},
            }
        )
        await wait_until(lambda: client.capture.frames_sent >= 1)
        assert connection.sent_of_type("frame")[0]["data"]["screen_id"] == "test_screen"

        connection.feed(
            {
                "type": "frame_processed",
                "data": {
                    "result": {"people_count": 2, "tracked_people": [], "current_ad": "multiple"},
                    "processing_time_ms": 12.5,
                    "frame_number": 3,
                },
            }
        )
        await wait_until(lambda: state().current_ad == "multiple")
        assert state().last_frame_analysis.frame_number == 3
        assert state().last_frame_analysis.processing_time_ms == 12.5
        assert client.frames_analysed == 1

        connection.feed({"type": "error", "data": {"error": "GPU busy"}})
        await wait_until(lambda: state().error == "Processing error: GPU busy")

        connection.feed({"type": "mystery", "data": None})
        connection.feed({"type": "ad_change", "data": {"ad": "fashion"}})
        await wait_until(lambda: state().current_ad == "fashion")
        assert state().stats is not None

        await client.stop()
        assert not state().connected
        assert client.backend.closed

    asyncio.run(scenario())


def test_recovers_after_backend_drop():
    async def scenario():
        connector = FakeConnector()
        client = _client(FakeMedia(make_cameras(1)), connector)
        await client.start()
        await wait_until(lambda: client.capture.sampling)

        connector.latest.drop(1006)
        await wait_until(lambda: not client.store.state.connected)
        assert client.store.state.error == "WebSocket connection failed"
        assert not client.capture.sampling

        await wait_until(lambda: client.store.state.connected)
        assert client.store.state.error is None
        assert connector.calls == 2
        await wait_until(lambda: connector.latest.sent_of_type("frame"))

        await client.stop()
        await asyncio.sleep(0.1)
        assert connector.calls == 2

    asyncio.run(scenario())


def test_selecting_another_camera_restarts_capture():
    async def scenario():
        media = FakeMedia(make_cameras(2))
        client = _client(media, FakeConnector())
        await client.start()
        assert media.opened[0].device_id == "/dev/video0"

        client.store.dispatch(SetCurrentCamera(1))
        await wait_until(lambda: len(media.opened) == 2)
        assert media.opened[1].device_id == "/dev/video1"
        assert media.streams[0].stopped

        await client.stop()
        assert media.streams[1].stopped

    asyncio.run(scenario())


def test_backend_reported_duration_is_applied():
    async def scenario():
        connector = FakeConnector()
        client = _client(FakeMedia(make_cameras(1)), connector)
        await client.start()
        await wait_until(lambda: client.store.state.connected)
        connector.latest.feed(
            {"type": "frame_data", "data": {"people_count": 1, "current_ad": "woman", "ad_duration": 12.0}}
        )
        await wait_until(lambda: client.store.state.current_ad == "woman")
        assert client.store.state.ad_duration_seconds >= 12.0
        assert client.ad_clock.elapsed >= 12
        await client.stop()

    asyncio.run(scenario())


def test_stop_during_camera_switch_leaves_no_device_open():
    async def scenario():
        media = FakeMedia(make_cameras(2))
        client = _client(media, FakeConnector())
        await client.start()

        client.store.dispatch(SetCurrentCamera(1))
        await client.stop()

        assert [c.device_id for c in media.opened] == ["/dev/video0"]
        assert all(stream.stopped for stream in media.streams)
        assert not client.capture.streaming

    asyncio.run(scenario())
