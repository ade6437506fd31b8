from fastapi.testclient import TestClient

from dooh_signage.api.server import create_app
from dooh_signage.store import SetConnected, SetCurrentAd, Store


def test_state_and_ad_endpoints():
    store = Store()
    store.dispatch(SetConnected(True))
    store.dispatch(SetCurrentAd("multiple"))
    app = create_app(store, screen_id="lobby")

    with TestClient(app) as client:
        health = client.get("/healthz").json()
        assert health == {"screen_id": "lobby", "connected": True, "error": None}

        state = client.get("/api/state").json()
        assert state["current_ad"] == "multiple"
        assert state["current_ad_asset"] == {"path": "/ads/multiple.mp4", "display_name": "Group of Males"}

        ad = client.get("/api/ad").json()
        assert ad["is_video"] is True
        assert ad["display_name"] == "Group of Males"


def test_unknown_ad_is_served_as_neutral():
    store = Store()
    store.dispatch(SetCurrentAd("hovercraft"))
    with TestClient(create_app(store)) as client:
        ad = client.get("/api/ad").json()
    assert ad["ad"] == "hovercraft"
    assert ad["path"] == "/ads/neutral.gif"


def test_websocket_sends_snapshot_on_connect():
    store = Store()
    store.dispatch(SetCurrentAd("woman"))
    with TestClient(create_app(store)) as client:
        with client.websocket_connect("/ws") as websocket:
            message = websocket.receive_json()
    assert set(message) == {"type", "payload"}
    assert message["type"] == "state"
    assert message["payload"]["current_ad"] == "woman"
