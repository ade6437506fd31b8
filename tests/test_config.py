import pytest

from dooh_signage.config import (
    DEFAULT_API_BASE_URL,
    DEFAULT_WS_URL,
    ConfigError,
    load_config,
    resolve_endpoints,
)


def test_defaults_without_file_or_env():
    config = load_config(environ={})
    assert config.backend.api_base_url == DEFAULT_API_BASE_URL
    assert config.backend.ws_url == DEFAULT_WS_URL
    assert config.screen_id.startswith("dooh_screen_")
    assert config.session.reconnect_delay == 3.0
    assert config.session.max_reconnect_attempts is None
    assert config.capture.frame_interval == 1.0
    assert config.capture.heartbeat_interval == 30.0
    assert config.stats_interval_seconds == 5.0


@pytest.mark.parametrize(
    "api, ws, expected",
    [
        ("https://signage.example.com/", None, ("https://signage.example.com", "wss://signage.example.com/ws")),
        ("http://10.0.0.5:8000", None, ("http://10.0.0.5:8000", "ws://10.0.0.5:8000/ws")),
        (None, "wss://signage.example.com/ws", ("https://signage.example.com", "wss://signage.example.com/ws")),
        ("http://a:1", "ws://b:2/stream", ("http://a:1", "ws://b:2/stream")),
    ],
)
def test_endpoint_derivation(api, ws, expected):
    assert resolve_endpoints(api, ws) == expected


def test_environment_overrides():
    config = load_config(
        environ={"DOOH_API_URL": "https://api.example.com", "DOOH_SCREEN_ID": "mall_entrance"}
    )
    assert config.backend.ws_url == "wss://api.example.com/ws"
    assert config.screen_id == "mall_entrance"


def test_yaml_file(tmp_path):
    path = tmp_path / "signage.yaml"
    path.write_text(
        "screen_id: lobby\n"
        "backend:\n  ws_url: ws://backend:9000/ws\n"
        "session:\n  reconnect_delay: 1.5\n  max_reconnect_attempts: 4\n"
        "capture:\n  camera: 1\n  unknown_key: ignored\n",
        encoding="utf-8",
    )
    config = load_config(path, environ={})
    assert config.screen_id == "lobby"
    assert config.backend.api_base_url == "http://backend:9000"
    assert config.session.max_reconnect_attempts == 4
    assert config.capture.camera == "1"


def test_invalid_values(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("capture:\n  jpeg_quality: 0\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path, environ={})

    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path, environ={})

    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.yaml", environ={})

    with pytest.raises(ConfigError):
        load_config(environ={"DOOH_API_URL": "ftp://example.com"})
