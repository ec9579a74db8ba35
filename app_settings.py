import json
import os
from typing import Any


CURRENT_SETTINGS_VERSION = 1

DEFAULT_SETTINGS_PATH = "~/.config/gotify/settings.json"

STREAM_AUTH_MODES = ("fetch", "query", "none")

DEFAULT_SETTINGS = {
    "settings_version": CURRENT_SETTINGS_VERSION,
    "api_base_url": "http://localhost:8080/api/v1",
    "stream_auth_mode": "fetch",
    "stream_token_param": "token",
    "stream_timeout_s": 20,
    "stream_retry_attempts": 3,
    "volume": 100,
    "muted": False,
    "repeat_one": False,
    "shuffle": False,
    "queue_wrap": True,
    "visualizer_enabled": True,
    "viz_fft_size": 256,
    "viz_bar_count": 64,
    "position_poll_ms": 250,
}


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    return default


def _as_str(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _as_choice(value: Any, default: str, choices: tuple[str, ...]) -> str:
    text = _as_str(value, default).lower()
    return text if text in choices else default


def _as_int(value: Any, default: int, minimum: int | None = None, maximum: int | None = None) -> int:
    # bool is an int subclass; a stray true/false must not become 1/0.
    if isinstance(value, bool) or not isinstance(value, int):
        return default
    if minimum is not None and value < minimum:
        return default
    if maximum is not None and value > maximum:
        return default
    return value


def _as_power_of_two(value: Any, default: int, minimum: int, maximum: int) -> int:
    val = _as_int(value, default, minimum=minimum, maximum=maximum)
    if val & (val - 1):
        return default
    return val


def normalize_settings(raw: dict[str, Any] | None) -> dict[str, Any]:
    raw = raw or {}
    normalized = dict(DEFAULT_SETTINGS)
    normalized["api_base_url"] = _as_str(raw.get("api_base_url"), DEFAULT_SETTINGS["api_base_url"]).rstrip("/")
    normalized["stream_auth_mode"] = _as_choice(raw.get("stream_auth_mode"), DEFAULT_SETTINGS["stream_auth_mode"], STREAM_AUTH_MODES)
    normalized["stream_token_param"] = _as_str(raw.get("stream_token_param"), DEFAULT_SETTINGS["stream_token_param"])
    normalized["stream_timeout_s"] = _as_int(raw.get("stream_timeout_s"), DEFAULT_SETTINGS["stream_timeout_s"], minimum=1, maximum=120)
    normalized["stream_retry_attempts"] = _as_int(raw.get("stream_retry_attempts"), DEFAULT_SETTINGS["stream_retry_attempts"], minimum=1, maximum=5)
    normalized["volume"] = _as_int(raw.get("volume"), DEFAULT_SETTINGS["volume"], minimum=0, maximum=100)
    normalized["muted"] = _as_bool(raw.get("muted"), DEFAULT_SETTINGS["muted"])
    normalized["repeat_one"] = _as_bool(raw.get("repeat_one"), DEFAULT_SETTINGS["repeat_one"])
    normalized["shuffle"] = _as_bool(raw.get("shuffle"), DEFAULT_SETTINGS["shuffle"])
    normalized["queue_wrap"] = _as_bool(raw.get("queue_wrap"), DEFAULT_SETTINGS["queue_wrap"])
    normalized["visualizer_enabled"] = _as_bool(raw.get("visualizer_enabled"), DEFAULT_SETTINGS["visualizer_enabled"])
    normalized["viz_fft_size"] = _as_power_of_two(raw.get("viz_fft_size"), DEFAULT_SETTINGS["viz_fft_size"], 32, 32768)
    normalized["viz_bar_count"] = _as_int(raw.get("viz_bar_count"), DEFAULT_SETTINGS["viz_bar_count"], minimum=4, maximum=128)
    normalized["position_poll_ms"] = _as_int(raw.get("position_poll_ms"), DEFAULT_SETTINGS["position_poll_ms"], minimum=50, maximum=1000)
    normalized["settings_version"] = CURRENT_SETTINGS_VERSION

    # Query-string tokens need a parameter name; fall back to header auth otherwise.
    if normalized["stream_auth_mode"] == "query" and not normalized["stream_token_param"]:
        normalized["stream_auth_mode"] = "fetch"
    return normalized


def _apply_env_overrides(settings: dict[str, Any]) -> dict[str, Any]:
    api_base = os.getenv("GOTIFY_API_BASE_URL", "").strip()
    if api_base:
        settings["api_base_url"] = api_base.rstrip("/")
    return settings


def load_settings(path: str = DEFAULT_SETTINGS_PATH) -> dict[str, Any]:
    path = os.path.expanduser(path)
    if not os.path.exists(path):
        return _apply_env_overrides(dict(DEFAULT_SETTINGS))

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except Exception:
        return _apply_env_overrides(dict(DEFAULT_SETTINGS))

    if not isinstance(data, dict):
        return _apply_env_overrides(dict(DEFAULT_SETTINGS))
    return _apply_env_overrides(normalize_settings(data))


def save_settings(path: str, settings: dict[str, Any]) -> None:
    path = os.path.expanduser(path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    data = normalize_settings(settings)
    temp_file = f"{path}.tmp"
    with open(temp_file, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    os.replace(temp_file, path)
